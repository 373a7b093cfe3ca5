from typing import Any

from fastapi import HTTPException
from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Chapter
from wikishelf.schemas.content import ChapterRead, TagRead
from wikishelf.services import base_repo, permission_service
from wikishelf.services.errors import (
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
    StorageFailureError,
)

SERVICE_ERRORS = (NotFoundError, InvalidOperationError, PermissionDeniedError, StorageFailureError)


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidOperationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, StorageFailureError):
        return HTTPException(status_code=503, detail="storage unavailable")
    return HTTPException(status_code=500, detail="internal error")


def ensure_can(db: Session, principal: AuthPrincipal, action: str, entity: Any) -> None:
    if not permission_service.user_can(db, principal, action, entity):
        raise HTTPException(status_code=403, detail=f"missing '{action}' permission")


def chapter_read(db: Session, chapter: Chapter) -> ChapterRead:
    values = {name: getattr(chapter, name) for name in ChapterRead.model_fields if name != "tags"}
    tags = [TagRead(name=tag.name, value=tag.value) for tag in base_repo.list_tags(db, chapter)]
    return ChapterRead(**values, tags=tags)

"""Chapter duplication ("copy" / "link").

A duplicate is assembled as a draft chapter under the destination book, filled
with the source chapter's fields and tags, published, and then given copies of
every published page of the source. The source is only ever read.

Callers receive a :class:`ChapterDuplicationResult` instead of an exception.
Resolution and authorization failures keep their own kind. Failures while the
copy is being written are logged with their kind and surfaced to users through
one generic "not found" message, with ``navigate == "back"``.

The copy runs in a single unit of work. When
``settings.duplicate_rollback_on_failure`` is true nothing from a failed copy
is left behind; otherwise the partial draft and pages are kept so the author
can finish them by hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal
from wikishelf.core.config import settings
from wikishelf.models.content import Book, Chapter
from wikishelf.services import (
    base_repo,
    chapter_lifecycle,
    chapter_locator,
    entity_store,
    page_repo,
    permission_service,
)
from wikishelf.services.errors import (
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
    StorageFailureError,
)

_LOGGER = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "The selected book or chapter was not found"

_ERROR_KINDS: tuple[tuple[type[Exception], str], ...] = (
    (PermissionDeniedError, "permission_denied"),
    (NotFoundError, "not_found"),
    (InvalidOperationError, "invalid_operation"),
    (StorageFailureError, "storage_failure"),
    (SQLAlchemyError, "storage_failure"),
)


@dataclass
class ChapterDuplicationResult:
    status: str
    stage: str
    chapter: Chapter | None = None
    parent: Book | None = None
    error: Exception | None = None
    message: str = ""
    navigate: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _error_kind(exc: Exception) -> str:
    for error_type, kind in _ERROR_KINDS:
        if isinstance(exc, error_type):
            return kind
    return "unknown"


def _attributes(entity: Any) -> dict[str, Any]:
    return {name: getattr(entity, name) for name in type(entity).model_fields}


def _tag_payload(db: Session, entity: Any) -> list[dict[str, str]]:
    return [{"name": tag.name, "value": tag.value} for tag in base_repo.list_tags(db, entity)]


def _resolve_destination(
    db: Session,
    principal: AuthPrincipal,
    chapter: Chapter,
    parent_identifier: str | None,
) -> Book:
    if parent_identifier:
        return chapter_locator.resolve_parent_token(db, principal, parent_identifier)
    parent = entity_store.find_visible_book_by_id(db, principal, int(chapter.book_id))
    if parent is None:
        raise NotFoundError("Book to copy chapter into not found")
    return parent


def _copy_chapter(
    db: Session,
    principal: AuthPrincipal,
    book: Book,
    source: Chapter,
    new_name: str | None,
) -> Chapter:
    copy = chapter_lifecycle.create_draft(db, principal, book)

    chapter_data = _attributes(source)
    if new_name and new_name.strip():
        chapter_data["name"] = new_name.strip()
    source_tags = _tag_payload(db, source)
    if source_tags:
        chapter_data["tags"] = source_tags
    chapter_data["source_chapter_id"] = chapter_data["id"]
    base_repo.publish_draft(db, principal, copy, chapter_data)

    if not permission_service.user_can(db, principal, "page-create", copy):
        raise PermissionDeniedError("User does not have permission to create a page within the new parent")

    for page in page_repo.list_by_chapter(db, int(source.id)):
        draft = page_repo.duplicate(db, principal, page, copy, page.name)
        page_repo.publish_draft(
            db,
            principal,
            draft,
            {"name": draft.name, "html": page.html, "tags": _tag_payload(db, page)},
        )
    return copy


def duplicate(
    db: Session,
    principal: AuthPrincipal,
    chapter: Chapter,
    parent_identifier: str | None = None,
    new_name: str | None = None,
) -> ChapterDuplicationResult:
    source_id = int(chapter.id)
    try:
        parent = _resolve_destination(db, principal, chapter, parent_identifier)
    except (InvalidOperationError, NotFoundError) as exc:
        return ChapterDuplicationResult(
            status="invalid_operation",
            stage="resolve",
            error=exc,
            message=str(exc),
        )

    if not permission_service.user_can(db, principal, "chapter-create", parent):
        return ChapterDuplicationResult(
            status="permission_denied",
            stage="authorize",
            parent=parent,
            error=PermissionDeniedError(
                "User does not have permission to create a chapter within the new parent"
            ),
            message="User does not have permission to create a chapter within the new parent",
        )

    parent_id = int(parent.id)
    try:
        with entity_store.unit_of_work(db, rollback_on_error=settings.duplicate_rollback_on_failure):
            copy = _copy_chapter(db, principal, parent, chapter, new_name)
    except (
        NotFoundError,
        InvalidOperationError,
        PermissionDeniedError,
        StorageFailureError,
        SQLAlchemyError,
    ) as exc:
        kind = _error_kind(exc)
        _LOGGER.warning(
            "duplicating chapter %s into book %s failed (%s): %s",
            source_id,
            parent_id,
            kind,
            exc,
        )
        return ChapterDuplicationResult(
            status=kind,
            stage="copy",
            error=exc,
            message=GENERIC_FAILURE_MESSAGE,
            navigate="back",
        )

    entity_store.refresh(db, copy)
    _LOGGER.info("chapter %s duplicated as %s in book %s by %s", source_id, copy.id, parent_id, principal.user_id)
    return ChapterDuplicationResult(status="ok", stage="done", chapter=copy, parent=parent)

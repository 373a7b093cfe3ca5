from __future__ import annotations

from typing import Any, Iterable, Mapping

from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal
from wikishelf.core.config import settings
from wikishelf.models.content import Book, Chapter, Deletion
from wikishelf.services import base_repo, entity_store, permission_service, trash_can


def create(db: Session, principal: AuthPrincipal, fields: Mapping[str, Any], book: Book) -> Chapter:
    chapter = Chapter(book_id=int(book.id))
    chapter.priority = entity_store.last_chapter_priority(db, int(book.id)) + 1
    return base_repo.create(db, principal, chapter, fields)


def update(db: Session, principal: AuthPrincipal, chapter: Chapter, fields: Mapping[str, Any]) -> Chapter:
    return base_repo.update(db, principal, chapter, fields)


def update_permissions(
    db: Session,
    chapter: Chapter,
    restricted: bool,
    permissions: Iterable[Any] | None = None,
) -> None:
    base_repo.update_permissions(db, chapter, restricted, permissions)


def destroy(db: Session, principal: AuthPrincipal, chapter: Chapter) -> Deletion:
    return trash_can.destroy_chapter(db, principal, chapter)


def create_draft(db: Session, principal: AuthPrincipal, book: Book) -> Chapter:
    """Create a placeholder draft chapter that already has resolvable permissions."""
    chapter = Chapter(
        name=settings.chapter_draft_name,
        book_id=int(book.id),
        created_by=principal.user_id,
        updated_by=principal.user_id,
        draft=True,
    )
    entity_store.save(db, chapter)
    entity_store.refresh(db, chapter)
    permission_service.rebuild(db, chapter)
    return chapter

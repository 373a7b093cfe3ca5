from __future__ import annotations

from typing import Any, Mapping

from sqlmodel import Session, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.core.config import settings
from wikishelf.models.content import Chapter, Page
from wikishelf.services import base_repo, entity_store, permission_service
from wikishelf.services.errors import PermissionDeniedError


def list_by_chapter(db: Session, chapter_id: int) -> list[Page]:
    stmt = (
        select(Page)
        .where(
            Page.chapter_id == chapter_id,
            Page.deleted_at.is_(None),
            Page.draft.is_(False),
        )
        .order_by(Page.priority.asc(), Page.id.asc())
    )
    return db.exec(stmt).all()


def list_visible_by_chapter(db: Session, principal: AuthPrincipal, chapter_id: int) -> list[Page]:
    stmt = (
        select(Page)
        .where(
            Page.chapter_id == chapter_id,
            permission_service.visible_filter(Page, principal),
        )
        .order_by(Page.priority.asc(), Page.id.asc())
    )
    return db.exec(stmt).all()


def get_new_draft_page(db: Session, principal: AuthPrincipal, chapter: Chapter) -> Page:
    page = Page(
        name=settings.page_draft_name,
        book_id=chapter.book_id,
        chapter_id=int(chapter.id),
        draft=True,
        created_by=principal.user_id,
        updated_by=principal.user_id,
    )
    entity_store.save(db, page)
    entity_store.refresh(db, page)
    permission_service.rebuild(db, page)
    return page


def publish_draft(db: Session, principal: AuthPrincipal, page: Page, fields: Mapping[str, Any]) -> Page:
    return base_repo.publish_draft(db, principal, page, fields)


def create_page(db: Session, principal: AuthPrincipal, chapter: Chapter, fields: Mapping[str, Any]) -> Page:
    draft = get_new_draft_page(db, principal, chapter)
    return publish_draft(db, principal, draft, fields)


def duplicate(
    db: Session,
    principal: AuthPrincipal,
    page: Page,
    destination_chapter: Chapter,
    name_override: str | None = None,
) -> Page:
    """Create a draft copy of ``page`` inside ``destination_chapter``."""
    if not permission_service.user_can(db, principal, "page-create", destination_chapter):
        raise PermissionDeniedError("User does not have permission to create a page within the new parent")
    draft = get_new_draft_page(db, principal, destination_chapter)
    draft.name = (name_override or "").strip()[:255] or page.name
    draft.html = page.html
    entity_store.save(db, draft)
    return draft

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Session, SQLModel, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.core.config import settings
from wikishelf.models.content import Book, Chapter, Page
from wikishelf.services import permission_service
from wikishelf.services.unit_of_work import commit, unit_of_work

_LOGGER = logging.getLogger(__name__)
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

__all__ = [
    "find_visible_book_by_id",
    "find_visible_book_by_slug",
    "find_visible_chapter_by_id",
    "find_visible_chapter_by_slugs",
    "last_chapter_priority",
    "last_page_priority",
    "refresh",
    "save",
    "set_owner",
    "slugify",
    "unique_slug",
    "unit_of_work",
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def slugify(name: str | None, fallback: str = "entity") -> str:
    normalized = unicodedata.normalize("NFKD", str(name or "")).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_STRIP_RE.sub("-", normalized.lower()).strip("-")
    slug = slug[: settings.slug_max_length].rstrip("-")
    return slug or fallback


def unique_slug(
    db: Session,
    model: type[SQLModel],
    name: str | None,
    *,
    fallback: str,
    scope: dict[str, Any] | None = None,
    exclude_id: int | None = None,
) -> str:
    base = slugify(name, fallback)
    stmt = select(model.slug).where(model.deleted_at.is_(None))
    for column, value in (scope or {}).items():
        stmt = stmt.where(getattr(model, column) == value)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    taken = {str(item) for item in db.exec(stmt).all()}
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def find_visible_book_by_slug(db: Session, principal: AuthPrincipal, slug: str) -> Book | None:
    stmt = select(Book).where(
        Book.slug == slug,
        permission_service.visible_filter(Book, principal),
    )
    return db.exec(stmt).first()


def find_visible_book_by_id(db: Session, principal: AuthPrincipal, book_id: int) -> Book | None:
    stmt = select(Book).where(
        Book.id == book_id,
        permission_service.visible_filter(Book, principal),
    )
    return db.exec(stmt).first()


def find_visible_chapter_by_slugs(
    db: Session,
    principal: AuthPrincipal,
    book_slug: str,
    chapter_slug: str,
) -> Chapter | None:
    stmt = (
        select(Chapter)
        .join(Book, Book.id == Chapter.book_id)
        .where(
            Book.slug == book_slug,
            Book.deleted_at.is_(None),
            Chapter.slug == chapter_slug,
            permission_service.visible_filter(Chapter, principal),
        )
        .order_by(Chapter.id.asc())
    )
    return db.exec(stmt).first()


def find_visible_chapter_by_id(db: Session, principal: AuthPrincipal, chapter_id: int) -> Chapter | None:
    stmt = select(Chapter).where(
        Chapter.id == chapter_id,
        permission_service.visible_filter(Chapter, principal),
    )
    return db.exec(stmt).first()


def save(db: Session, entity: SQLModel) -> SQLModel:
    db.add(entity)
    commit(db)
    db.refresh(entity)
    return entity


def refresh(db: Session, entity: SQLModel) -> SQLModel:
    db.refresh(entity)
    return entity


def last_chapter_priority(db: Session, book_id: int, *, exclude_id: int | None = None) -> int:
    stmt = select(Chapter.priority).where(Chapter.book_id == book_id, Chapter.deleted_at.is_(None))
    if exclude_id is not None:
        stmt = stmt.where(Chapter.id != exclude_id)
    rows = db.exec(stmt).all()
    if not rows:
        return 0
    return max(int(item) for item in rows)


def last_page_priority(db: Session, chapter_id: int, *, exclude_id: int | None = None) -> int:
    stmt = select(Page.priority).where(Page.chapter_id == chapter_id, Page.deleted_at.is_(None))
    if exclude_id is not None:
        stmt = stmt.where(Page.id != exclude_id)
    rows = db.exec(stmt).all()
    if not rows:
        return 0
    return max(int(item) for item in rows)


def set_owner(db: Session, chapter: Chapter, book: Book) -> Chapter:
    """Reassign a chapter, and the pages under it, to another book."""
    if chapter.id is None or book.id is None:
        raise ValueError("entity id missing")
    previous_book_id = int(chapter.book_id)
    chapter.book_id = int(book.id)
    chapter.slug = unique_slug(
        db,
        Chapter,
        chapter.slug or chapter.name,
        fallback="chapter",
        scope={"book_id": chapter.book_id},
        exclude_id=chapter.id,
    )
    chapter.updated_at = _utc_now()
    db.add(chapter)

    pages = db.exec(select(Page).where(Page.chapter_id == chapter.id)).all()
    for page in pages:
        page.book_id = chapter.book_id
        db.add(page)

    commit(db)
    db.refresh(chapter)
    _LOGGER.info(
        "chapter %s moved from book %s to book %s (%d pages)",
        chapter.id,
        previous_book_id,
        chapter.book_id,
        len(pages),
    )
    return chapter

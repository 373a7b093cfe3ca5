from __future__ import annotations

from typing import Any, Mapping

from sqlmodel import Session, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Book, Chapter
from wikishelf.services import base_repo, entity_store, permission_service
from wikishelf.services.errors import NotFoundError


def create_book(db: Session, principal: AuthPrincipal, fields: Mapping[str, Any]) -> Book:
    return base_repo.create(db, principal, Book(), fields)


def get_visible_book(db: Session, principal: AuthPrincipal, slug: str) -> Book:
    book = entity_store.find_visible_book_by_slug(db, principal, slug)
    if book is None:
        raise NotFoundError("book not found")
    return book


def find_visible_book(db: Session, principal: AuthPrincipal, book_id: int) -> Book | None:
    return entity_store.find_visible_book_by_id(db, principal, book_id)


def list_visible_books(db: Session, principal: AuthPrincipal) -> list[Book]:
    stmt = select(Book).where(permission_service.visible_filter(Book, principal)).order_by(Book.name.asc(), Book.id.asc())
    return db.exec(stmt).all()


def list_book_chapters(db: Session, principal: AuthPrincipal, book: Book) -> list[Chapter]:
    stmt = (
        select(Chapter)
        .where(
            Chapter.book_id == book.id,
            permission_service.visible_filter(Chapter, principal),
        )
        .order_by(Chapter.priority.asc(), Chapter.id.asc())
    )
    return db.exec(stmt).all()

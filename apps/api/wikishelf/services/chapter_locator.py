from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Book, Chapter
from wikishelf.services import entity_store
from wikishelf.services.errors import InvalidOperationError, NotFoundError

_REFERENCE_RE = re.compile(r"^(?P<type>[a-z_]+):(?P<id>[0-9]+)$")
# Largest id a BIGINT primary key can hold.
MAX_ENTITY_ID = 2**63 - 1


@dataclass(frozen=True)
class BookReference:
    entity_id: int
    entity_type: str = "book"


@dataclass(frozen=True)
class ChapterReference:
    entity_id: int
    entity_type: str = "chapter"


@dataclass(frozen=True)
class PageReference:
    entity_id: int
    entity_type: str = "page"


@dataclass(frozen=True)
class InvalidReference:
    raw: str
    reason: str


ParentReference = Union[BookReference, ChapterReference, PageReference, InvalidReference]

_REFERENCE_TYPES: dict[str, type] = {
    "book": BookReference,
    "chapter": ChapterReference,
    "page": PageReference,
}


def parse_parent_reference(token: str | None) -> ParentReference:
    """Parse a ``"<type>:<id>"`` token such as ``"book:5"``."""
    raw = str(token or "")
    match = _REFERENCE_RE.match(raw.strip())
    if match is None:
        return InvalidReference(raw=raw, reason="malformed parent reference")
    reference_type = _REFERENCE_TYPES.get(match.group("type"))
    if reference_type is None:
        return InvalidReference(raw=raw, reason=f"unknown entity type: {match.group('type')}")
    entity_id = int(match.group("id"))
    if entity_id > MAX_ENTITY_ID:
        return InvalidReference(raw=raw, reason="id out of range")
    return reference_type(entity_id=entity_id)


def resolve_by_path(db: Session, principal: AuthPrincipal, book_slug: str, chapter_slug: str) -> Chapter:
    chapter = entity_store.find_visible_chapter_by_slugs(db, principal, book_slug, chapter_slug)
    if chapter is None:
        raise NotFoundError("chapter not found")
    return chapter


def resolve_parent_token(db: Session, principal: AuthPrincipal, token: str | None) -> Book:
    reference = parse_parent_reference(token)
    if isinstance(reference, InvalidReference):
        raise InvalidOperationError(f"invalid parent reference: {reference.reason}")
    if not isinstance(reference, BookReference):
        raise InvalidOperationError("Chapters can only be placed inside books")
    book = entity_store.find_visible_book_by_id(db, principal, reference.entity_id)
    if book is None:
        raise NotFoundError("book not found")
    return book

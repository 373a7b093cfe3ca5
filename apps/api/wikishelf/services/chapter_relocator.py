from __future__ import annotations

import logging

from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Book, Chapter
from wikishelf.services import chapter_locator, entity_store, permission_service
from wikishelf.services.errors import InvalidOperationError, NotFoundError

_LOGGER = logging.getLogger(__name__)


def move(db: Session, principal: AuthPrincipal, chapter: Chapter, parent_identifier: str) -> Book:
    """Move ``chapter`` into the book named by ``parent_identifier`` (``"book:<id>"``).

    The target is fully resolved before anything is written, so a bad
    reference or a missing book leaves the chapter untouched.
    """
    reference = chapter_locator.parse_parent_reference(parent_identifier)
    if not isinstance(reference, chapter_locator.BookReference):
        raise InvalidOperationError("Chapters can only be moved into books")

    try:
        target = chapter_locator.resolve_parent_token(db, principal, parent_identifier)
    except NotFoundError as exc:
        raise InvalidOperationError("Book to move chapter into not found") from exc

    with entity_store.unit_of_work(db):
        entity_store.set_owner(db, chapter, target)
        permission_service.rebuild(db, chapter)

    _LOGGER.info("chapter %s relocated to book %s by %s", chapter.id, target.id, principal.user_id)
    return target

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlmodel import Session, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Chapter, Deletion, Page
from wikishelf.services import permission_service
from wikishelf.services.unit_of_work import commit

_LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def destroy_chapter(db: Session, principal: AuthPrincipal, chapter: Chapter) -> Deletion:
    """Soft-delete a chapter together with its pages and record the deletion."""
    if chapter.id is None:
        raise ValueError("chapter id missing")
    now = _utc_now()
    pages = db.exec(select(Page).where(Page.chapter_id == chapter.id, Page.deleted_at.is_(None))).all()
    for page in pages:
        page.deleted_at = now
        db.add(page)
        permission_service.clear(db, page)

    chapter.deleted_at = now
    db.add(chapter)
    permission_service.clear(db, chapter)

    deletion = Deletion(
        deletable_type="chapter",
        deletable_id=int(chapter.id),
        deleted_by=principal.user_id,
        created_at=now,
    )
    db.add(deletion)
    commit(db)
    db.refresh(deletion)
    _LOGGER.info("chapter %s moved to trash by %s with %d pages", chapter.id, principal.user_id, len(pages))
    return deletion

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from wikishelf.services.errors import StorageFailureError

_LOGGER = logging.getLogger(__name__)
_DEFER_COMMIT_KEY = "wikishelf.defer_commit"


def in_unit_of_work(db: Session) -> bool:
    return bool(db.info.get(_DEFER_COMMIT_KEY))


def commit(db: Session) -> None:
    """Commit, or only flush while a unit of work owns the transaction."""
    try:
        if in_unit_of_work(db):
            db.flush()
            return
        db.commit()
    except SQLAlchemyError as exc:
        if not in_unit_of_work(db):
            db.rollback()
        raise StorageFailureError(str(exc)) from exc


@contextmanager
def unit_of_work(db: Session, *, rollback_on_error: bool = True) -> Iterator[Session]:
    """Group several writes into one transaction.

    Writes issued through :func:`commit` inside the block are flushed only. On
    success the block is committed once. On error the transaction is rolled
    back, or committed as-is when ``rollback_on_error`` is false, and the
    error is re-raised. Nested blocks join the outermost one.
    """
    if in_unit_of_work(db):
        yield db
        return

    db.info[_DEFER_COMMIT_KEY] = True
    try:
        yield db
    except Exception:
        db.info.pop(_DEFER_COMMIT_KEY, None)
        if rollback_on_error:
            db.rollback()
        else:
            try:
                db.commit()
            except SQLAlchemyError:
                _LOGGER.exception("failed to keep partial writes, rolling back")
                db.rollback()
        raise
    finally:
        db.info.pop(_DEFER_COMMIT_KEY, None)
    commit(db)

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import and_, or_
from sqlmodel import Session, SQLModel, select

from wikishelf.core.auth import AuthPrincipal, is_admin_principal
from wikishelf.models.content import Book, Chapter, EntityPermission, JointPermission, Page
from wikishelf.services.unit_of_work import commit

_LOGGER = logging.getLogger(__name__)

EVERYONE = "*"

ENTITY_ACTIONS: dict[str, tuple[str, ...]] = {
    "book": ("view", "update", "delete", "chapter-create", "page-create"),
    "chapter": ("view", "update", "delete", "page-create"),
    "page": ("view", "update", "delete"),
}

_MODEL_TYPES: dict[type, str] = {
    Book: "book",
    Chapter: "chapter",
    Page: "page",
}


@dataclass(frozen=True)
class PermissionGrant:
    user_id: str
    action: str


def entity_type_of(entity: Any) -> str:
    model = entity if isinstance(entity, type) else type(entity)
    entity_type = _MODEL_TYPES.get(model)
    if entity_type is None:
        raise ValueError(f"unsupported entity: {entity!r}")
    return entity_type


def visible_filter(model: type[SQLModel], principal: AuthPrincipal):
    """SQL predicate selecting live rows of ``model`` the principal may view.

    Drafts are only visible to the user who created them.
    """
    entity_type = entity_type_of(model)
    clauses = [model.deleted_at.is_(None)]
    if not is_admin_principal(principal):
        granted_ids = select(JointPermission.entity_id).where(
            JointPermission.entity_type == entity_type,
            JointPermission.action == "view",
            JointPermission.user_id.in_([principal.user_id, EVERYONE]),
        )
        clauses.append(model.id.in_(granted_ids))
    if hasattr(model, "draft"):
        clauses.append(or_(model.draft.is_(False), model.created_by == principal.user_id))
    return and_(*clauses)


def user_can(db: Session, principal: AuthPrincipal, action: str, entity: Any) -> bool:
    if entity is None or getattr(entity, "id", None) is None:
        return False
    if getattr(entity, "deleted_at", None) is not None:
        return False
    if is_admin_principal(principal):
        return True
    entity_type = entity_type_of(entity)
    stmt = select(JointPermission.id).where(
        JointPermission.entity_type == entity_type,
        JointPermission.entity_id == int(entity.id),
        JointPermission.action == action,
        JointPermission.user_id.in_([principal.user_id, EVERYONE]),
    )
    return db.exec(stmt).first() is not None


def list_entity_permissions(db: Session, entity: Any) -> list[EntityPermission]:
    stmt = (
        select(EntityPermission)
        .where(
            EntityPermission.entity_type == entity_type_of(entity),
            EntityPermission.entity_id == int(entity.id),
        )
        .order_by(EntityPermission.id.asc())
    )
    return db.exec(stmt).all()


def set_entity_permissions(
    db: Session,
    entity: Any,
    restricted: bool,
    permissions: Iterable[PermissionGrant] | None = None,
) -> None:
    entity.restricted = bool(restricted)
    db.add(entity)
    if permissions is not None:
        for row in list_entity_permissions(db, entity):
            db.delete(row)
        db.flush()
        allowed = set(ENTITY_ACTIONS[entity_type_of(entity)])
        seen: set[tuple[str, str]] = set()
        for grant in permissions:
            user_id = str(grant.user_id or "").strip()
            action = str(grant.action or "").strip()
            if not user_id or action not in allowed or (user_id, action) in seen:
                continue
            seen.add((user_id, action))
            db.add(
                EntityPermission(
                    entity_type=entity_type_of(entity),
                    entity_id=int(entity.id),
                    user_id=user_id,
                    action=action,
                )
            )
    commit(db)


def _explicit_grants(db: Session, entity: Any) -> dict[str, set[str]]:
    grants: dict[str, set[str]] = {}
    for row in list_entity_permissions(db, entity):
        grants.setdefault(row.user_id, set()).add(row.action)
    return grants


def _resolve_grants(db: Session, chain: list[Any]) -> dict[str, set[str]] | None:
    # The nearest restricted entity in the chain decides; None means unrestricted.
    for entity in chain:
        if entity is not None and getattr(entity, "restricted", False):
            return _explicit_grants(db, entity)
    return None


def _clear_joint_permissions(db: Session, entity_type: str, entity_id: int) -> None:
    stmt = select(JointPermission).where(
        JointPermission.entity_type == entity_type,
        JointPermission.entity_id == entity_id,
    )
    for row in db.exec(stmt).all():
        db.delete(row)


def _write_joint_permissions(db: Session, entity: Any, grants: dict[str, set[str]] | None) -> None:
    entity_type = entity_type_of(entity)
    entity_id = int(entity.id)
    _clear_joint_permissions(db, entity_type, entity_id)
    actions = ENTITY_ACTIONS[entity_type]
    if grants is None:
        for action in actions:
            db.add(JointPermission(entity_type=entity_type, entity_id=entity_id, user_id=EVERYONE, action=action))
        return
    for user_id, allowed in sorted(grants.items()):
        for action in actions:
            if action in allowed:
                db.add(JointPermission(entity_type=entity_type, entity_id=entity_id, user_id=user_id, action=action))


def _chapter_pages(db: Session, chapter_id: int) -> list[Page]:
    stmt = select(Page).where(Page.chapter_id == chapter_id, Page.deleted_at.is_(None))
    return db.exec(stmt).all()


def _rebuild_chapter_tree(db: Session, chapter: Chapter, book: Book | None) -> int:
    grants = _resolve_grants(db, [chapter, book])
    _write_joint_permissions(db, chapter, grants)
    pages = _chapter_pages(db, int(chapter.id))
    for page in pages:
        _write_joint_permissions(db, page, grants)
    return 1 + len(pages)


def _rebuild_without_commit(db: Session, entity: Any) -> int:
    if entity.id is None:
        raise ValueError("cannot rebuild permissions of an unsaved entity")
    if isinstance(entity, Book):
        _write_joint_permissions(db, entity, _resolve_grants(db, [entity]))
        chapters = db.exec(
            select(Chapter).where(Chapter.book_id == entity.id, Chapter.deleted_at.is_(None))
        ).all()
        return 1 + sum(_rebuild_chapter_tree(db, chapter, entity) for chapter in chapters)
    if isinstance(entity, Chapter):
        return _rebuild_chapter_tree(db, entity, db.get(Book, entity.book_id))
    if isinstance(entity, Page):
        chapter = db.get(Chapter, entity.chapter_id)
        book = db.get(Book, entity.book_id)
        _write_joint_permissions(db, entity, _resolve_grants(db, [chapter, book]))
        return 1
    raise ValueError(f"unsupported entity: {entity!r}")


def rebuild(db: Session, entity: Any) -> None:
    """Recompute effective permissions for ``entity`` and all of its descendants."""
    count = _rebuild_without_commit(db, entity)
    commit(db)
    _LOGGER.debug("rebuilt permissions for %s %s (%d entities)", entity_type_of(entity), entity.id, count)


def rebuild_all(db: Session) -> int:
    """Regenerate joint permissions for every live book tree."""
    for row in db.exec(select(JointPermission)).all():
        db.delete(row)
    db.flush()
    total = 0
    for book in db.exec(select(Book).where(Book.deleted_at.is_(None)).order_by(Book.id.asc())).all():
        total += _rebuild_without_commit(db, book)
    commit(db)
    _LOGGER.info("regenerated joint permissions for %d entities", total)
    return total


def clear(db: Session, entity: Any) -> None:
    _clear_joint_permissions(db, entity_type_of(entity), int(entity.id))

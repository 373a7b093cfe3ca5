"""Field assignment shared by books, chapters and pages.

Entity types do not inherit behaviour from a common base class. Each type is
described by an :class:`EntityCapabilities` record naming the fields a caller
may assign, how slugs are scoped and how the next display priority is found.
The functions below take the entity together with a plain ``fields`` mapping
and apply whatever the capabilities allow, ignoring everything else. That
lets a caller pass a full attribute dump of another entity (as duplication
does) without leaking ids, owners or timestamps into the target.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from sqlmodel import Session, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.models.content import Book, Chapter, Page, Tag
from wikishelf.services import entity_store, permission_service
from wikishelf.services.permission_service import PermissionGrant
from wikishelf.services.unit_of_work import commit


@dataclass(frozen=True)
class EntityCapabilities:
    entity_type: str
    fields: tuple[str, ...]
    slug_fallback: str
    slug_scope: str | None = None
    last_priority: Callable[[Session, Any], int] | None = None
    supports_tags: bool = True


def _chapter_last_priority(db: Session, chapter: Chapter) -> int:
    return entity_store.last_chapter_priority(db, chapter.book_id, exclude_id=chapter.id)


def _page_last_priority(db: Session, page: Page) -> int:
    return entity_store.last_page_priority(db, page.chapter_id, exclude_id=page.id)


CAPABILITIES: dict[type, EntityCapabilities] = {
    Book: EntityCapabilities(
        entity_type="book",
        fields=("name", "description"),
        slug_fallback="book",
    ),
    Chapter: EntityCapabilities(
        entity_type="chapter",
        fields=("name", "description"),
        slug_fallback="chapter",
        slug_scope="book_id",
        last_priority=_chapter_last_priority,
    ),
    Page: EntityCapabilities(
        entity_type="page",
        fields=("name", "html"),
        slug_fallback="page",
        slug_scope="book_id",
        last_priority=_page_last_priority,
    ),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def capabilities_for(entity: Any) -> EntityCapabilities:
    caps = CAPABILITIES.get(type(entity))
    if caps is None:
        raise ValueError(f"unsupported entity: {entity!r}")
    return caps


def _read(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def normalize_tags(tags: Iterable[Any] | None) -> list[tuple[str, str]]:
    normalized: list[tuple[str, str]] = []
    for item in tags or []:
        name = str(_read(item, "name") or "").strip()
        if not name:
            continue
        value = str(_read(item, "value") or "").strip()
        normalized.append((name[:191], value[:191]))
    return normalized


def normalize_grants(permissions: Iterable[Any] | None) -> list[PermissionGrant] | None:
    if permissions is None:
        return None
    return [
        PermissionGrant(
            user_id=str(_read(item, "user_id") or ""),
            action=str(_read(item, "action") or ""),
        )
        for item in permissions
    ]


def _assign_fields(entity: Any, caps: EntityCapabilities, fields: Mapping[str, Any]) -> None:
    for name in caps.fields:
        if name not in fields or fields[name] is None:
            continue
        value = fields[name]
        if name == "name":
            value = str(value).strip()[:255] or getattr(entity, "name", "")
        setattr(entity, name, value)


def _refresh_slug(db: Session, entity: Any, caps: EntityCapabilities) -> None:
    scope = {caps.slug_scope: getattr(entity, caps.slug_scope)} if caps.slug_scope else None
    entity.slug = entity_store.unique_slug(
        db,
        type(entity),
        entity.name,
        fallback=caps.slug_fallback,
        scope=scope,
        exclude_id=entity.id,
    )


def list_tags(db: Session, entity: Any) -> list[Tag]:
    stmt = (
        select(Tag)
        .where(
            Tag.entity_type == capabilities_for(entity).entity_type,
            Tag.entity_id == int(entity.id),
        )
        .order_by(Tag.order.asc(), Tag.id.asc())
    )
    return db.exec(stmt).all()


def apply_tags(db: Session, entity: Any, tags: Iterable[Any] | None) -> list[Tag]:
    """Replace the entity's tags with fresh rows built from ``tags``."""
    caps = capabilities_for(entity)
    if not caps.supports_tags:
        return []
    for row in list_tags(db, entity):
        db.delete(row)
    created: list[Tag] = []
    for order, (name, value) in enumerate(normalize_tags(tags)):
        tag = Tag(
            entity_type=caps.entity_type,
            entity_id=int(entity.id),
            name=name,
            value=value,
            order=order,
        )
        db.add(tag)
        created.append(tag)
    commit(db)
    return created


def update_permissions(
    db: Session,
    entity: Any,
    restricted: bool,
    permissions: Iterable[Any] | None = None,
) -> None:
    permission_service.set_entity_permissions(db, entity, restricted, normalize_grants(permissions))
    permission_service.rebuild(db, entity)


def create(db: Session, principal: AuthPrincipal, entity: Any, fields: Mapping[str, Any]) -> Any:
    caps = capabilities_for(entity)
    entity.created_by = principal.user_id
    entity.updated_by = principal.user_id
    _assign_fields(entity, caps, fields)
    _refresh_slug(db, entity, caps)
    entity_store.save(db, entity)

    if fields.get("tags") is not None:
        apply_tags(db, entity, fields["tags"])
    if "restricted" in fields and fields["restricted"] is not None:
        permission_service.set_entity_permissions(
            db,
            entity,
            bool(fields["restricted"]),
            normalize_grants(fields.get("permissions")),
        )
    permission_service.rebuild(db, entity)
    return entity_store.refresh(db, entity)


def update(db: Session, principal: AuthPrincipal, entity: Any, fields: Mapping[str, Any]) -> Any:
    caps = capabilities_for(entity)
    previous_name = entity.name
    _assign_fields(entity, caps, fields)
    if entity.name != previous_name or not entity.slug:
        _refresh_slug(db, entity, caps)
    entity.updated_by = principal.user_id
    entity.updated_at = _utc_now()
    entity_store.save(db, entity)

    if fields.get("tags") is not None:
        apply_tags(db, entity, fields["tags"])
    if "restricted" in fields and fields["restricted"] is not None:
        update_permissions(db, entity, bool(fields["restricted"]), fields.get("permissions"))
    return entity_store.refresh(db, entity)


def publish_draft(db: Session, principal: AuthPrincipal, entity: Any, fields: Mapping[str, Any]) -> Any:
    """Apply the final field-set to a draft, clear its draft flag and rebuild permissions."""
    caps = capabilities_for(entity)
    _assign_fields(entity, caps, fields)
    if isinstance(entity, Chapter) and entity.source_chapter_id is None and fields.get("source_chapter_id"):
        entity.source_chapter_id = int(fields["source_chapter_id"])
    entity.draft = False
    entity.updated_by = principal.user_id
    entity.updated_at = _utc_now()
    if caps.last_priority is not None:
        entity.priority = caps.last_priority(db, entity) + 1
    _refresh_slug(db, entity, caps)
    entity_store.save(db, entity)

    if fields.get("tags") is not None:
        apply_tags(db, entity, fields["tags"])
    permission_service.rebuild(db, entity)
    return entity_store.refresh(db, entity)

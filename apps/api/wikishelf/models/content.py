from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Book(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(default="", max_length=255)
    slug: str = Field(default="", max_length=191, index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    restricted: bool = Field(default=False, nullable=False)
    created_by: str = Field(default="system", max_length=128)
    updated_by: str = Field(default="system", max_length=128)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Chapter(SQLModel, table=True):
    __table_args__ = (
        Index("ix_chapter_book_slug", "book_id", "slug"),
        Index("ix_chapter_book_priority", "book_id", "priority"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True, nullable=False)
    name: str = Field(default="", max_length=255)
    slug: str = Field(default="", max_length=191)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    priority: int = Field(default=0, nullable=False)
    draft: bool = Field(default=False, nullable=False, index=True)
    restricted: bool = Field(default=False, nullable=False)
    created_by: str = Field(default="system", max_length=128)
    updated_by: str = Field(default="system", max_length=128)
    source_chapter_id: Optional[int] = Field(default=None, foreign_key="chapter.id", index=True)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Page(SQLModel, table=True):
    __table_args__ = (Index("ix_page_chapter_priority", "chapter_id", "priority"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True, nullable=False)
    chapter_id: int = Field(foreign_key="chapter.id", index=True, nullable=False)
    name: str = Field(default="", max_length=255)
    slug: str = Field(default="", max_length=191)
    html: str = Field(default="", sa_column=Column(Text, nullable=False))
    priority: int = Field(default=0, nullable=False)
    draft: bool = Field(default=False, nullable=False, index=True)
    created_by: str = Field(default="system", max_length=128)
    updated_by: str = Field(default="system", max_length=128)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Tag(SQLModel, table=True):
    __table_args__ = (Index("ix_tag_entity", "entity_type", "entity_id", "order"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(max_length=32)
    entity_id: int = Field(index=True)
    name: str = Field(max_length=191, index=True)
    value: str = Field(default="", max_length=191)
    order: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)


class EntityPermission(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "user_id", "action", name="uq_entity_permission_grant"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(max_length=32, index=True)
    entity_id: int = Field(index=True)
    user_id: str = Field(max_length=128, index=True)
    action: str = Field(max_length=32)


class JointPermission(SQLModel, table=True):
    __table_args__ = (
        Index("ix_joint_permission_lookup", "entity_type", "entity_id", "action", "user_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(max_length=32)
    entity_id: int = Field(index=True)
    user_id: str = Field(max_length=128)
    action: str = Field(max_length=32)


class Deletion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    deletable_type: str = Field(max_length=32, index=True)
    deletable_id: int = Field(index=True)
    deleted_by: str = Field(default="system", max_length=128)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)

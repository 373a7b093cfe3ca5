from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TagInput(BaseModel):
    name: str = Field(min_length=1, max_length=191)
    value: str = Field(default="", max_length=191)


class TagRead(BaseModel):
    name: str
    value: str


class PermissionGrantInput(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    action: str = Field(pattern="^(view|update|delete|chapter-create|page-create)$")


class BookRead(BaseModel):
    id: int
    name: str
    slug: str
    description: str
    restricted: bool
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime


class BookCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=200000)
    tags: list[TagInput] = Field(default_factory=list, max_length=200)
    restricted: Optional[bool] = None
    permissions: Optional[list[PermissionGrantInput]] = Field(default=None, max_length=500)


class ChapterRead(BaseModel):
    id: int
    book_id: int
    name: str
    slug: str
    description: str
    priority: int
    draft: bool
    restricted: bool
    created_by: str
    updated_by: str
    source_chapter_id: Optional[int] = None
    tags: list[TagRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ChapterCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=200000)
    tags: list[TagInput] = Field(default_factory=list, max_length=200)


class ChapterUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=200000)
    tags: Optional[list[TagInput]] = Field(default=None, max_length=200)


class ChapterPermissionsRequest(BaseModel):
    restricted: bool = False
    permissions: Optional[list[PermissionGrantInput]] = Field(default=None, max_length=500)


class ChapterMoveRequest(BaseModel):
    parent: str = Field(min_length=1, max_length=64)


class ChapterMoveResult(BaseModel):
    chapter: ChapterRead
    parent: BookRead


class ChapterCopyRequest(BaseModel):
    parent: Optional[str] = Field(default=None, max_length=64)
    name: Optional[str] = Field(default=None, max_length=255)


class ChapterDeleteResult(BaseModel):
    deleted_chapter_id: int
    deletion_id: int


class PageRead(BaseModel):
    id: int
    book_id: int
    chapter_id: int
    name: str
    slug: str
    html: str
    priority: int
    draft: bool
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime


class PageCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    html: str = Field(default="", max_length=1000000)
    tags: list[TagInput] = Field(default_factory=list, max_length=200)

from wikishelf.models.content import (
    Book,
    Chapter,
    Deletion,
    EntityPermission,
    JointPermission,
    Page,
    Tag,
)

__all__ = [
    "Book",
    "Chapter",
    "Page",
    "Tag",
    "EntityPermission",
    "JointPermission",
    "Deletion",
]

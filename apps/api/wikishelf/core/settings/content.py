from __future__ import annotations

from typing import Any


class ContentSettings:
    """Proxy view for book/chapter/page behavior settings on root Settings."""

    FIELD_NAMES: tuple[str, ...] = (
        "chapter_draft_name",
        "page_draft_name",
        "slug_max_length",
        "duplicate_rollback_on_failure",
    )

    def __init__(self, root: Any) -> None:
        object.__setattr__(self, "_root", root)

    def __getattr__(self, name: str) -> Any:
        if name in self.FIELD_NAMES:
            return getattr(self._root, name)
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.FIELD_NAMES:
            setattr(self._root, name, value)
            return
        object.__setattr__(self, name, value)

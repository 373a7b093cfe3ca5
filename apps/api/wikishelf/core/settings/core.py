from __future__ import annotations

from typing import Any


class CoreSettings:
    """Proxy view for core/database/auth settings on root Settings."""

    FIELD_NAMES: tuple[str, ...] = (
        "api_prefix",
        "database_url",
        "database_echo",
        "auth_enabled",
        "auth_tokens",
        "auth_token",
        "auth_user",
        "auth_disabled_user",
        "auth_admin_users",
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

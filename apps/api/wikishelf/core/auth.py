from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Header, HTTPException, status

from wikishelf.core.config import settings


@dataclass(frozen=True)
class AuthPrincipal:
    user_id: str


def _parse_token_mapping(raw: str) -> dict[str, str]:
    token_to_user: dict[str, str] = {}
    for chunk in (raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        user_id, token = item.split(":", 1)
        user = user_id.strip()
        token_value = token.strip()
        if not user or not token_value:
            continue
        token_to_user[token_value] = user
    return token_to_user


def _resolve_token_mapping() -> dict[str, str]:
    mapped = _parse_token_mapping(settings.auth_tokens)
    if mapped:
        return mapped
    fallback_token = str(settings.auth_token or "").strip()
    fallback_user = str(settings.auth_user or "").strip()
    if fallback_token and fallback_user:
        return {fallback_token: fallback_user}
    return {}


def _parse_admin_users(raw: str) -> set[str]:
    return {item.strip() for item in (raw or "").split(",") if item.strip()}


def is_admin_principal(principal: AuthPrincipal) -> bool:
    admins = _parse_admin_users(settings.auth_admin_users)
    if not admins:
        return False
    if "*" in admins:
        return True
    return str(principal.user_id or "").strip() in admins


def get_current_principal(
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> AuthPrincipal:
    if not settings.auth_enabled:
        fallback_user = str(settings.auth_disabled_user or "local-user").strip() or "local-user"
        return AuthPrincipal(user_id=fallback_user)

    token_to_user = _resolve_token_mapping()
    if not token_to_user:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AUTH_TOKENS/AUTH_TOKEN is not configured",
        )

    auth_header = str(authorization or "").strip()
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing Authorization header")

    scheme, _, credential = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid Authorization header")

    user_id = token_to_user.get(credential.strip())
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid access token")

    return AuthPrincipal(user_id=user_id)

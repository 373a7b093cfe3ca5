import unittest

from fastapi import HTTPException

from wikishelf.core.auth import AuthPrincipal, get_current_principal, is_admin_principal
from wikishelf.core.config import settings


class AuthBehaviorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "auth_enabled": settings.auth_enabled,
            "auth_tokens": settings.auth_tokens,
            "auth_token": settings.auth_token,
            "auth_user": settings.auth_user,
            "auth_disabled_user": settings.auth_disabled_user,
            "auth_admin_users": settings.auth_admin_users,
        }

    def tearDown(self) -> None:
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def test_auth_disabled_uses_fallback_user(self) -> None:
        settings.auth_enabled = False
        settings.auth_disabled_user = "solo-author"
        principal = get_current_principal(None)
        self.assertEqual(principal.user_id, "solo-author")

    def test_auth_enabled_accepts_bearer_token_mapping(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = "alice:token-a,bob:token-b"
        settings.auth_token = ""
        settings.auth_user = ""

        principal = get_current_principal("Bearer token-b")
        self.assertEqual(principal.user_id, "bob")

    def test_auth_enabled_can_use_legacy_single_token_fallback(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = ""
        settings.auth_token = "legacy-token"
        settings.auth_user = "legacy-user"

        principal = get_current_principal("Bearer legacy-token")
        self.assertEqual(principal.user_id, "legacy-user")

    def test_auth_enabled_rejects_missing_or_invalid_token(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = "local-user:secret-token"
        settings.auth_token = ""
        settings.auth_user = ""

        with self.assertRaises(HTTPException) as missing_header:
            get_current_principal(None)
        self.assertEqual(missing_header.exception.status_code, 401)

        with self.assertRaises(HTTPException) as invalid_header:
            get_current_principal("Basic secret-token")
        self.assertEqual(invalid_header.exception.status_code, 401)

        with self.assertRaises(HTTPException) as invalid_token:
            get_current_principal("Bearer not-matching")
        self.assertEqual(invalid_token.exception.status_code, 401)

    def test_auth_enabled_without_token_config_fails_closed(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = ""
        settings.auth_token = ""
        settings.auth_user = ""

        with self.assertRaises(HTTPException) as missing_config:
            get_current_principal("Bearer any")
        self.assertEqual(missing_config.exception.status_code, 500)

    def test_admin_users_are_parsed_from_csv(self) -> None:
        settings.auth_admin_users = " root , ops "
        self.assertTrue(is_admin_principal(AuthPrincipal(user_id="root")))
        self.assertTrue(is_admin_principal(AuthPrincipal(user_id="ops")))
        self.assertFalse(is_admin_principal(AuthPrincipal(user_id="guest")))

    def test_admin_wildcard_and_empty_config(self) -> None:
        settings.auth_admin_users = ""
        self.assertFalse(is_admin_principal(AuthPrincipal(user_id="root")))

        settings.auth_admin_users = "*"
        self.assertTrue(is_admin_principal(AuthPrincipal(user_id="anyone")))


if __name__ == "__main__":
    unittest.main()

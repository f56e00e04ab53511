from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from cyberhr.errors import AuthenticationFailed, AuthorizationFailed
from cyberhr.models import UserRole
from cyberhr.security import (
    Caller,
    Capability,
    capability_for_role,
    create_access_token,
    decode_token,
    hash_password,
    password_policy_violation,
    require_capability,
    require_employee_profile,
    verify_password,
)
from cyberhr.settings import get_settings


class CapabilityTests(unittest.TestCase):
    def test_role_to_capability(self) -> None:
        self.assertIs(capability_for_role(UserRole.EMPLOYEE), Capability.SELF_ONLY)
        self.assertIs(capability_for_role(UserRole.EMPLOYER), Capability.PRIVILEGED)
        self.assertIs(capability_for_role(UserRole.ADMIN), Capability.PRIVILEGED)

    def test_require_capability(self) -> None:
        require_capability(Caller(user_id="u1", role=UserRole.EMPLOYER), Capability.PRIVILEGED)
        with self.assertRaises(AuthorizationFailed):
            require_capability(Caller(user_id="u2", role=UserRole.EMPLOYEE, employee_id=3), Capability.PRIVILEGED)

    def test_require_employee_profile(self) -> None:
        self.assertEqual(require_employee_profile(Caller(user_id="u1", role=UserRole.EMPLOYEE, employee_id=7)), 7)
        with self.assertRaises(AuthorizationFailed) as ctx:
            require_employee_profile(Caller(user_id="u1", role=UserRole.ADMIN))
        self.assertEqual(ctx.exception.code, "NO_EMPLOYEE_PROFILE")


class PasswordTests(unittest.TestCase):
    def test_policy(self) -> None:
        self.assertIsNone(password_policy_violation("Segura123"))
        self.assertIn("at least 8", password_policy_violation("Ab1"))
        self.assertIsNotNone(password_policy_violation("sinmayuscula1"))
        self.assertIsNotNone(password_policy_violation("SINMINUSCULA1"))
        self.assertIsNotNone(password_policy_violation("SinDigitos"))

    def test_hash_and_verify(self) -> None:
        password_hash = hash_password("Segura123")
        self.assertTrue(verify_password("Segura123", password_hash))
        self.assertFalse(verify_password("Segura124", password_hash))
        self.assertFalse(verify_password("Segura123", "not-a-bcrypt-hash"))


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_access_token_roundtrip_and_secret_mismatch(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "first-secret"}, clear=False):
            get_settings.cache_clear()
            token, expires_in, _claims = create_access_token(sub="user-1", email="ana@example.com")
            claims = decode_token(token, expected_type="access")
            self.assertEqual(claims["sub"], "user-1")
            self.assertEqual(expires_in, 60 * 60)
            with self.assertRaises(AuthenticationFailed):
                decode_token(token, expected_type="refresh")

        with patch.dict(os.environ, {"JWT_SECRET": "other-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(AuthenticationFailed):
                decode_token(token, expected_type="access")


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import json
import logging
import unittest

from cyberhr.logging_utils import REDACTED, JsonFormatter, redact


class JsonFormatterTests(unittest.TestCase):
    def _format(self, **extra) -> dict:  # type: ignore[no-untyped-def]
        record = logging.LogRecord(
            name="cyberhr.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="auth_login",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(JsonFormatter().format(record))

    def test_sensitive_top_level_fields_are_redacted(self) -> None:
        payload = self._format(password="Segura123", refresh_token="abc", email="ana@example.com")

        self.assertEqual(payload["message"], "auth_login")
        self.assertEqual(payload["logger"], "cyberhr.test")
        self.assertEqual(payload["password"], REDACTED)
        self.assertEqual(payload["refresh_token"], REDACTED)
        self.assertEqual(payload["email"], "ana@example.com")

    def test_nested_values_are_redacted(self) -> None:
        payload = self._format(details={"Authorization": "Bearer x", "items": [{"code": "123"}], "year": 2025})

        self.assertEqual(payload["details"]["Authorization"], REDACTED)
        self.assertEqual(payload["details"]["items"], [{"code": REDACTED}])
        self.assertEqual(payload["details"]["year"], 2025)

    def test_redact_leaves_scalars_alone(self) -> None:
        self.assertEqual(redact("password"), "password")
        self.assertEqual(redact(("a", {"token": "t"})), ["a", {"token": REDACTED}])


if __name__ == "__main__":
    unittest.main()

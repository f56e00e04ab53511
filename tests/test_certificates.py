from __future__ import annotations

import unittest
from unittest.mock import patch

from cyberhr.errors import AuthorizationFailed, NotFoundOrStateMismatch, UpstreamFailure, ValidationFailed
from cyberhr.models import LeaveStatus
from cyberhr.services.leaves import CERTIFICATE_MAX_BYTES, attach_certificate, remove_certificate
from cyberhr.settings import get_settings
from tests.helpers import (
    InMemoryObjectStore,
    caller_for,
    create_employee,
    create_leave_request,
    create_leave_type,
    create_user,
    make_session_factory,
)


class CertificateTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        self.db = make_session_factory()()
        self.store = InMemoryObjectStore()
        self.user = create_user(self.db, email="ana@example.com")
        self.employee = create_employee(self.db, self.user, employee_code="EMP-001")
        self.caller = caller_for(self.user, self.employee)
        self.leave_type = create_leave_type(self.db, name="Enfermedad", max_days_per_year=30)
        self.approved = create_leave_request(self.db, self.employee, self.leave_type, status=LeaveStatus.APPROVED)

    def tearDown(self) -> None:
        self.db.close()
        get_settings.cache_clear()

    def _attach(self, leave_id: int | None = None, *, content_type: str = "application/pdf", data: bytes = b"%PDF"):  # type: ignore[no-untyped-def]
        return attach_certificate(
            self.db,
            self.caller,
            self.store,
            leave_request_id=leave_id if leave_id is not None else self.approved.id,
            content_type=content_type,
            data=data,
        )

    def test_attach_records_public_url(self) -> None:
        with patch("cyberhr.services.leaves.time") as fake_time:
            fake_time.time.return_value = 1_700_000_000.5
            leave = self._attach(content_type="image/png", data=b"png-bytes")

        expected_path = f"{self.user.id}/{self.approved.id}_1700000000500.png"
        self.assertEqual(leave.certificate_url, f"https://files.example.test/licencias/{expected_path}")
        self.assertEqual(self.store.objects[("licencias", expected_path)], b"png-bytes")

    def test_reattach_replaces_previous_object(self) -> None:
        with patch("cyberhr.services.leaves.time") as fake_time:
            fake_time.time.side_effect = [1_700_000_000.0, 1_700_000_060.0]
            self._attach(data=b"first")
            leave = self._attach(data=b"second")

        first_path = f"{self.user.id}/{self.approved.id}_1700000000000.pdf"
        second_path = f"{self.user.id}/{self.approved.id}_1700000060000.pdf"
        self.assertNotIn(("licencias", first_path), self.store.objects)
        self.assertEqual(self.store.objects[("licencias", second_path)], b"second")
        self.assertTrue(leave.certificate_url.endswith(second_path))

    def test_attach_only_on_approved_requests(self) -> None:
        for status in (LeaveStatus.PENDING, LeaveStatus.REJECTED, LeaveStatus.CANCELLED):
            leave = create_leave_request(self.db, self.employee, self.leave_type, status=status)
            with self.subTest(status=status.value):
                with self.assertRaises(NotFoundOrStateMismatch) as ctx:
                    self._attach(leave.id)
                self.assertEqual(ctx.exception.status_code, 409)
                self.assertEqual(ctx.exception.code, "CERTIFICATE_NOT_ALLOWED")
        self.assertEqual(self.store.objects, {})

    def test_attach_validates_file(self) -> None:
        cases = [
            ({"content_type": "text/plain"}, "INVALID_FILE_TYPE"),
            ({"data": b""}, "EMPTY_FILE"),
            ({"data": b"x" * (CERTIFICATE_MAX_BYTES + 1)}, "FILE_TOO_LARGE"),
        ]
        for overrides, expected_code in cases:
            with self.subTest(code=expected_code):
                with self.assertRaises(ValidationFailed) as ctx:
                    self._attach(**overrides)
                self.assertEqual(ctx.exception.code, expected_code)
        self.assertEqual(self.store.objects, {})

    def test_attach_refuses_someone_elses_request(self) -> None:
        other_user = create_user(self.db, email="luis@example.com")
        other_employee = create_employee(self.db, other_user, employee_code="EMP-002")
        foreign = create_leave_request(self.db, other_employee, self.leave_type, status=LeaveStatus.APPROVED)

        with self.assertRaises(NotFoundOrStateMismatch):
            self._attach(foreign.id)

    def test_attach_requires_employee_profile(self) -> None:
        self.caller = caller_for(self.user)
        with self.assertRaises(AuthorizationFailed):
            self._attach()

    def test_upload_failure_leaves_url_unset(self) -> None:
        self.store.fail_upload = True
        with self.assertRaises(UpstreamFailure):
            self._attach()
        self.db.refresh(self.approved)
        self.assertIsNone(self.approved.certificate_url)

    def test_remove_deletes_object_then_clears_url(self) -> None:
        leave = self._attach()
        path = leave.certificate_url.split("/licencias/", 1)[1]

        leave = remove_certificate(self.db, self.caller, self.store, leave_request_id=self.approved.id)

        self.assertIsNone(leave.certificate_url)
        self.assertIn(("licencias", path), self.store.removed)
        self.assertEqual(self.store.objects, {})

    def test_remove_failure_keeps_url(self) -> None:
        leave = self._attach()
        url = leave.certificate_url
        self.store.fail_remove = True

        with self.assertRaises(UpstreamFailure):
            remove_certificate(self.db, self.caller, self.store, leave_request_id=self.approved.id)

        self.db.refresh(self.approved)
        self.assertEqual(self.approved.certificate_url, url)

    def test_remove_without_certificate(self) -> None:
        with self.assertRaises(NotFoundOrStateMismatch):
            remove_certificate(self.db, self.caller, self.store, leave_request_id=self.approved.id)

    def test_remove_clears_url_it_cannot_resolve(self) -> None:
        self.approved.certificate_url = "https://elsewhere.example.test/file.pdf"
        self.db.commit()

        leave = remove_certificate(self.db, self.caller, self.store, leave_request_id=self.approved.id)

        self.assertIsNone(leave.certificate_url)
        self.assertEqual(self.store.removed, [])


if __name__ == "__main__":
    unittest.main()

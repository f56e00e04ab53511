from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import select

from cyberhr.errors import AuthorizationFailed
from cyberhr.models import (
    LeaveRequest,
    LeaveRequestSource,
    LeaveStatus,
    UserRole,
    WhatsAppConversation,
    WhatsAppMessageType,
)
from cyberhr.services.whatsapp import find_user_by_phone, ingest_message, list_conversations, phone_digits
from cyberhr.settings import get_settings
from tests.helpers import caller_for, create_employee, create_leave_type, create_user, make_session_factory


class WhatsAppIngestTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        self.db = make_session_factory()()
        self.user = create_user(self.db, email="ana@example.com", phone="+56 9 1234-5678")
        self.employee = create_employee(self.db, self.user, employee_code="EMP-001")
        self.leave_type = create_leave_type(self.db, name="Vacaciones")

    def tearDown(self) -> None:
        self.db.close()
        get_settings.cache_clear()

    def _conversations(self) -> list[WhatsAppConversation]:
        return list(self.db.scalars(select(WhatsAppConversation).order_by(WhatsAppConversation.id)).all())

    def test_phone_matching_ignores_formatting(self) -> None:
        self.assertEqual(phone_digits("+56 (9) 1234-5678"), "56912345678")
        self.assertEqual(find_user_by_phone(self.db, "56912345678").id, self.user.id)
        self.assertIsNone(find_user_by_phone(self.db, "+56 9 0000 0000"))
        self.assertIsNone(find_user_by_phone(self.db, "---"))

    def test_plain_message_is_only_logged(self) -> None:
        result = ingest_message(self.db, phone_number="+56912345678", message_text="hola")

        self.assertIsNone(result.leave_request)
        self.assertIsNone(result.reply)
        rows = self._conversations()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].message_type, WhatsAppMessageType.INCOMING)

    def test_complete_extraction_submits_leave(self) -> None:
        result = ingest_message(
            self.db,
            phone_number=" +56 9 1234 5678 ",
            message_text="quiero vacaciones del 3 al 5 de marzo",
            extracted_data={
                "leave_type": "vacaciones",
                "start_date": "2025-03-03",
                "end_date": "2025-03-05",
                "reason": "viaje",
            },
        )

        leave = result.leave_request
        self.assertIsNotNone(leave)
        self.assertEqual(leave.employee_id, self.employee.id)
        self.assertEqual(leave.start_date, date(2025, 3, 3))
        self.assertEqual(leave.days_requested, 3)
        self.assertEqual(leave.status, LeaveStatus.PENDING)
        self.assertEqual(leave.created_via, LeaveRequestSource.WHATSAPP)
        self.assertEqual(leave.reason, "viaje")

        incoming, outgoing = self._conversations()
        self.assertEqual(incoming.phone_number, "+56 9 1234 5678")
        self.assertEqual(incoming.leave_request_id, leave.id)
        self.assertEqual(outgoing.message_type, WhatsAppMessageType.OUTGOING)
        self.assertEqual(outgoing.leave_request_id, leave.id)
        self.assertIn("pendiente de aprobación", result.reply)

    def test_leave_type_by_id(self) -> None:
        result = ingest_message(
            self.db,
            phone_number="56912345678",
            message_text="licencia",
            extracted_data={
                "leave_type": str(self.leave_type.id),
                "start_date": "2025-03-03",
                "end_date": "2025-03-03",
            },
        )
        self.assertEqual(result.leave_request.leave_type_id, self.leave_type.id)

    def test_unknown_sender_gets_reply_and_no_leave(self) -> None:
        result = ingest_message(
            self.db,
            phone_number="+1 555 0100",
            message_text="vacaciones",
            extracted_data={"leave_type": "Vacaciones", "start_date": "2025-03-03", "end_date": "2025-03-05"},
        )

        self.assertIsNone(result.leave_request)
        self.assertIn("No encontramos", result.reply)
        self.assertIsNone(self.db.scalar(select(LeaveRequest)))

    def test_refusals_are_answered(self) -> None:
        cases = [
            ({"leave_type": "Paternidad", "start_date": "2025-03-03", "end_date": "2025-03-05"}, "tipo de licencia"),
            ({"leave_type": "Vacaciones", "start_date": "3 de marzo", "end_date": "2025-03-05"}, "AAAA-MM-DD"),
            ({"leave_type": "Vacaciones", "start_date": "2025-03-05", "end_date": "2025-03-03"}, "No pudimos"),
        ]
        for extracted, expected in cases:
            with self.subTest(expected=expected):
                result = ingest_message(
                    self.db,
                    phone_number="+56912345678",
                    message_text="licencia",
                    extracted_data=extracted,
                )
                self.assertIsNone(result.leave_request)
                self.assertIn(expected, result.reply)
        self.assertIsNone(self.db.scalar(select(LeaveRequest)))

    def test_listing_requires_privileged_caller(self) -> None:
        ingest_message(self.db, phone_number="+56912345678", message_text="hola")
        ingest_message(self.db, phone_number="+1 555 0100", message_text="hello")
        admin = create_user(self.db, email="admin@example.com", role=UserRole.ADMIN)

        with self.assertRaises(AuthorizationFailed):
            list_conversations(self.db, caller_for(self.user, self.employee))

        self.assertEqual(len(list_conversations(self.db, caller_for(admin))), 2)
        filtered = list_conversations(self.db, caller_for(admin), phone_number="+56912345678")
        self.assertEqual([row.message_text for row in filtered], ["hola"])


if __name__ == "__main__":
    unittest.main()

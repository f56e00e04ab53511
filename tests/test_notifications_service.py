from __future__ import annotations

import os
import unittest
from datetime import date
from unittest.mock import MagicMock, patch

from cyberhr.errors import NotFoundOrStateMismatch
from cyberhr.models import LeaveStatus, Notification
from cyberhr.services.notifications import (
    NOTIFICATION_TYPE_LEAVE_REQUEST,
    EmailChannel,
    NotificationMessage,
    dispatch,
    list_notifications,
    mark_notification_read,
    render_leave_status_email,
    send_email_safely,
)
from cyberhr.settings import get_settings
from tests.helpers import RecordingChannel, create_user, make_session_factory


class RenderLeaveStatusEmailTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_approved_body(self) -> None:
        with patch.dict(os.environ, {"APP_PUBLIC_URL": "https://hr.example.test/"}, clear=False):
            get_settings.cache_clear()
            plain, html_body = render_leave_status_email(
                employee_name="Ana",
                status=LeaveStatus.APPROVED,
                leave_type="Vacaciones",
                start_date=date(2025, 2, 3),
                end_date=date(2025, 2, 5),
            )

        self.assertIn("ha sido aprobada", plain)
        self.assertIn("Desde: 2025-02-03", plain)
        self.assertIn("Hasta: 2025-02-05", plain)
        self.assertIn("https://hr.example.test/employee/leaves", plain)
        self.assertNotIn("Motivo", plain)
        self.assertIn("APROBADA", html_body)

    def test_rejected_body_escapes_reason(self) -> None:
        plain, html_body = render_leave_status_email(
            employee_name="Ana <b>",
            status=LeaveStatus.REJECTED,
            leave_type="Personal",
            rejection_reason="Fechas <cierre>",
        )

        self.assertIn("Motivo del rechazo: Fechas <cierre>", plain)
        self.assertIn("Fechas &lt;cierre&gt;", html_body)
        self.assertIn("Ana &lt;b&gt;", html_body)
        self.assertIn("RECHAZADA", html_body)


class EmailChannelTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def _channel(self, **env: str) -> EmailChannel:
        with patch.dict(os.environ, env, clear=False):
            get_settings.cache_clear()
            return EmailChannel()

    def test_not_configured_channel_does_not_connect(self) -> None:
        channel = self._channel(SMTP_HOST="", EMAIL_FROM="")
        with patch("cyberhr.services.notifications.smtplib.SMTP") as smtp_cls:
            result = channel.send(NotificationMessage(recipients=["ana@example.com"], subject="s", body="b"))

        self.assertEqual(result["mode"], "not_configured")
        smtp_cls.assert_not_called()
        self.assertEqual(channel.config_status()["missing_fields"], ["SMTP_HOST", "EMAIL_FROM"])

    def test_disabled_channel(self) -> None:
        channel = self._channel(NOTIFICATION_EMAIL_ENABLED="false")
        result = channel.send(NotificationMessage(recipients=["ana@example.com"], subject="s", body="b"))
        self.assertEqual(result["mode"], "disabled")

    def test_configured_channel_sends_over_smtp(self) -> None:
        channel = self._channel(
            SMTP_HOST="smtp.example.test",
            EMAIL_FROM="rrhh@example.test",
            SMTP_USER="mailer",
            SMTP_PASS="secret",
        )
        smtp_client = MagicMock()
        with patch("cyberhr.services.notifications.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = smtp_client
            result = channel.send(
                NotificationMessage(
                    recipients=["ana@example.com", " "],
                    subject="Licencia Aprobada",
                    body="plain",
                    html_body="<p>html</p>",
                )
            )

        self.assertEqual(result, {"mode": "sent", "sent": 1, "recipients": ["ana@example.com"]})
        smtp_client.starttls.assert_called_once()
        smtp_client.login.assert_called_once_with("mailer", "secret")
        sent_message = smtp_client.send_message.call_args.args[0]
        self.assertEqual(sent_message["To"], "ana@example.com")
        self.assertEqual(sent_message["Subject"], "Licencia Aprobada")

    def test_send_email_safely_swallows_channel_errors(self) -> None:
        with self.assertLogs("cyberhr.notifications", level="ERROR"):
            result = send_email_safely(
                RecordingChannel(fail=True),
                NotificationMessage(recipients=["ana@example.com"], subject="s", body="b"),
            )
        self.assertEqual(result["mode"], "send_exception")
        self.assertIn("smtp connection refused", result["error"])


class NotificationStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.user = create_user(self.db, email="ana@example.com")
        self.other = create_user(self.db, email="luis@example.com")

    def tearDown(self) -> None:
        self.db.close()

    def _dispatch(self, user, channel=None, **kwargs):  # type: ignore[no-untyped-def]
        return dispatch(
            self.db,
            channel or RecordingChannel(),
            user=user,
            title=kwargs.get("title", "Licencia Aprobada"),
            message=kwargs.get("message", "Tu solicitud ha sido aprobada."),
            notification_type=NOTIFICATION_TYPE_LEAVE_REQUEST,
            email=kwargs.get("email"),
        )

    def test_dispatch_writes_in_app_row_without_email(self) -> None:
        result = self._dispatch(self.user)

        self.assertTrue(result.delivered)
        self.assertEqual(result.email_mode, "not_attempted")
        rows = list_notifications(self.db, user_id=self.user.id)
        self.assertEqual([row.title for row in rows], ["Licencia Aprobada"])
        self.assertFalse(rows[0].is_read)

    def test_dispatch_reports_email_failure_but_keeps_in_app_row(self) -> None:
        result = self._dispatch(
            self.user,
            RecordingChannel(fail=True),
            email=NotificationMessage(recipients=[self.user.email], subject="s", body="b"),
        )

        self.assertTrue(result.in_app)
        self.assertFalse(result.delivered)
        self.assertEqual(result.to_dict()["email_mode"], "send_exception")
        self.assertEqual(len(list_notifications(self.db, user_id=self.user.id)), 1)

    def test_list_unread_and_mark_read(self) -> None:
        self._dispatch(self.user, title="Primera")
        self._dispatch(self.user, title="Segunda")
        self._dispatch(self.other, title="Ajena")
        first = next(row for row in list_notifications(self.db, user_id=self.user.id) if row.title == "Primera")

        mark_notification_read(self.db, user_id=self.user.id, notification_id=first.id)

        unread = list_notifications(self.db, user_id=self.user.id, unread_only=True)
        self.assertEqual([row.title for row in unread], ["Segunda"])
        self.assertEqual(len(list_notifications(self.db, user_id=self.user.id)), 2)

    def test_cannot_mark_someone_elses_notification(self) -> None:
        self._dispatch(self.other, title="Ajena")
        foreign = self.db.query(Notification).filter_by(user_id=self.other.id).one()

        with self.assertRaises(NotFoundOrStateMismatch):
            mark_notification_read(self.db, user_id=self.user.id, notification_id=foreign.id)


if __name__ == "__main__":
    unittest.main()

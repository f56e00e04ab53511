from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import date
from email.message import EmailMessage
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from cyberhr.errors import NotFoundOrStateMismatch
from cyberhr.models import LeaveStatus, Notification, User
from cyberhr.settings import get_public_base_url, get_settings

NOTIFICATION_TYPE_LEAVE_REQUEST = "leave_request"

logger = logging.getLogger("cyberhr.notifications")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str
    html_body: str | None = None


@dataclass(slots=True)
class DispatchResult:
    in_app: bool = False
    email_mode: str = "not_attempted"
    errors: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.in_app and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivered": self.delivered,
            "in_app": self.in_app,
            "email_mode": self.email_mode,
            "error": "; ".join(self.errors) if self.errors else None,
        }


class NotificationChannel:
    configured: bool = False

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        raise NotImplementedError


class EmailChannel(NotificationChannel):
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = bool(settings.notification_email_enabled)
        self.smtp_host = (settings.smtp_host or "").strip()
        self.smtp_port = int(settings.smtp_port or 587)
        self.smtp_user = (settings.smtp_user or "").strip()
        self.smtp_pass = settings.smtp_pass or ""
        self.smtp_from = (settings.email_from or "").strip()
        self.smtp_use_tls = bool(settings.smtp_use_tls)
        self.configured = bool(self.smtp_host and self.smtp_from)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        recipients = [item.strip() for item in message.recipients if item and item.strip()]
        if not self.enabled:
            logger.info(
                "email_channel_disabled",
                extra={"subject": message.subject, "recipient_count": len(recipients)},
            )
            return {"mode": "disabled", "sent": 0, "recipients": recipients}
        if not recipients:
            logger.info("email_channel_skip_no_recipients", extra={"subject": message.subject})
            return {"mode": "skipped_no_recipients", "sent": 0, "recipients": []}
        if not self.configured:
            logger.info(
                "email_channel_placeholder_send",
                extra={"subject": message.subject, "recipients": recipients},
            )
            return {"mode": "not_configured", "sent": 0, "recipients": recipients}

        email_message = EmailMessage()
        email_message["From"] = self.smtp_from
        email_message["To"] = ", ".join(recipients)
        email_message["Subject"] = message.subject
        email_message.set_content(message.body)
        if message.html_body:
            email_message.add_alternative(message.html_body, subtype="html")

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as smtp_client:
            if self.smtp_use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_pass)
            smtp_client.send_message(email_message)
        return {"mode": "sent", "sent": len(recipients), "recipients": recipients}

    def config_status(self) -> dict[str, Any]:
        missing_fields: list[str] = []
        if not self.smtp_host:
            missing_fields.append("SMTP_HOST")
        if not self.smtp_from:
            missing_fields.append("EMAIL_FROM")
        return {
            "enabled": self.enabled,
            "configured": self.configured,
            "smtp_use_tls": self.smtp_use_tls,
            "missing_fields": missing_fields,
        }


def get_email_channel() -> NotificationChannel:
    return EmailChannel()


def send_email_safely(channel: NotificationChannel, message: NotificationMessage) -> dict[str, Any]:
    try:
        return channel.send(message)
    except Exception as exc:
        logger.exception(
            "notification_email_send_failed",
            extra={"subject": message.subject, "recipients": list(message.recipients)},
        )
        return {
            "mode": "send_exception",
            "sent": 0,
            "recipients": list(message.recipients),
            "error": str(exc)[:500],
        }


def render_leave_status_email(
    *,
    employee_name: str,
    status: LeaveStatus,
    leave_type: str,
    start_date: date | None = None,
    end_date: date | None = None,
    rejection_reason: str | None = None,
) -> tuple[str, str]:
    """Return ``(plain_text, html)`` bodies for a leave decision email."""
    approved = status is LeaveStatus.APPROVED
    title = "Solicitud de licencia APROBADA" if approved else "Solicitud de licencia RECHAZADA"
    color = "#16a34a" if approved else "#dc2626"
    verdict = "aprobada" if approved else "rechazada"
    leaves_url = f"{get_public_base_url()}/employee/leaves"

    lines = [
        f"Hola {employee_name},",
        f"Tu solicitud de licencia de tipo {leave_type} ha sido {verdict}.",
    ]
    if start_date:
        lines.append(f"Desde: {start_date.isoformat()}")
    if end_date:
        lines.append(f"Hasta: {end_date.isoformat()}")
    if not approved and rejection_reason:
        lines.append(f"Motivo del rechazo: {rejection_reason}")
    lines.append(f"Puedes ver el detalle en {leaves_url}")
    plain_text = "\n".join(lines)

    parts = [
        '<div style="font-family:system-ui,sans-serif;line-height:1.5;color:#111827">',
        f'<h2 style="margin:0 0 8px 0;color:{color}">{title}</h2>',
        f"<p>Hola <b>{html.escape(employee_name)}</b>,</p>",
        f"<p>Tu solicitud de licencia de tipo <b>{html.escape(leave_type)}</b> ha sido <b>{verdict}</b>.</p>",
    ]
    if start_date:
        parts.append(f"<p><b>Desde:</b> {start_date.isoformat()}</p>")
    if end_date:
        parts.append(f"<p><b>Hasta:</b> {end_date.isoformat()}</p>")
    if not approved and rejection_reason:
        parts.append(f"<p><b>Motivo del rechazo:</b> {html.escape(rejection_reason)}</p>")
    parts.append(f'<p>Puedes ver el detalle ingresando a <a href="{leaves_url}">{leaves_url}</a>.</p>')
    parts.append('<hr style="margin:16px 0;border:none;border-top:1px solid #e5e7eb" />')
    parts.append('<p style="font-size:12px;color:#6b7280">Este es un mensaje automático de CyberHR.</p>')
    parts.append("</div>")
    return plain_text, "".join(parts)


def dispatch(
    db: Session,
    channel: NotificationChannel,
    *,
    user: User,
    title: str,
    message: str,
    notification_type: str,
    email: NotificationMessage | None = None,
) -> DispatchResult:
    """Write the in-app row and send the email. Never raises."""
    result = DispatchResult()
    try:
        db.add(
            Notification(
                user_id=user.id,
                title=title,
                message=message,
                type=notification_type,
            )
        )
        db.commit()
        result.in_app = True
    except Exception:
        db.rollback()
        logger.exception(
            "notification_in_app_write_failed",
            extra={"user_id": user.id, "notification_type": notification_type},
        )
        result.errors.append("In-app notification could not be saved.")

    if email is not None:
        send_result = send_email_safely(channel, email)
        result.email_mode = str(send_result.get("mode") or "unknown")
        if result.email_mode == "send_exception":
            result.errors.append("Notification email could not be sent.")

    logger.info(
        "notification_dispatched",
        extra={
            "user_id": user.id,
            "notification_type": notification_type,
            "in_app": result.in_app,
            "email_mode": result.email_mode,
        },
    )
    return result


def list_notifications(db: Session, *, user_id: str, unread_only: bool = False) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return list(db.scalars(stmt).all())


def mark_notification_read(db: Session, *, user_id: str, notification_id: int) -> Notification:
    notification = db.scalar(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    if notification is None:
        raise NotFoundOrStateMismatch("Notification not found.")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification

"""WhatsApp bot ingestion.

The bot posts messages whose leave details were already extracted upstream.
Every inbound message is logged; a complete extraction becomes a regular leave
submission on behalf of the employee owning the sending phone number.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cyberhr.errors import ApiError
from cyberhr.models import (
    LeaveRequest,
    LeaveRequestSource,
    LeaveType,
    User,
    WhatsAppConversation,
    WhatsAppMessageType,
)
from cyberhr.security import Caller, Capability, require_capability
from cyberhr.services.leaves import submit_leave_request

logger = logging.getLogger("cyberhr.whatsapp")

REQUIRED_LEAVE_KEYS = ("leave_type", "start_date", "end_date")
_NON_DIGITS = re.compile(r"\D")


@dataclass(slots=True)
class IngestResult:
    conversation: WhatsAppConversation
    leave_request: LeaveRequest | None = None
    reply: str | None = None


def phone_digits(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def _log_message(
    db: Session,
    *,
    phone_number: str,
    message_text: str,
    message_type: WhatsAppMessageType,
    extracted_data: dict[str, Any] | None = None,
    leave_request_id: int | None = None,
) -> WhatsAppConversation:
    row = WhatsAppConversation(
        phone_number=phone_number,
        message_text=message_text,
        message_type=message_type,
        extracted_data=extracted_data,
        leave_request_id=leave_request_id,
        processed_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def find_user_by_phone(db: Session, phone_number: str) -> User | None:
    digits = phone_digits(phone_number)
    if not digits:
        return None
    for user in db.scalars(select(User).where(User.phone.is_not(None))).all():
        if phone_digits(user.phone) == digits:
            return user
    return None


def _resolve_leave_type(db: Session, raw: Any) -> LeaveType | None:
    if isinstance(raw, int) or (isinstance(raw, str) and raw.strip().isdigit()):
        return db.get(LeaveType, int(raw))
    name = str(raw or "").strip().lower()
    if not name:
        return None
    return db.scalar(select(LeaveType).where(func.lower(LeaveType.name) == name))


def _parse_date(raw: Any) -> date | None:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        return None


def _reply(db: Session, result: IngestResult, phone_number: str, text: str) -> IngestResult:
    _log_message(
        db,
        phone_number=phone_number,
        message_text=text,
        message_type=WhatsAppMessageType.OUTGOING,
        leave_request_id=result.leave_request.id if result.leave_request is not None else None,
    )
    result.reply = text
    return result


def ingest_message(
    db: Session,
    *,
    phone_number: str,
    message_text: str,
    extracted_data: dict[str, Any] | None = None,
) -> IngestResult:
    phone_number = phone_number.strip()
    conversation = _log_message(
        db,
        phone_number=phone_number,
        message_text=message_text,
        message_type=WhatsAppMessageType.INCOMING,
        extracted_data=extracted_data,
    )
    result = IngestResult(conversation=conversation)
    logger.info(
        "whatsapp_message_received",
        extra={"conversation_id": conversation.id, "has_extraction": bool(extracted_data)},
    )

    data = extracted_data or {}
    if not all(data.get(key) for key in REQUIRED_LEAVE_KEYS):
        return result

    user = find_user_by_phone(db, phone_number)
    if user is None or user.employee is None:
        logger.info("whatsapp_sender_unknown", extra={"conversation_id": conversation.id})
        return _reply(db, result, phone_number, "No encontramos un empleado registrado con este número.")

    leave_type = _resolve_leave_type(db, data.get("leave_type"))
    if leave_type is None:
        return _reply(db, result, phone_number, "No reconocemos el tipo de licencia indicado.")

    start_date = _parse_date(data.get("start_date"))
    end_date = _parse_date(data.get("end_date"))
    if start_date is None or end_date is None:
        return _reply(db, result, phone_number, "Las fechas indicadas no son válidas (usa AAAA-MM-DD).")

    caller = Caller(user_id=user.id, role=user.role, employee_id=user.employee.id)
    try:
        leave = submit_leave_request(
            db,
            caller,
            employee_id=user.employee.id,
            leave_type_id=leave_type.id,
            start_date=start_date,
            end_date=end_date,
            reason=str(data.get("reason") or "").strip() or None,
            source=LeaveRequestSource.WHATSAPP,
        )
    except ApiError as exc:
        logger.info(
            "whatsapp_leave_submission_refused",
            extra={"conversation_id": conversation.id, "error_code": exc.code},
        )
        return _reply(db, result, phone_number, f"No pudimos registrar tu solicitud: {exc.message}")

    conversation.leave_request_id = leave.id
    db.commit()
    db.refresh(conversation)
    result.leave_request = leave
    return _reply(
        db,
        result,
        phone_number,
        f"Tu solicitud de {leave_type.name} del {start_date.isoformat()} al {end_date.isoformat()} "
        f"({leave.days_requested} días) fue registrada y está pendiente de aprobación.",
    )


def list_conversations(
    db: Session,
    caller: Caller,
    *,
    phone_number: str | None = None,
    limit: int = 200,
) -> list[WhatsAppConversation]:
    require_capability(caller, Capability.PRIVILEGED)
    stmt = select(WhatsAppConversation).order_by(
        WhatsAppConversation.processed_at.desc(),
        WhatsAppConversation.id.desc(),
    )
    if phone_number:
        stmt = stmt.where(WhatsAppConversation.phone_number == phone_number.strip())
    return list(db.scalars(stmt.limit(limit)).all())

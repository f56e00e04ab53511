from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from cyberhr.models import AuditActorType, AuditLog, UserRole
from cyberhr.security import Caller

logger = logging.getLogger("cyberhr.audit")

_ROLE_ACTOR_TYPES = {
    UserRole.EMPLOYEE: AuditActorType.EMPLOYEE,
    UserRole.EMPLOYER: AuditActorType.EMPLOYER,
    UserRole.ADMIN: AuditActorType.ADMIN,
}


def actor_type_for_role(role: UserRole | None) -> AuditActorType:
    if role is None:
        return AuditActorType.SYSTEM
    return _ROLE_ACTOR_TYPES.get(role, AuditActorType.SYSTEM)


def log_audit(
    db: Session,
    *,
    actor: Caller | None,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    """Record a workflow mutation.

    ``actor=None`` records a system action (e.g. the WhatsApp webhook). A failed
    audit write is logged and swallowed so it never undoes the step it records.
    """
    actor_type = actor_type_for_role(actor.role if actor is not None else None)
    actor_id = actor.user_id if actor is not None else "system"
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": audit.entity_id,
            "success": success,
            "details": details or {},
        },
    )

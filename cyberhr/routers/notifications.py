from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cyberhr.db import get_db
from cyberhr.dependencies import get_current_caller
from cyberhr.schemas import NotificationRead
from cyberhr.security import Caller
from cyberhr.services.notifications import list_notifications, mark_notification_read

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRead])
def get_notifications(
    unread_only: bool = Query(default=False),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    rows = list_notifications(db, user_id=caller.user_id, unread_only=unread_only)
    return [NotificationRead.model_validate(item) for item in rows]


@router.post("/{notification_id}/read", response_model=NotificationRead)
def read_notification(
    notification_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> NotificationRead:
    notification = mark_notification_read(db, user_id=caller.user_id, notification_id=notification_id)
    return NotificationRead.model_validate(notification)

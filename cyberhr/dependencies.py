from __future__ import annotations

import secrets

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from cyberhr.db import get_db
from cyberhr.errors import AuthenticationFailed
from cyberhr.models import User
from cyberhr.security import Caller
from cyberhr.services import identity
from cyberhr.services.notifications import NotificationChannel, get_email_channel
from cyberhr.settings import get_settings
from cyberhr.storage import ObjectStore, get_object_store

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Caller:
    """Resolve the bearer token to a caller; the role is read from the ``users`` row."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationFailed("Missing bearer token.")

    account = identity.get_user(db, credentials.credentials)
    user = db.get(User, account.id)
    if user is None:
        raise AuthenticationFailed("No user profile is linked to this account.", code="NO_PROFILE")

    caller = Caller(
        user_id=user.id,
        role=user.role,
        employee_id=user.employee.id if user.employee is not None else None,
    )
    request.state.actor = user.role.value
    request.state.actor_id = user.id
    request.state.employee_id = caller.employee_id
    return caller


def get_store() -> ObjectStore:
    return get_object_store()


def get_notification_channel() -> NotificationChannel:
    return get_email_channel()


def require_whatsapp_token(x_whatsapp_token: str | None = Header(default=None)) -> None:
    expected = get_settings().whatsapp_verify_token
    if not expected or not x_whatsapp_token:
        raise AuthenticationFailed("Missing webhook token.")
    if not secrets.compare_digest(x_whatsapp_token, expected):
        raise AuthenticationFailed("Invalid webhook token.")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)

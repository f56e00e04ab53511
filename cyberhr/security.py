from __future__ import annotations

import enum
import re
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from cyberhr.errors import ApiError, AuthenticationFailed, AuthorizationFailed
from cyberhr.models import UserRole
from cyberhr.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)

PASSWORD_MIN_LENGTH = 8
_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")


class Capability(str, enum.Enum):
    PRIVILEGED = "PRIVILEGED"
    SELF_ONLY = "SELF_ONLY"


def capability_for_role(role: UserRole) -> Capability:
    if role in (UserRole.EMPLOYER, UserRole.ADMIN):
        return Capability.PRIVILEGED
    return Capability.SELF_ONLY


@dataclass(frozen=True, slots=True)
class Caller:
    """The authenticated identity an operation runs on behalf of.

    ``role`` comes from the ``users`` row, not from token claims. ``employee_id``
    is the caller's own ``employees.id`` when the identity has an employee profile.
    """

    user_id: str
    role: UserRole
    employee_id: int | None = None

    @property
    def capability(self) -> Capability:
        return capability_for_role(self.role)

    @property
    def is_privileged(self) -> bool:
        return self.capability is Capability.PRIVILEGED


def require_capability(caller: Caller, capability: Capability) -> None:
    if capability is Capability.PRIVILEGED and not caller.is_privileged:
        raise AuthorizationFailed("Not authorized to perform this action.")


def require_employee_profile(caller: Caller) -> int:
    if caller.employee_id is None:
        raise AuthorizationFailed("No employee profile is linked to this account.", code="NO_EMPLOYEE_PROFILE")
    return caller.employee_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_login_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        queue = _FAILED_ATTEMPTS.get(key, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_login_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def password_policy_violation(password: str) -> str | None:
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long."
    if not (_UPPER.search(password) and _LOWER.search(password) and _DIGIT.search(password)):
        return "Password must contain at least one uppercase letter, one lowercase letter and one digit."
    return None


def _build_claims(
    *,
    token_type: str,
    expires_delta: timedelta,
    sub: str,
    email: str,
) -> dict[str, Any]:
    settings = get_settings()
    now = _utcnow()
    exp = now + expires_delta
    return {
        "sub": sub,
        "email": email,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": token_type,
    }


def create_access_token(*, sub: str, email: str) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    claims = _build_claims(
        token_type="access",
        expires_delta=timedelta(minutes=settings.access_token_minutes),
        sub=sub,
        email=email,
    )
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def create_refresh_token(*, sub: str, email: str) -> tuple[str, dict[str, Any]]:
    settings = get_settings()
    claims = _build_claims(
        token_type="refresh",
        expires_delta=timedelta(days=settings.refresh_token_days),
        sub=sub,
        email=email,
    )
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, claims


def decode_token(token: str, *, expected_type: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise AuthenticationFailed("Token is invalid.") from exc

    if payload.get("typ") != expected_type:
        raise AuthenticationFailed("Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationFailed("Token subject is invalid.")

    return payload

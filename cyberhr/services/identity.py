"""Identity provider backed by ``auth_accounts``.

Accounts live apart from the ``users`` profile rows: every call here commits on
its own, so callers that combine an account with other rows (provisioning)
must compensate on failure themselves.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode, urlsplit
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cyberhr.errors import ApiError, AuthenticationFailed, UpstreamFailure, ValidationFailed
from cyberhr.models import AuthAccount, AuthRecoveryCode, AuthRefreshToken, User
from cyberhr.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    ensure_login_attempt_allowed,
    hash_password,
    password_policy_violation,
    register_login_failure,
    register_login_success,
    verify_password,
)
from cyberhr.services.notifications import NotificationChannel, NotificationMessage, send_email_safely
from cyberhr.settings import get_password_reset_redirect_origins, get_settings

logger = logging.getLogger("cyberhr.identity")


class EmailAlreadyRegistered(ApiError):
    def __init__(self) -> None:
        super().__init__(409, "EMAIL_ALREADY_REGISTERED", "A user with this email is already registered.")


class IdentityProviderError(UpstreamFailure):
    def __init__(self, message: str = "The identity provider could not complete the request."):
        super().__init__(message, code="IDENTITY_PROVIDER_ERROR")


@dataclass(frozen=True, slots=True)
class AuthSession:
    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    email: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "bearer",
            "expires_in": self.expires_in,
            "user_id": self.user_id,
            "email": self.email,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def sign_up(db: Session, *, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthAccount:
    normalized = normalize_email(email)
    if db.scalar(select(AuthAccount).where(AuthAccount.email == normalized)) is not None:
        raise EmailAlreadyRegistered()

    account = AuthAccount(
        id=str(uuid4()),
        email=normalized,
        password_hash=hash_password(password),
        user_metadata=dict(metadata or {}),
    )
    db.add(account)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise EmailAlreadyRegistered() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("identity_sign_up_failed", extra={"email": normalized})
        raise IdentityProviderError() from exc

    logger.info("identity_signed_up", extra={"account_id": account.id, "email": normalized})
    return account


def _issue_session(db: Session, account: AuthAccount) -> AuthSession:
    access_token, expires_in, _ = create_access_token(sub=account.id, email=account.email)
    refresh_token, refresh_claims = create_refresh_token(sub=account.id, email=account.email)
    db.add(
        AuthRefreshToken(
            jti=str(refresh_claims["jti"]),
            account_id=account.id,
            issued_at=datetime.fromtimestamp(int(refresh_claims["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(refresh_claims["exp"]), tz=timezone.utc),
        )
    )
    account.last_sign_in_at = _utcnow()
    db.commit()
    return AuthSession(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        user_id=account.id,
        email=account.email,
    )


def sign_in_with_password(db: Session, *, email: str, password: str, client_key: str) -> AuthSession:
    ensure_login_attempt_allowed(client_key)
    account = db.scalar(select(AuthAccount).where(AuthAccount.email == normalize_email(email)))
    if account is None or not verify_password(password, account.password_hash):
        register_login_failure(client_key)
        raise AuthenticationFailed("Invalid email or password.", code="INVALID_CREDENTIALS")

    register_login_success(client_key)
    session = _issue_session(db, account)
    logger.info("identity_signed_in", extra={"account_id": account.id})
    return session


def get_user(db: Session, access_token: str) -> AuthAccount:
    claims = decode_token(access_token, expected_type="access")
    account = db.get(AuthAccount, str(claims["sub"]))
    if account is None:
        raise AuthenticationFailed("Account no longer exists.")
    return account


def refresh_session(db: Session, *, refresh_token: str) -> AuthSession:
    claims = decode_token(refresh_token, expected_type="refresh")
    token_row = db.scalar(select(AuthRefreshToken).where(AuthRefreshToken.jti == str(claims.get("jti"))))
    if token_row is None or token_row.revoked_at is not None:
        raise AuthenticationFailed("Refresh token has been revoked.")
    if _as_utc(token_row.expires_at) <= _utcnow():
        raise AuthenticationFailed("Refresh token has expired.")

    account = db.get(AuthAccount, token_row.account_id)
    if account is None:
        raise AuthenticationFailed("Account no longer exists.")
    token_row.revoked_at = _utcnow()
    return _issue_session(db, account)


def update_user(db: Session, *, account_id: str, password: str) -> AuthAccount:
    violation = password_policy_violation(password)
    if violation:
        raise ValidationFailed(violation, code="WEAK_PASSWORD")
    account = db.get(AuthAccount, account_id)
    if account is None:
        raise AuthenticationFailed("Account no longer exists.")
    account.password_hash = hash_password(password)
    db.commit()
    logger.info("identity_password_updated", extra={"account_id": account_id})
    return account


def ensure_allowed_redirect(redirect_to: str) -> None:
    parsed = urlsplit(redirect_to.strip())
    origin = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
    if parsed.scheme not in ("http", "https") or origin not in get_password_reset_redirect_origins():
        raise ValidationFailed("The redirect target is not allowed.", code="INVALID_REDIRECT")


def reset_password_for_email(
    db: Session,
    channel: NotificationChannel,
    *,
    email: str,
    redirect_to: str,
) -> None:
    """Email a single-use recovery link. Unknown addresses are accepted silently.

    ``redirect_to`` must point at an allow-listed origin; anything else is
    refused before a code exists.
    """
    ensure_allowed_redirect(redirect_to)
    normalized = normalize_email(email)
    account = db.scalar(select(AuthAccount).where(AuthAccount.email == normalized))
    if account is None:
        logger.info("identity_reset_unknown_email")
        return

    code = secrets.token_urlsafe(32)
    db.add(
        AuthRecoveryCode(
            account_id=account.id,
            code_hash=_hash_code(code),
            expires_at=_utcnow() + timedelta(minutes=get_settings().password_reset_minutes),
        )
    )
    db.commit()

    separator = "&" if "?" in redirect_to else "?"
    link = f"{redirect_to}{separator}{urlencode({'code': code})}"
    send_email_safely(
        channel,
        NotificationMessage(
            recipients=[account.email],
            subject="Restablecer contraseña",
            body=f"Para elegir una nueva contraseña ingresa a: {link}",
        ),
    )
    logger.info("identity_reset_requested", extra={"account_id": account.id})


def exchange_code_for_session(db: Session, *, code: str) -> AuthSession:
    recovery = db.scalar(select(AuthRecoveryCode).where(AuthRecoveryCode.code_hash == _hash_code(code)))
    if recovery is None or recovery.used_at is not None:
        raise ValidationFailed("The recovery link is invalid or was already used.", code="INVALID_CODE")
    if _as_utc(recovery.expires_at) <= _utcnow():
        raise ValidationFailed("The recovery link has expired.", code="INVALID_CODE")

    account = db.get(AuthAccount, recovery.account_id)
    if account is None:
        raise AuthenticationFailed("Account no longer exists.")
    recovery.used_at = _utcnow()
    return _issue_session(db, account)


def sign_out(db: Session, *, refresh_token: str) -> None:
    claims = decode_token(refresh_token, expected_type="refresh")
    token_row = db.scalar(select(AuthRefreshToken).where(AuthRefreshToken.jti == str(claims.get("jti"))))
    if token_row is None or token_row.revoked_at is not None:
        return
    token_row.revoked_at = _utcnow()
    db.commit()
    logger.info("identity_signed_out", extra={"account_id": token_row.account_id})


def delete_user(db: Session, *, account_id: str) -> bool:
    account = db.get(AuthAccount, account_id)
    if account is None:
        return False
    db.delete(account)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise IdentityProviderError() from exc
    logger.info("identity_deleted", extra={"account_id": account_id})
    return True


def find_orphaned_identities(db: Session, *, older_than: timedelta) -> list[AuthAccount]:
    """Accounts that never got a ``users`` profile row (interrupted provisioning)."""
    cutoff = _utcnow() - older_than
    stmt = (
        select(AuthAccount)
        .outerjoin(User, User.id == AuthAccount.id)
        .where(User.id.is_(None), AuthAccount.created_at < cutoff)
        .order_by(AuthAccount.created_at.asc())
    )
    return list(db.scalars(stmt).all())


def purge_orphaned_identities(db: Session, *, older_than: timedelta) -> list[str]:
    purged: list[str] = []
    for account in find_orphaned_identities(db, older_than=older_than):
        if delete_user(db, account_id=account.id):
            purged.append(account.id)
    if purged:
        logger.warning("identity_orphans_purged", extra={"count": len(purged), "account_ids": purged})
    return purged

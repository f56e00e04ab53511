from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cyberhr.db import get_db
from cyberhr.dependencies import client_ip, get_current_caller, get_notification_channel
from cyberhr.errors import ApiError, AuthenticationFailed, ok_message_response
from cyberhr.models import User
from cyberhr.schemas import (
    LoginRequest,
    MeResponse,
    OkMessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SessionResponse,
    UpdatePasswordRequest,
)
from cyberhr.security import Caller, password_policy_violation
from cyberhr.services import identity
from cyberhr.services.notifications import NotificationChannel
from cyberhr.settings import get_public_base_url

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=SessionResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)) -> SessionResponse:
    client_key = client_ip(request) or "unknown"
    session = identity.sign_in_with_password(
        db,
        email=payload.email,
        password=payload.password,
        client_key=client_key,
    )
    return SessionResponse(**session.to_dict())


@router.post("/refresh", response_model=SessionResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)) -> SessionResponse:
    session = identity.refresh_session(db, refresh_token=payload.refresh_token)
    return SessionResponse(**session.to_dict())


@router.post("/logout", response_model=OkMessageResponse)
def logout(payload: RefreshRequest, db: Session = Depends(get_db)) -> OkMessageResponse:
    identity.sign_out(db, refresh_token=payload.refresh_token)
    return OkMessageResponse(ok=True, message="Signed out.")


@router.get("/me", response_model=MeResponse)
def me(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)) -> MeResponse:
    user = db.get(User, caller.user_id)
    if user is None:
        raise AuthenticationFailed("User profile not found.")
    return MeResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        phone=user.phone,
        avatar_url=user.avatar_url,
        employee_id=caller.employee_id,
    )


@router.post("/reset-password", response_model=OkMessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> OkMessageResponse:
    redirect_to = payload.redirect_to or f"{get_public_base_url()}/auth/update-password"
    identity.reset_password_for_email(db, channel, email=payload.email, redirect_to=redirect_to)
    return OkMessageResponse(
        ok=True,
        message="If the email is registered, a link to reset the password has been sent.",
    )


@router.post("/update-password", response_model=OkMessageResponse)
def update_password(payload: UpdatePasswordRequest, db: Session = Depends(get_db)) -> JSONResponse:
    # Policy first so a weak password does not burn the single-use code.
    violation = password_policy_violation(payload.password)
    if violation:
        return ok_message_response(status_code=422, ok=False, message=violation)
    try:
        session = identity.exchange_code_for_session(db, code=payload.code)
        identity.update_user(db, account_id=session.user_id, password=payload.password)
    except ApiError as exc:
        return ok_message_response(status_code=exc.status_code, ok=False, message=exc.message)
    return ok_message_response(status_code=200, ok=True, message="Password updated.")

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cyberhr.errors import AuthorizationFailed, NotFoundOrStateMismatch, UpstreamFailure, ValidationFailed
from cyberhr.models import (
    Employee,
    EmployeeStatus,
    LeaveRequest,
    LeaveRequestSource,
    LeaveStatus,
    LeaveType,
)
from cyberhr.security import Caller, Capability, require_capability, require_employee_profile
from cyberhr.services.notifications import (
    NOTIFICATION_TYPE_LEAVE_REQUEST,
    DispatchResult,
    NotificationChannel,
    NotificationMessage,
    dispatch,
    render_leave_status_email,
)
from cyberhr.services.state_machine import InvalidTransitionError, LeaveStateMachine
from cyberhr.settings import get_settings
from cyberhr.storage import ObjectStore, ObjectStoreError, path_from_public_url

logger = logging.getLogger("cyberhr.leaves")

CERTIFICATE_MAX_BYTES = 5 * 1024 * 1024
CERTIFICATE_CONTENT_TYPES: dict[str, str] = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


@dataclass(slots=True)
class LeaveDecision:
    leave_request: LeaveRequest
    notification: DispatchResult


def inclusive_day_count(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _days_already_counted(db: Session, *, employee_id: int, leave_type_id: int, year: int) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(LeaveRequest.days_requested), 0)).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.leave_type_id == leave_type_id,
            LeaveRequest.status.in_(list(LeaveStateMachine.COUNTED_STATUSES)),
            LeaveRequest.start_date >= date(year, 1, 1),
            LeaveRequest.start_date <= date(year, 12, 31),
        )
    )
    return int(total or 0)


def submit_leave_request(
    db: Session,
    caller: Caller,
    *,
    employee_id: int,
    leave_type_id: int,
    start_date: date,
    end_date: date,
    reason: str | None = None,
    source: LeaveRequestSource = LeaveRequestSource.WEB,
) -> LeaveRequest:
    if end_date < start_date:
        raise ValidationFailed("end_date must be greater than or equal to start_date")
    if caller.employee_id != employee_id:
        raise AuthorizationFailed("Leave can only be requested for your own employee profile.")

    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundOrStateMismatch("Employee not found.")
    if employee.status != EmployeeStatus.ACTIVE:
        raise AuthorizationFailed("Employee is inactive.", code="EMPLOYEE_INACTIVE")

    leave_type = db.get(LeaveType, leave_type_id)
    if leave_type is None:
        raise NotFoundOrStateMismatch("Leave type not found.")

    days_requested = inclusive_day_count(start_date, end_date)
    if get_settings().enforce_leave_annual_limit:
        already = _days_already_counted(
            db,
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=start_date.year,
        )
        if already + days_requested > leave_type.max_days_per_year:
            raise ValidationFailed(
                f"{leave_type.name} allows {leave_type.max_days_per_year} days per year; "
                f"{already} already requested.",
                code="ANNUAL_LIMIT_EXCEEDED",
            )

    leave = LeaveRequest(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        start_date=start_date,
        end_date=end_date,
        days_requested=days_requested,
        reason=(reason or "").strip() or None,
        status=LeaveStatus.PENDING,
        created_via=source,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    logger.info(
        "leave_request_submitted",
        extra={
            "leave_request_id": leave.id,
            "employee_id": employee_id,
            "days_requested": days_requested,
            "source": source.value,
        },
    )
    return leave


def _load_leave_request(db: Session, leave_request_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_request_id)
    if leave is None:
        raise NotFoundOrStateMismatch("Leave request not found.")
    return leave


def _decide(
    db: Session,
    caller: Caller,
    *,
    leave_request_id: int,
    to_status: LeaveStatus,
    rejection_reason: str | None = None,
) -> LeaveRequest:
    require_capability(caller, Capability.PRIVILEGED)
    leave = _load_leave_request(db, leave_request_id)
    LeaveStateMachine.validate_transition(leave.status, to_status)

    values: dict[str, object] = {
        "status": to_status,
        "approved_by": caller.user_id,
        "approved_at": _utcnow(),
    }
    if rejection_reason is not None:
        values["rejection_reason"] = rejection_reason

    # Guarded write: a concurrent decision makes this match zero rows.
    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave_request_id,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransitionError(
            LeaveStatus.PENDING.value,
            to_status.value,
            message="Leave request was already decided by someone else.",
        )
    db.commit()
    db.refresh(leave)
    logger.info(
        "leave_request_decided",
        extra={
            "leave_request_id": leave.id,
            "status": to_status.value,
            "approver_id": caller.user_id,
        },
    )
    return leave


def _notify_decision(db: Session, channel: NotificationChannel, leave: LeaveRequest) -> DispatchResult:
    try:
        user = leave.employee.user
        leave_type_name = leave.leave_type.name
    except SQLAlchemyError:
        logger.exception("leave_decision_notification_lookup_failed", extra={"leave_request_id": leave.id})
        return DispatchResult(errors=["Notification recipient could not be resolved."])

    if leave.status is LeaveStatus.APPROVED:
        title = "Licencia Aprobada"
        message = f"Tu solicitud de {leave_type_name} ha sido aprobada."
    else:
        title = "Licencia Rechazada"
        message = f"Tu solicitud de {leave_type_name} ha sido rechazada. Motivo: {leave.rejection_reason}"

    plain_text, html_body = render_leave_status_email(
        employee_name=user.full_name,
        status=leave.status,
        leave_type=leave_type_name,
        start_date=leave.start_date,
        end_date=leave.end_date,
        rejection_reason=leave.rejection_reason,
    )
    return dispatch(
        db,
        channel,
        user=user,
        title=title,
        message=message,
        notification_type=NOTIFICATION_TYPE_LEAVE_REQUEST,
        email=NotificationMessage(
            recipients=[user.email],
            subject=title,
            body=plain_text,
            html_body=html_body,
        ),
    )


def approve_leave_request(
    db: Session,
    caller: Caller,
    channel: NotificationChannel,
    *,
    leave_request_id: int,
) -> LeaveDecision:
    leave = _decide(db, caller, leave_request_id=leave_request_id, to_status=LeaveStatus.APPROVED)
    return LeaveDecision(leave_request=leave, notification=_notify_decision(db, channel, leave))


def reject_leave_request(
    db: Session,
    caller: Caller,
    channel: NotificationChannel,
    *,
    leave_request_id: int,
    rejection_reason: str,
) -> LeaveDecision:
    reason = (rejection_reason or "").strip()
    if not reason:
        raise ValidationFailed("A rejection reason is required.", code="REJECTION_REASON_REQUIRED")
    leave = _decide(
        db,
        caller,
        leave_request_id=leave_request_id,
        to_status=LeaveStatus.REJECTED,
        rejection_reason=reason,
    )
    return LeaveDecision(leave_request=leave, notification=_notify_decision(db, channel, leave))


def cancel_leave_request(db: Session, caller: Caller, *, leave_request_id: int, employee_id: int) -> LeaveRequest:
    if caller.employee_id != employee_id:
        raise AuthorizationFailed("Only the requesting employee can cancel a leave request.")

    # Ownership and state fail with the same error so neither leaks.
    current_status = db.scalar(
        select(LeaveRequest.status).where(
            LeaveRequest.id == leave_request_id,
            LeaveRequest.employee_id == employee_id,
        )
    )
    if current_status is None or not LeaveStateMachine.can_transition(current_status, LeaveStatus.CANCELLED):
        raise NotFoundOrStateMismatch(
            "Leave request not found or cannot be cancelled.",
            code="NOT_CANCELLABLE",
        )

    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave_request_id,
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
        .values(status=LeaveStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise NotFoundOrStateMismatch(
            "Leave request not found or cannot be cancelled.",
            code="NOT_CANCELLABLE",
        )
    db.commit()
    leave = _load_leave_request(db, leave_request_id)
    db.refresh(leave)
    logger.info("leave_request_cancelled", extra={"leave_request_id": leave_request_id, "employee_id": employee_id})
    return leave


def _owned_approved_leave(db: Session, caller: Caller, leave_request_id: int) -> LeaveRequest:
    employee_id = require_employee_profile(caller)
    leave = db.scalar(
        select(LeaveRequest).where(
            LeaveRequest.id == leave_request_id,
            LeaveRequest.employee_id == employee_id,
        )
    )
    if leave is None:
        raise NotFoundOrStateMismatch("Leave request not found.")
    if leave.status is not LeaveStatus.APPROVED:
        raise NotFoundOrStateMismatch(
            "Certificates can only be managed on approved leave requests.",
            code="CERTIFICATE_NOT_ALLOWED",
            status_code=409,
        )
    return leave


def attach_certificate(
    db: Session,
    caller: Caller,
    store: ObjectStore,
    *,
    leave_request_id: int,
    content_type: str,
    data: bytes,
) -> LeaveRequest:
    extension = CERTIFICATE_CONTENT_TYPES.get(content_type)
    if extension is None:
        raise ValidationFailed("Only PDF, JPG, PNG or WebP files are allowed.", code="INVALID_FILE_TYPE")
    if not data:
        raise ValidationFailed("The file is empty.", code="EMPTY_FILE")
    if len(data) > CERTIFICATE_MAX_BYTES:
        raise ValidationFailed("The file must not exceed 5MB.", code="FILE_TOO_LARGE")

    leave = _owned_approved_leave(db, caller, leave_request_id)
    bucket = get_settings().certificate_bucket
    previous_url = leave.certificate_url
    path = f"{caller.user_id}/{leave.id}_{int(time.time() * 1000)}.{extension}"

    try:
        store.upload(bucket, path, data, content_type=content_type, upsert=False)
    except ObjectStoreError as exc:
        raise UpstreamFailure("The certificate could not be uploaded.") from exc

    leave.certificate_url = store.get_public_url(bucket, path)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _remove_quietly(store, bucket, path)
        raise UpstreamFailure("The certificate could not be saved.") from exc
    db.refresh(leave)

    if previous_url:
        previous_path = path_from_public_url(previous_url, bucket)
        if previous_path:
            _remove_quietly(store, bucket, previous_path)

    logger.info("leave_certificate_attached", extra={"leave_request_id": leave.id, "path": path})
    return leave


def _remove_quietly(store: ObjectStore, bucket: str, path: str) -> None:
    try:
        store.remove(bucket, [path])
    except ObjectStoreError:
        logger.warning("leave_certificate_cleanup_failed", extra={"bucket": bucket, "path": path})


def remove_certificate(db: Session, caller: Caller, store: ObjectStore, *, leave_request_id: int) -> LeaveRequest:
    """Delete the stored object first; the URL is cleared only once the object is gone."""
    leave = _owned_approved_leave(db, caller, leave_request_id)
    if not leave.certificate_url:
        raise NotFoundOrStateMismatch("No certificate is attached to this leave request.")

    bucket = get_settings().certificate_bucket
    path = path_from_public_url(leave.certificate_url, bucket)
    if path:
        try:
            store.remove(bucket, [path])
        except ObjectStoreError as exc:
            logger.warning(
                "leave_certificate_delete_failed",
                extra={"leave_request_id": leave.id, "path": path},
            )
            raise UpstreamFailure("The certificate could not be deleted. Please try again.") from exc
    else:
        logger.warning(
            "leave_certificate_path_unresolved",
            extra={"leave_request_id": leave.id, "certificate_url": leave.certificate_url},
        )

    leave.certificate_url = None
    db.commit()
    db.refresh(leave)
    logger.info("leave_certificate_removed", extra={"leave_request_id": leave.id})
    return leave


def get_leave_request(db: Session, caller: Caller, leave_request_id: int) -> LeaveRequest:
    leave = _load_leave_request(db, leave_request_id)
    if caller.capability is Capability.SELF_ONLY and leave.employee_id != caller.employee_id:
        raise NotFoundOrStateMismatch("Leave request not found.")
    return leave


def list_leave_requests(
    db: Session,
    caller: Caller,
    *,
    status: LeaveStatus | None = None,
    employee_id: int | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    if caller.capability is Capability.SELF_ONLY:
        stmt = stmt.where(LeaveRequest.employee_id == require_employee_profile(caller))
    elif employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    return list(db.scalars(stmt).all())


def list_leave_types(db: Session) -> list[LeaveType]:
    return list(db.scalars(select(LeaveType).order_by(LeaveType.name.asc())).all())

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from cyberhr.audit import log_audit
from cyberhr.db import get_db
from cyberhr.dependencies import (
    client_ip,
    get_current_caller,
    get_notification_channel,
    get_store,
    request_id,
    user_agent,
)
from cyberhr.models import LeaveStatus
from cyberhr.schemas import (
    LeaveDecisionResponse,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestRead,
    LeaveTypeRead,
    NotificationDispatchRead,
)
from cyberhr.security import Caller, require_employee_profile
from cyberhr.services import leaves
from cyberhr.services.notifications import NotificationChannel
from cyberhr.storage import ObjectStore

router = APIRouter(prefix="/api", tags=["leaves"])


def _audit(
    db: Session,
    request: Request,
    caller: Caller,
    *,
    action: str,
    leave_request_id: int,
    details: dict | None = None,
) -> None:
    log_audit(
        db,
        actor=caller,
        action=action,
        success=True,
        entity_type="leave_request",
        entity_id=leave_request_id,
        ip=client_ip(request),
        user_agent=user_agent(request),
        details=details,
        request_id=request_id(request),
    )


def _decision_response(decision: leaves.LeaveDecision) -> LeaveDecisionResponse:
    return LeaveDecisionResponse(
        leave_request=LeaveRequestRead.model_validate(decision.leave_request),
        notification=NotificationDispatchRead(**decision.notification.to_dict()),
    )


@router.get("/leave-types", response_model=list[LeaveTypeRead])
def list_leave_types(
    _caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[LeaveTypeRead]:
    return [LeaveTypeRead.model_validate(item) for item in leaves.list_leave_types(db)]


@router.get("/leave-requests", response_model=list[LeaveRequestRead])
def list_leave_requests(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    employee_id: int | None = Query(default=None, ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    rows = leaves.list_leave_requests(db, caller, status=status_filter, employee_id=employee_id)
    return [LeaveRequestRead.model_validate(item) for item in rows]


@router.post("/leave-requests", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def submit_leave_request(
    payload: LeaveRequestCreate,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = leaves.submit_leave_request(
        db,
        caller,
        employee_id=require_employee_profile(caller),
        leave_type_id=payload.leave_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )
    _audit(
        db,
        request,
        caller,
        action="LEAVE_REQUEST_SUBMITTED",
        leave_request_id=leave.id,
        details={"days_requested": leave.days_requested, "leave_type_id": leave.leave_type_id},
    )
    return LeaveRequestRead.model_validate(leave)


@router.get("/leave-requests/{leave_request_id}", response_model=LeaveRequestRead)
def get_leave_request(
    leave_request_id: int,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return LeaveRequestRead.model_validate(leaves.get_leave_request(db, caller, leave_request_id))


@router.post("/leave-requests/{leave_request_id}/approve", response_model=LeaveDecisionResponse)
def approve_leave_request(
    leave_request_id: int,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> LeaveDecisionResponse:
    decision = leaves.approve_leave_request(db, caller, channel, leave_request_id=leave_request_id)
    _audit(
        db,
        request,
        caller,
        action="LEAVE_REQUEST_APPROVED",
        leave_request_id=leave_request_id,
        details={"notification": decision.notification.to_dict()},
    )
    return _decision_response(decision)


@router.post("/leave-requests/{leave_request_id}/reject", response_model=LeaveDecisionResponse)
def reject_leave_request(
    leave_request_id: int,
    payload: LeaveRejectRequest,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> LeaveDecisionResponse:
    decision = leaves.reject_leave_request(
        db,
        caller,
        channel,
        leave_request_id=leave_request_id,
        rejection_reason=payload.rejection_reason,
    )
    _audit(
        db,
        request,
        caller,
        action="LEAVE_REQUEST_REJECTED",
        leave_request_id=leave_request_id,
        details={"notification": decision.notification.to_dict()},
    )
    return _decision_response(decision)


@router.post("/leave-requests/{leave_request_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave_request(
    leave_request_id: int,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = leaves.cancel_leave_request(
        db,
        caller,
        leave_request_id=leave_request_id,
        employee_id=require_employee_profile(caller),
    )
    _audit(db, request, caller, action="LEAVE_REQUEST_CANCELLED", leave_request_id=leave_request_id)
    return LeaveRequestRead.model_validate(leave)


@router.post("/leave-requests/{leave_request_id}/certificate", response_model=LeaveRequestRead)
def attach_certificate(
    leave_request_id: int,
    request: Request,
    file: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_store),
) -> LeaveRequestRead:
    data = file.file.read(leaves.CERTIFICATE_MAX_BYTES + 1)
    leave = leaves.attach_certificate(
        db,
        caller,
        store,
        leave_request_id=leave_request_id,
        content_type=file.content_type or "",
        data=data,
    )
    _audit(
        db,
        request,
        caller,
        action="LEAVE_CERTIFICATE_ATTACHED",
        leave_request_id=leave_request_id,
        details={"filename": file.filename, "size": len(data)},
    )
    return LeaveRequestRead.model_validate(leave)


@router.delete("/leave-requests/{leave_request_id}/certificate", response_model=LeaveRequestRead)
def remove_certificate(
    leave_request_id: int,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_store),
) -> LeaveRequestRead:
    leave = leaves.remove_certificate(db, caller, store, leave_request_id=leave_request_id)
    _audit(db, request, caller, action="LEAVE_CERTIFICATE_REMOVED", leave_request_id=leave_request_id)
    return LeaveRequestRead.model_validate(leave)

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cyberhr.audit import log_audit
from cyberhr.db import get_db
from cyberhr.dependencies import client_ip, get_current_caller, get_store, request_id, user_agent
from cyberhr.errors import ApiError, ok_message_response
from cyberhr.schemas import OkMessageResponse, PayslipRead, PayslipSignRequest
from cyberhr.security import Caller
from cyberhr.services import payslips
from cyberhr.storage import ObjectStore

router = APIRouter(prefix="/api/payslips", tags=["payslips"])


@router.get("", response_model=list[PayslipRead])
def list_payslips(
    employee_id: int | None = Query(default=None, ge=1),
    year: int | None = Query(default=None, ge=1990, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[PayslipRead]:
    rows = payslips.list_payslips(db, caller, employee_id=employee_id, year=year, month=month)
    return [PayslipRead.model_validate(item) for item in rows]


@router.post("", response_model=PayslipRead)
def upload_payslip(
    request: Request,
    employee_id: int = Form(...),
    year: int = Form(...),
    month: int = Form(...),
    pdf: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_store),
) -> PayslipRead:
    data = pdf.file.read(payslips.PAYSLIP_MAX_BYTES + 1)
    payslip = payslips.upload_payslip(
        db,
        caller,
        store,
        employee_id=employee_id,
        year=year,
        month=month,
        content_type=pdf.content_type or "",
        data=data,
    )
    log_audit(
        db,
        actor=caller,
        action="PAYSLIP_UPLOADED",
        success=True,
        entity_type="payslip",
        entity_id=payslip.id,
        ip=client_ip(request),
        user_agent=user_agent(request),
        details={"employee_id": employee_id, "year": year, "month": month, "size": len(data)},
        request_id=request_id(request),
    )
    return PayslipRead.model_validate(payslip)


@router.post("/firmar", response_model=OkMessageResponse)
def sign_payslip(
    payload: PayslipSignRequest,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        result = payslips.sign_payslip(db, caller, payslip_id=payload.payslip_id)
    except ApiError as exc:
        return ok_message_response(status_code=exc.status_code, ok=False, message=exc.message)

    if not result.already_signed:
        log_audit(
            db,
            actor=caller,
            action="PAYSLIP_SIGNED",
            success=True,
            entity_type="payslip",
            entity_id=payload.payslip_id,
            ip=client_ip(request),
            user_agent=user_agent(request),
            request_id=request_id(request),
        )
    message = "Payslip was already signed." if result.already_signed else "Payslip signed."
    return ok_message_response(status_code=200, ok=True, message=message)

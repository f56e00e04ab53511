from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyberhr.errors import NotFoundOrStateMismatch, UpstreamFailure, ValidationFailed
from cyberhr.models import Employee, Payslip, PayslipState
from cyberhr.security import Caller, Capability, require_capability, require_employee_profile
from cyberhr.services.state_machine import PayslipStateMachine
from cyberhr.settings import get_settings
from cyberhr.storage import ObjectStore, ObjectStoreError

logger = logging.getLogger("cyberhr.payslips")

PAYSLIP_MAX_BYTES = 10 * 1024 * 1024
PAYSLIP_CONTENT_TYPE = "application/pdf"
PAYSLIP_MIN_YEAR = 1990
PAYSLIP_MAX_YEAR = 2100


@dataclass(slots=True)
class SignResult:
    payslip: Payslip
    already_signed: bool


def payslip_object_path(employee_id: int, year: int, month: int) -> str:
    return f"{employee_id}/{year}-{month:02d}.pdf"


def _validate_upload(*, year: int, month: int, content_type: str, data: bytes) -> None:
    if not PAYSLIP_MIN_YEAR <= year <= PAYSLIP_MAX_YEAR:
        raise ValidationFailed("Invalid year.", code="INVALID_YEAR")
    if not 1 <= month <= 12:
        raise ValidationFailed("Invalid month.", code="INVALID_MONTH")
    if content_type != PAYSLIP_CONTENT_TYPE:
        raise ValidationFailed("The file must be a PDF.", code="INVALID_FILE_TYPE")
    if not data:
        raise ValidationFailed("The file is empty.", code="EMPTY_FILE")
    if len(data) > PAYSLIP_MAX_BYTES:
        raise ValidationFailed("The file is too large (maximum 10MB).", code="FILE_TOO_LARGE")


def upload_payslip(
    db: Session,
    caller: Caller,
    store: ObjectStore,
    *,
    employee_id: int,
    year: int,
    month: int,
    content_type: str,
    data: bytes,
) -> Payslip:
    """Store the PDF for ``(employee_id, year, month)`` and upsert its record.

    Re-uploading a period overwrites both the stored object and the row; the
    signed URL must be in hand before the row is touched.
    """
    require_capability(caller, Capability.PRIVILEGED)
    _validate_upload(year=year, month=month, content_type=content_type, data=data)

    if db.get(Employee, employee_id) is None:
        raise NotFoundOrStateMismatch("Employee not found.")

    settings = get_settings()
    bucket = settings.payslip_bucket
    path = payslip_object_path(employee_id, year, month)
    try:
        store.upload(bucket, path, data, content_type=PAYSLIP_CONTENT_TYPE, upsert=True)
        signed_url = store.create_signed_url(bucket, path, settings.payslip_signed_url_ttl_seconds)
    except ObjectStoreError as exc:
        raise UpstreamFailure("The payslip file could not be stored.") from exc
    if not signed_url:
        raise UpstreamFailure("The signed link for the PDF could not be generated.", code="SIGNED_URL_FAILED")

    payslip = _upsert_payslip_row(db, employee_id=employee_id, year=year, month=month, pdf_url=signed_url)
    logger.info(
        "payslip_uploaded",
        extra={
            "payslip_id": payslip.id,
            "employee_id": employee_id,
            "year": year,
            "month": month,
            "size": len(data),
        },
    )
    return payslip


def _find_period(db: Session, *, employee_id: int, year: int, month: int) -> Payslip | None:
    return db.scalar(
        select(Payslip).where(
            Payslip.employee_id == employee_id,
            Payslip.year == year,
            Payslip.month == month,
        )
    )


def _upsert_payslip_row(db: Session, *, employee_id: int, year: int, month: int, pdf_url: str) -> Payslip:
    payslip = _find_period(db, employee_id=employee_id, year=year, month=month)
    if payslip is None:
        payslip = Payslip(employee_id=employee_id, year=year, month=month, pdf_url=pdf_url)
        db.add(payslip)
        try:
            db.commit()
        except IntegrityError:
            # Lost an insert race on the period unique key; update the winner instead.
            db.rollback()
            payslip = _find_period(db, employee_id=employee_id, year=year, month=month)
            if payslip is None:
                raise
            payslip.pdf_url = pdf_url
            db.commit()
    else:
        payslip.pdf_url = pdf_url
        db.commit()
    db.refresh(payslip)
    return payslip


def sign_payslip(db: Session, caller: Caller, *, payslip_id: int) -> SignResult:
    employee_id = require_employee_profile(caller)
    payslip = db.get(Payslip, payslip_id)
    if payslip is None or payslip.employee_id != employee_id:
        raise NotFoundOrStateMismatch("Payslip not found.")

    if PayslipStateMachine.is_noop(payslip.state, PayslipState.SIGNED):
        return SignResult(payslip=payslip, already_signed=True)

    PayslipStateMachine.validate_transition(payslip.state, PayslipState.SIGNED)
    payslip.state = PayslipState.SIGNED
    db.commit()
    db.refresh(payslip)
    logger.info("payslip_signed", extra={"payslip_id": payslip.id, "employee_id": employee_id})
    return SignResult(payslip=payslip, already_signed=False)


def list_payslips(
    db: Session,
    caller: Caller,
    *,
    employee_id: int | None = None,
    year: int | None = None,
    month: int | None = None,
) -> list[Payslip]:
    stmt = select(Payslip).order_by(Payslip.year.desc(), Payslip.month.desc(), Payslip.id.desc())
    if caller.capability is Capability.SELF_ONLY:
        stmt = stmt.where(Payslip.employee_id == require_employee_profile(caller))
    elif employee_id is not None:
        stmt = stmt.where(Payslip.employee_id == employee_id)
    if year is not None:
        stmt = stmt.where(Payslip.year == year)
    if month is not None:
        stmt = stmt.where(Payslip.month == month)
    return list(db.scalars(stmt).all())

"""Employee provisioning as a saga over the identity provider and the record store.

There is no transaction spanning the identity account, the ``users`` row and
the ``employees`` row. Each completed step registers a compensation; when a
later step fails the compensations run in reverse order before the error is
raised to the caller.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cyberhr.errors import ApiError, UpstreamFailure, ValidationFailed
from cyberhr.models import Employee, User, UserRole
from cyberhr.schemas import EmployeeProvisionRequest
from cyberhr.security import Caller, Capability, password_policy_violation, require_capability
from cyberhr.services import identity

logger = logging.getLogger("cyberhr.provisioning")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")


class EmployeeIdAlreadyExists(ApiError):
    def __init__(self) -> None:
        super().__init__(409, "EMPLOYEE_ID_EXISTS", "Employee ID already exists.")


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    email: str
    user_id: str
    employee_pk: int


@dataclass(slots=True)
class _CompletedStep:
    name: str
    compensate: Callable[[], None]


@dataclass(slots=True)
class ProvisioningSaga:
    steps: list[_CompletedStep] = field(default_factory=list)
    failed_compensations: list[str] = field(default_factory=list)

    def completed(self, name: str, compensate: Callable[[], None]) -> None:
        self.steps.append(_CompletedStep(name=name, compensate=compensate))

    def compensate(self) -> None:
        for step in reversed(self.steps):
            try:
                step.compensate()
            except Exception:
                logger.exception("provisioning_compensation_failed", extra={"step": step.name})
                self.failed_compensations.append(step.name)
            else:
                logger.info("provisioning_compensated", extra={"step": step.name})
        self.steps.clear()


def validate_provision_request(payload: EmployeeProvisionRequest) -> None:
    if not payload.full_name.strip():
        raise ValidationFailed("Full name is required.")
    if not EMAIL_PATTERN.match(payload.email.strip()):
        raise ValidationFailed("Invalid email address.", code="INVALID_EMAIL")
    violation = password_policy_violation(payload.password)
    if violation:
        raise ValidationFailed(violation, code="WEAK_PASSWORD")
    if not payload.employee_id.strip():
        raise ValidationFailed("Employee ID is required.")
    if not payload.position.strip():
        raise ValidationFailed("Position is required.")
    if payload.salary is not None and payload.salary < 0:
        raise ValidationFailed("Salary must be a non-negative number.")
    for label, value in (
        ("phone", payload.phone),
        ("emergency_contact_phone", payload.emergency_contact_phone),
    ):
        if value and not PHONE_PATTERN.match(value.strip()):
            raise ValidationFailed(f"Invalid {label} format.", code="INVALID_PHONE")


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _delete_user_row(db: Session, user_id: str) -> None:
    db.rollback()
    user = db.get(User, user_id)
    if user is not None:
        db.delete(user)
        db.commit()


def provision_employee(db: Session, caller: Caller, payload: EmployeeProvisionRequest) -> ProvisionResult:
    require_capability(caller, Capability.PRIVILEGED)
    validate_provision_request(payload)

    email = identity.normalize_email(payload.email)
    full_name = payload.full_name.strip()
    employee_code = payload.employee_id.strip()
    saga = ProvisioningSaga()

    account = identity.sign_up(
        db,
        email=email,
        password=payload.password,
        metadata={"full_name": full_name, "role": UserRole.EMPLOYEE.value},
    )
    account_id = account.id
    saga.completed("identity_account", lambda: identity.delete_user(db, account_id=account_id))

    try:
        user = User(
            id=account_id,
            email=email,
            full_name=full_name,
            role=UserRole.EMPLOYEE,
            phone=_strip_or_none(payload.phone),
        )
        db.add(user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("provisioning_user_insert_failed", extra={"account_id": account_id})
        saga.compensate()
        raise UpstreamFailure("The user profile could not be created.") from exc
    saga.completed("user_row", lambda: _delete_user_row(db, account_id))

    employee = Employee(
        user_id=account_id,
        employee_id=employee_code,
        department=_strip_or_none(payload.department),
        position=payload.position.strip(),
        hire_date=payload.hire_date,
        salary=payload.salary,
        address=_strip_or_none(payload.address),
        emergency_contact_name=_strip_or_none(payload.emergency_contact_name),
        emergency_contact_phone=_strip_or_none(payload.emergency_contact_phone),
        status=payload.status,
    )
    db.add(employee)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        duplicate = db.scalar(select(Employee.id).where(Employee.employee_id == employee_code))
        logger.warning(
            "provisioning_employee_insert_failed",
            extra={"account_id": account_id, "duplicate_employee_id": duplicate is not None},
        )
        saga.compensate()
        if duplicate is not None:
            raise EmployeeIdAlreadyExists() from exc
        raise UpstreamFailure("The employee record could not be created.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("provisioning_employee_insert_failed", extra={"account_id": account_id})
        saga.compensate()
        raise UpstreamFailure("The employee record could not be created.") from exc

    db.refresh(employee)
    logger.info(
        "employee_provisioned",
        extra={"user_id": account_id, "employee_pk": employee.id, "actor_id": caller.user_id},
    )
    return ProvisionResult(email=email, user_id=account_id, employee_pk=employee.id)

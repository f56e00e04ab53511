from __future__ import annotations

import logging
import time

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from cyberhr.errors import AuthenticationFailed, NotFoundOrStateMismatch, UpstreamFailure, ValidationFailed
from cyberhr.models import Employee, EmployeeStatus, User
from cyberhr.schemas import (
    EmployeeRead,
    EmployeeUpdateRequest,
    ProfileRead,
    ProfileUpdateRequest,
)
from cyberhr.security import Caller, Capability, require_capability
from cyberhr.services.provisioning import PHONE_PATTERN
from cyberhr.settings import get_settings
from cyberhr.storage import ObjectStore, ObjectStoreError, path_from_public_url

logger = logging.getLogger("cyberhr.employees")

AVATAR_MAX_BYTES = 5 * 1024 * 1024
AVATAR_CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def employee_to_read(employee: Employee) -> EmployeeRead:
    return EmployeeRead(
        id=employee.id,
        user_id=employee.user_id,
        employee_id=employee.employee_id,
        full_name=employee.user.full_name,
        email=employee.user.email,
        phone=employee.user.phone,
        avatar_url=employee.user.avatar_url,
        department=employee.department,
        position=employee.position,
        hire_date=employee.hire_date,
        salary=employee.salary,
        address=employee.address,
        emergency_contact_name=employee.emergency_contact_name,
        emergency_contact_phone=employee.emergency_contact_phone,
        status=employee.status,
    )


def list_employees(
    db: Session,
    caller: Caller,
    *,
    status: EmployeeStatus | None = None,
    department: str | None = None,
) -> list[Employee]:
    require_capability(caller, Capability.PRIVILEGED)
    stmt = (
        select(Employee)
        .join(User, User.id == Employee.user_id)
        .options(selectinload(Employee.user))
        .order_by(User.full_name.asc(), Employee.id.asc())
    )
    if status is not None:
        stmt = stmt.where(Employee.status == status)
    if department:
        stmt = stmt.where(Employee.department == department)
    return list(db.scalars(stmt).all())


def update_employee(db: Session, caller: Caller, *, employee_pk: int, payload: EmployeeUpdateRequest) -> Employee:
    require_capability(caller, Capability.PRIVILEGED)
    employee = db.get(Employee, employee_pk)
    if employee is None:
        raise NotFoundOrStateMismatch("Employee not found.")

    changes = payload.model_dump(exclude_unset=True)
    if "position" in changes and not (changes["position"] or "").strip():
        raise ValidationFailed("Position is required.")
    for field_name, value in changes.items():
        if field_name == "status" and value is None:
            continue
        if field_name in ("department", "position") and value is not None:
            value = value.strip() or None
        setattr(employee, field_name, value)
    db.commit()
    db.refresh(employee)
    logger.info(
        "employee_updated",
        extra={"employee_pk": employee.id, "fields": sorted(changes), "actor_id": caller.user_id},
    )
    return employee


def _load_user(db: Session, caller: Caller) -> User:
    user = db.get(User, caller.user_id)
    if user is None:
        raise AuthenticationFailed("User profile not found.")
    return user


def get_profile(db: Session, caller: Caller) -> ProfileRead:
    user = _load_user(db, caller)
    return ProfileRead(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        phone=user.phone,
        avatar_url=user.avatar_url,
        employee=employee_to_read(user.employee) if user.employee is not None else None,
    )


def update_profile(db: Session, caller: Caller, payload: ProfileUpdateRequest) -> ProfileRead:
    """Self-service edit. Employment fields are not reachable from here."""
    user = _load_user(db, caller)
    changes = payload.model_dump(exclude_unset=True)

    for label in ("phone", "emergency_contact_phone"):
        value = (changes.get(label) or "").strip()
        if value and not PHONE_PATTERN.match(value):
            raise ValidationFailed(f"Invalid {label} format.", code="INVALID_PHONE")

    if "full_name" in changes:
        full_name = (changes["full_name"] or "").strip()
        if not full_name:
            raise ValidationFailed("Full name is required.")
        user.full_name = full_name
    if "phone" in changes:
        user.phone = (changes["phone"] or "").strip() or None

    employee_fields = {"address", "emergency_contact_name", "emergency_contact_phone"} & changes.keys()
    if employee_fields:
        if user.employee is None:
            raise NotFoundOrStateMismatch("No employee profile is linked to this account.")
        for field_name in employee_fields:
            setattr(user.employee, field_name, (changes[field_name] or "").strip() or None)

    db.commit()
    logger.info("profile_updated", extra={"user_id": user.id, "fields": sorted(changes)})
    return get_profile(db, caller)


def upload_avatar(db: Session, caller: Caller, store: ObjectStore, *, content_type: str, data: bytes) -> ProfileRead:
    extension = AVATAR_CONTENT_TYPES.get((content_type or "").lower())
    if extension is None:
        raise ValidationFailed("Only image files are allowed.", code="INVALID_FILE_TYPE")
    if not data:
        raise ValidationFailed("The file is empty.", code="EMPTY_FILE")
    if len(data) > AVATAR_MAX_BYTES:
        raise ValidationFailed("The image must not exceed 5MB.", code="FILE_TOO_LARGE")

    user = _load_user(db, caller)
    bucket = get_settings().avatar_bucket
    path = f"{user.id}/{int(time.time() * 1000)}.{extension}"
    previous_url = user.avatar_url

    try:
        store.upload(bucket, path, data, content_type=content_type, upsert=False)
    except ObjectStoreError as exc:
        raise UpstreamFailure("The image could not be uploaded.") from exc

    user.avatar_url = store.get_public_url(bucket, path)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure("The profile picture could not be saved.") from exc

    if previous_url:
        previous_path = path_from_public_url(previous_url, bucket)
        if previous_path:
            try:
                store.remove(bucket, [previous_path])
            except ObjectStoreError:
                logger.warning("avatar_cleanup_failed", extra={"user_id": user.id, "path": previous_path})

    logger.info("avatar_uploaded", extra={"user_id": user.id, "path": path})
    return get_profile(db, caller)

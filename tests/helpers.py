from __future__ import annotations

from datetime import date
from typing import Any
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cyberhr.db import Base
from cyberhr.models import (
    AuthAccount,
    Employee,
    EmployeeStatus,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    User,
    UserRole,
)
from cyberhr.security import Caller
from cyberhr.services.notifications import NotificationChannel, NotificationMessage
from cyberhr.storage import ObjectAlreadyExistsError, ObjectStoreError


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_user(
    db: Session,
    *,
    email: str,
    full_name: str = "Ana Pérez",
    role: UserRole = UserRole.EMPLOYEE,
    phone: str | None = None,
) -> User:
    account = AuthAccount(id=str(uuid4()), email=email, password_hash="not-a-real-hash")
    user = User(id=account.id, email=email, full_name=full_name, role=role, phone=phone)
    db.add_all([account, user])
    db.commit()
    return user


def create_employee(
    db: Session,
    user: User,
    *,
    employee_code: str,
    status: EmployeeStatus = EmployeeStatus.ACTIVE,
) -> Employee:
    employee = Employee(
        user_id=user.id,
        employee_id=employee_code,
        position="Analyst",
        hire_date=date(2023, 3, 1),
        status=status,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def create_leave_type(db: Session, *, name: str = "Vacaciones", max_days_per_year: int = 14) -> LeaveType:
    leave_type = LeaveType(name=name, max_days_per_year=max_days_per_year)
    db.add(leave_type)
    db.commit()
    db.refresh(leave_type)
    return leave_type


def create_leave_request(
    db: Session,
    employee: Employee,
    leave_type: LeaveType,
    *,
    start_date: date = date(2025, 2, 3),
    end_date: date = date(2025, 2, 5),
    status: LeaveStatus = LeaveStatus.PENDING,
    certificate_url: str | None = None,
) -> LeaveRequest:
    leave = LeaveRequest(
        employee_id=employee.id,
        leave_type_id=leave_type.id,
        start_date=start_date,
        end_date=end_date,
        days_requested=(end_date - start_date).days + 1,
        status=status,
        certificate_url=certificate_url,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return leave


def caller_for(user: User, employee: Employee | None = None) -> Caller:
    return Caller(user_id=user.id, role=user.role, employee_id=employee.id if employee is not None else None)


class InMemoryObjectStore:
    def __init__(self, *, public_base_url: str = "https://files.example.test") -> None:
        self.public_base_url = public_base_url
        self.objects: dict[tuple[str, str], bytes] = {}
        self.fail_upload = False
        self.fail_remove = False
        self.sign_returns_empty = False
        self.removed: list[tuple[str, str]] = []

    def upload(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool) -> str:
        if self.fail_upload:
            raise ObjectStoreError("upload", bucket, path)
        if not upsert and (bucket, path) in self.objects:
            raise ObjectAlreadyExistsError(bucket, path)
        self.objects[(bucket, path)] = data
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{bucket}/{path}"

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str | None:
        if self.sign_returns_empty:
            return None
        content = self.objects.get((bucket, path), b"")
        return f"{self.public_base_url}/signed/{bucket}/{path}?ttl={ttl_seconds}&v={len(content)}"

    def remove(self, bucket: str, paths: list[str]) -> None:
        if self.fail_remove:
            raise ObjectStoreError("remove", bucket, ",".join(paths))
        for path in paths:
            self.objects.pop((bucket, path), None)
            self.removed.append((bucket, path))


class RecordingChannel(NotificationChannel):
    configured = True

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[NotificationMessage] = []

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        if self.fail:
            raise RuntimeError("smtp connection refused")
        self.sent.append(message)
        return {"mode": "sent", "sent": len(message.recipients), "recipients": list(message.recipients)}

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from cyberhr.audit import log_audit
from cyberhr.db import get_db
from cyberhr.dependencies import client_ip, get_current_caller, get_store, request_id, user_agent
from cyberhr.models import EmployeeStatus
from cyberhr.schemas import (
    EmployeeProvisionRequest,
    EmployeeProvisionResponse,
    EmployeeRead,
    EmployeeUpdateRequest,
    ProfileRead,
    ProfileUpdateRequest,
)
from cyberhr.security import Caller
from cyberhr.services import employees
from cyberhr.services.provisioning import provision_employee
from cyberhr.storage import ObjectStore

router = APIRouter(prefix="/api", tags=["employees"])


@router.post("/employees", response_model=EmployeeProvisionResponse, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: EmployeeProvisionRequest,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> EmployeeProvisionResponse:
    result = provision_employee(db, caller, payload)
    log_audit(
        db,
        actor=caller,
        action="EMPLOYEE_PROVISIONED",
        success=True,
        entity_type="employee",
        entity_id=result.employee_pk,
        ip=client_ip(request),
        user_agent=user_agent(request),
        details={"email": result.email, "employee_id": payload.employee_id},
        request_id=request_id(request),
    )
    return EmployeeProvisionResponse(email=result.email, user_id=result.user_id, employee_id=result.employee_pk)


@router.get("/employees", response_model=list[EmployeeRead])
def list_employees(
    status_filter: EmployeeStatus | None = Query(default=None, alias="status"),
    department: str | None = Query(default=None, max_length=255),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    rows = employees.list_employees(db, caller, status=status_filter, department=department)
    return [employees.employee_to_read(item) for item in rows]


@router.patch("/employees/{employee_pk}", response_model=EmployeeRead)
def update_employee(
    employee_pk: int,
    payload: EmployeeUpdateRequest,
    request: Request,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = employees.update_employee(db, caller, employee_pk=employee_pk, payload=payload)
    log_audit(
        db,
        actor=caller,
        action="EMPLOYEE_UPDATED",
        success=True,
        entity_type="employee",
        entity_id=employee_pk,
        ip=client_ip(request),
        user_agent=user_agent(request),
        details={"fields": sorted(payload.model_dump(exclude_unset=True))},
        request_id=request_id(request),
    )
    return employees.employee_to_read(employee)


@router.get("/profile", response_model=ProfileRead)
def get_profile(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_db)) -> ProfileRead:
    return employees.get_profile(db, caller)


@router.patch("/profile", response_model=ProfileRead)
def update_profile(
    payload: ProfileUpdateRequest,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> ProfileRead:
    return employees.update_profile(db, caller, payload)


@router.post("/profile/avatar", response_model=ProfileRead)
def upload_avatar(
    file: UploadFile = File(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_store),
) -> ProfileRead:
    data = file.file.read(employees.AVATAR_MAX_BYTES + 1)
    return employees.upload_avatar(db, caller, store, content_type=file.content_type or "", data=data)

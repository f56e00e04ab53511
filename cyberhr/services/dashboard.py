from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from cyberhr.models import Employee, EmployeeStatus, LeaveRequest, LeaveStatus, Payslip
from cyberhr.schemas import DashboardLeaveRead, DashboardResponse, PayslipRead
from cyberhr.security import Caller, Capability, require_employee_profile

ORGANIZATION_RECENT_LIMIT = 5
SELF_RECENT_LIMIT = 3


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _count(db: Session, stmt) -> int:  # type: ignore[no-untyped-def]
    return int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)


def _leave_to_dashboard(leave: LeaveRequest, *, with_employee_name: bool) -> DashboardLeaveRead:
    employee_name = None
    if with_employee_name and leave.employee is not None and leave.employee.user is not None:
        employee_name = leave.employee.user.full_name
    return DashboardLeaveRead(
        id=leave.id,
        employee_id=leave.employee_id,
        employee_name=employee_name,
        leave_type_name=leave.leave_type.name,
        start_date=leave.start_date,
        end_date=leave.end_date,
        days_requested=leave.days_requested,
        status=leave.status,
        created_at=leave.created_at,
    )


def _recent_leaves_stmt():  # type: ignore[no-untyped-def]
    return (
        select(LeaveRequest)
        .options(
            selectinload(LeaveRequest.leave_type),
            selectinload(LeaveRequest.employee).selectinload(Employee.user),
        )
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    )


def build_organization_dashboard(db: Session, *, today: date) -> DashboardResponse:
    active_employees = _count(db, select(Employee.id).where(Employee.status == EmployeeStatus.ACTIVE))
    pending_leaves = _count(db, select(LeaveRequest.id).where(LeaveRequest.status == LeaveStatus.PENDING))
    payslips_this_month = _count(
        db,
        select(Payslip.id).where(Payslip.year == today.year, Payslip.month == today.month),
    )
    recent = db.scalars(
        _recent_leaves_stmt().where(LeaveRequest.status == LeaveStatus.PENDING).limit(ORGANIZATION_RECENT_LIMIT)
    ).all()
    return DashboardResponse(
        scope="organization",
        active_employees=active_employees,
        pending_leaves=pending_leaves,
        payslip_count=payslips_this_month,
        recent_leaves=[_leave_to_dashboard(item, with_employee_name=True) for item in recent],
    )


def build_employee_dashboard(db: Session, *, employee_id: int) -> DashboardResponse:
    own_leaves = select(LeaveRequest.id).where(LeaveRequest.employee_id == employee_id)
    total_leaves = _count(db, own_leaves)
    pending_leaves = _count(db, own_leaves.where(LeaveRequest.status == LeaveStatus.PENDING))
    payslip_count = _count(db, select(Payslip.id).where(Payslip.employee_id == employee_id))

    recent_leaves = db.scalars(
        _recent_leaves_stmt().where(LeaveRequest.employee_id == employee_id).limit(SELF_RECENT_LIMIT)
    ).all()
    recent_payslips = db.scalars(
        select(Payslip)
        .where(Payslip.employee_id == employee_id)
        .order_by(Payslip.created_at.desc(), Payslip.id.desc())
        .limit(SELF_RECENT_LIMIT)
    ).all()
    return DashboardResponse(
        scope="self",
        total_leaves=total_leaves,
        pending_leaves=pending_leaves,
        payslip_count=payslip_count,
        recent_leaves=[_leave_to_dashboard(item, with_employee_name=False) for item in recent_leaves],
        recent_payslips=[PayslipRead.model_validate(item) for item in recent_payslips],
    )


def build_dashboard(db: Session, caller: Caller, *, today: date | None = None) -> DashboardResponse:
    """Summary counters for the landing page.

    Privileged callers see organization-wide numbers and the latest pending
    requests; everyone else sees only their own leaves and payslips.
    """
    if caller.capability is Capability.PRIVILEGED:
        return build_organization_dashboard(db, today=today or _today())
    return build_employee_dashboard(db, employee_id=require_employee_profile(caller))

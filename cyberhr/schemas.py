from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cyberhr.models import (
    EmployeeStatus,
    LeaveRequestSource,
    LeaveStatus,
    PayslipState,
    UserRole,
    WhatsAppMessageType,
)


class OkMessageResponse(BaseModel):
    ok: bool
    message: str


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class RefreshRequest(BaseModel):
    refresh_token: str


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    email: str


class ResetPasswordRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    redirect_to: str | None = Field(default=None, max_length=2048)


class UpdatePasswordRequest(BaseModel):
    code: str = Field(min_length=1, max_length=512)
    password: str = Field(min_length=1, max_length=256)


class MeResponse(BaseModel):
    id: str
    email: str
    full_name: str
    role: UserRole
    phone: str | None = None
    avatar_url: str | None = None
    employee_id: int | None = None


class LeaveTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    max_days_per_year: int


class LeaveRequestCreate(BaseModel):
    leave_type_id: int = Field(ge=1)
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _validate_dates(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class LeaveRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    days_requested: int
    reason: str | None
    status: LeaveStatus
    certificate_url: str | None
    rejection_reason: str | None
    approved_by: str | None
    approved_at: datetime | None
    created_via: LeaveRequestSource
    created_at: datetime


class LeaveRejectRequest(BaseModel):
    rejection_reason: str = Field(default="", max_length=2000)


class NotificationDispatchRead(BaseModel):
    delivered: bool
    in_app: bool
    email_mode: str
    error: str | None = None


class LeaveDecisionResponse(BaseModel):
    leave_request: LeaveRequestRead
    notification: NotificationDispatchRead


class PayslipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    year: int
    month: int
    pdf_url: str | None
    state: PayslipState
    created_at: datetime


class PayslipSignRequest(BaseModel):
    payslip_id: int = Field(ge=1)


class EmployeeProvisionRequest(BaseModel):
    full_name: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=256)
    employee_id: str = Field(max_length=50)
    position: str = Field(max_length=255)
    hire_date: date
    department: str | None = Field(default=None, max_length=255)
    salary: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    emergency_contact_name: str | None = Field(default=None, max_length=255)
    emergency_contact_phone: str | None = Field(default=None, max_length=50)
    status: EmployeeStatus = EmployeeStatus.ACTIVE


class EmployeeProvisionResponse(BaseModel):
    email: str
    user_id: str
    employee_id: int


class EmployeeRead(BaseModel):
    id: int
    user_id: str
    employee_id: str
    full_name: str
    email: str
    phone: str | None
    avatar_url: str | None
    department: str | None
    position: str
    hire_date: date
    salary: Decimal | None
    address: str | None
    emergency_contact_name: str | None
    emergency_contact_phone: str | None
    status: EmployeeStatus


class EmployeeUpdateRequest(BaseModel):
    department: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, min_length=1, max_length=255)
    salary: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    status: EmployeeStatus | None = None


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    emergency_contact_name: str | None = Field(default=None, max_length=255)
    emergency_contact_phone: str | None = Field(default=None, max_length=50)


class ProfileRead(BaseModel):
    user_id: str
    email: str
    full_name: str
    role: UserRole
    phone: str | None
    avatar_url: str | None
    employee: EmployeeRead | None = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    message: str
    type: str
    is_read: bool
    created_at: datetime


class WhatsAppMessageIn(BaseModel):
    phone_number: str = Field(min_length=3, max_length=50)
    message_text: str = Field(min_length=1, max_length=4096)
    extracted_data: dict[str, Any] | None = None


class WhatsAppIngestResponse(BaseModel):
    conversation_id: int
    leave_request_id: int | None = None
    reply: str | None = None


class WhatsAppConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone_number: str
    message_text: str
    message_type: WhatsAppMessageType
    extracted_data: dict[str, Any] | None
    leave_request_id: int | None
    processed_at: datetime


class DashboardLeaveRead(BaseModel):
    id: int
    employee_id: int
    employee_name: str | None = None
    leave_type_name: str
    start_date: date
    end_date: date
    days_requested: int
    status: LeaveStatus
    created_at: datetime


class DashboardResponse(BaseModel):
    scope: Literal["organization", "self"]
    active_employees: int | None = None
    total_leaves: int | None = None
    pending_leaves: int
    payslip_count: int
    recent_leaves: list[DashboardLeaveRead]
    recent_payslips: list[PayslipRead] = Field(default_factory=list)

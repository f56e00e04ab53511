"""Transition tables for leave requests and payslips."""

from __future__ import annotations

from cyberhr.errors import NotFoundOrStateMismatch
from cyberhr.models import LeaveStatus, PayslipState


class InvalidTransitionError(NotFoundOrStateMismatch):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Cannot move from '{from_status}' to '{to_status}'.",
            code="INVALID_TRANSITION",
            status_code=409,
        )


class LeaveStateMachine:
    """Allowed transitions:

    - pending → approved (approver)
    - pending → rejected (approver)
    - pending → cancelled (owning employee)

    approved, rejected and cancelled are terminal.
    """

    VALID_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
        LeaveStatus.PENDING: frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED}),
        LeaveStatus.APPROVED: frozenset(),
        LeaveStatus.REJECTED: frozenset(),
        LeaveStatus.CANCELLED: frozenset(),
    }

    # Statuses that still count against an annual allowance
    COUNTED_STATUSES = frozenset({LeaveStatus.PENDING, LeaveStatus.APPROVED})

    @classmethod
    def can_transition(cls, from_status: LeaveStatus, to_status: LeaveStatus) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, frozenset())

    @classmethod
    def validate_transition(cls, from_status: LeaveStatus, to_status: LeaveStatus) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status.value, to_status.value)

    @classmethod
    def is_terminal(cls, status: LeaveStatus) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)


class PayslipStateMachine:
    """No Firmada → Firmada, forward only. Re-signing a signed payslip is a no-op."""

    VALID_TRANSITIONS: dict[PayslipState, frozenset[PayslipState]] = {
        PayslipState.NOT_SIGNED: frozenset({PayslipState.SIGNED}),
        PayslipState.SIGNED: frozenset({PayslipState.SIGNED}),
    }

    @classmethod
    def can_transition(cls, from_state: PayslipState, to_state: PayslipState) -> bool:
        return to_state in cls.VALID_TRANSITIONS.get(from_state, frozenset())

    @classmethod
    def validate_transition(cls, from_state: PayslipState, to_state: PayslipState) -> None:
        if not cls.can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state.value, to_state.value)

    @classmethod
    def is_noop(cls, from_state: PayslipState, to_state: PayslipState) -> bool:
        return from_state == to_state

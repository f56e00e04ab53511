from __future__ import annotations

import unittest
from datetime import date

from cyberhr.errors import AuthorizationFailed
from cyberhr.models import EmployeeStatus, LeaveStatus, Payslip, UserRole
from cyberhr.services.dashboard import build_dashboard
from tests.helpers import (
    caller_for,
    create_employee,
    create_leave_request,
    create_leave_type,
    create_user,
    make_session_factory,
)


class DashboardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.leave_type = create_leave_type(self.db)
        self.ana = create_user(self.db, email="ana@example.com", full_name="Ana Pérez")
        self.ana_employee = create_employee(self.db, self.ana, employee_code="EMP-001")
        self.luis = create_user(self.db, email="luis@example.com", full_name="Luis Soto")
        self.luis_employee = create_employee(self.db, self.luis, employee_code="EMP-002")
        retired = create_user(self.db, email="rita@example.com", full_name="Rita Vega")
        create_employee(self.db, retired, employee_code="EMP-003", status=EmployeeStatus.INACTIVE)
        self.employer = caller_for(create_user(self.db, email="jefa@example.com", role=UserRole.EMPLOYER))

    def tearDown(self) -> None:
        self.db.close()

    def _payslip(self, employee, year: int, month: int) -> Payslip:  # type: ignore[no-untyped-def]
        payslip = Payslip(employee_id=employee.id, year=year, month=month)
        self.db.add(payslip)
        self.db.commit()
        return payslip

    def test_organization_summary(self) -> None:
        for _ in range(6):
            create_leave_request(self.db, self.ana_employee, self.leave_type)
        newest = create_leave_request(self.db, self.luis_employee, self.leave_type)
        create_leave_request(self.db, self.luis_employee, self.leave_type, status=LeaveStatus.APPROVED)
        self._payslip(self.ana_employee, 2025, 3)
        self._payslip(self.luis_employee, 2025, 3)
        self._payslip(self.luis_employee, 2025, 2)

        summary = build_dashboard(self.db, self.employer, today=date(2025, 3, 18))

        self.assertEqual(summary.scope, "organization")
        self.assertEqual(summary.active_employees, 2)
        self.assertEqual(summary.pending_leaves, 7)
        self.assertEqual(summary.payslip_count, 2)
        self.assertEqual(len(summary.recent_leaves), 5)
        self.assertTrue(all(item.status is LeaveStatus.PENDING for item in summary.recent_leaves))
        self.assertEqual(summary.recent_leaves[0].id, newest.id)
        self.assertEqual(summary.recent_leaves[0].employee_name, "Luis Soto")
        self.assertEqual(summary.recent_leaves[0].leave_type_name, "Vacaciones")
        self.assertIsNone(summary.total_leaves)
        self.assertEqual(summary.recent_payslips, [])

    def test_employee_summary_is_scoped_to_self(self) -> None:
        first = create_leave_request(self.db, self.ana_employee, self.leave_type, status=LeaveStatus.APPROVED)
        create_leave_request(self.db, self.ana_employee, self.leave_type)
        create_leave_request(self.db, self.ana_employee, self.leave_type, status=LeaveStatus.REJECTED)
        latest = create_leave_request(self.db, self.ana_employee, self.leave_type)
        create_leave_request(self.db, self.luis_employee, self.leave_type)
        for month in (1, 2, 3, 4):
            self._payslip(self.ana_employee, 2025, month)
        self._payslip(self.luis_employee, 2025, 1)

        summary = build_dashboard(self.db, caller_for(self.ana, self.ana_employee))

        self.assertEqual(summary.scope, "self")
        self.assertIsNone(summary.active_employees)
        self.assertEqual(summary.total_leaves, 4)
        self.assertEqual(summary.pending_leaves, 2)
        self.assertEqual(summary.payslip_count, 4)
        self.assertEqual(len(summary.recent_leaves), 3)
        self.assertEqual(summary.recent_leaves[0].id, latest.id)
        self.assertNotIn(first.id, [item.id for item in summary.recent_leaves])
        self.assertTrue(all(item.employee_name is None for item in summary.recent_leaves))
        self.assertEqual([item.month for item in summary.recent_payslips], [4, 3, 2])

    def test_empty_employee_summary(self) -> None:
        summary = build_dashboard(self.db, caller_for(self.luis, self.luis_employee))

        self.assertEqual(summary.total_leaves, 0)
        self.assertEqual(summary.pending_leaves, 0)
        self.assertEqual(summary.payslip_count, 0)
        self.assertEqual(summary.recent_leaves, [])
        self.assertEqual(summary.recent_payslips, [])

    def test_employee_without_profile_is_refused(self) -> None:
        with self.assertRaises(AuthorizationFailed) as ctx:
            build_dashboard(self.db, caller_for(self.ana))
        self.assertEqual(ctx.exception.code, "NO_EMPLOYEE_PROFILE")


if __name__ == "__main__":
    unittest.main()

"""
Payroll Engine - Test Configuration

Pytest fixtures and configuration.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from payroll_engine.models.entities import (
    ComponentCategory,
    ComponentType,
    MaritalStatus,
    PayrollComponent,
    PayrollPeriod,
)
from payroll_engine.repositories.memory import InMemoryPayrollRepository
from payroll_engine.services.collaborators import (
    AnomalyValidator,
    AttendanceProvider,
    AttendanceRecord,
    EmployeeDirectory,
    EmployeeProfile,
    PayrollValidationContext,
    PayrollValidationResult,
)


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeEmployeeDirectory(EmployeeDirectory):
    """Directory backed by a list of profiles."""

    def __init__(self, profiles: List[EmployeeProfile]):
        self.profiles = {p.id: p for p in profiles}

    async def active_employees(self, employer_id: UUID) -> List[EmployeeProfile]:
        return [p for p in self.profiles.values() if p.employer_id == employer_id]

    async def get_employee(self, employee_id: UUID) -> Optional[EmployeeProfile]:
        return self.profiles.get(employee_id)


class FakeAttendanceProvider(AttendanceProvider):
    """Attendance keyed by employee; optional hook runs on every call."""

    def __init__(self, records: Dict[UUID, List[AttendanceRecord]], on_call=None):
        self.records = records
        self.on_call = on_call
        self.calls: List[UUID] = []

    async def records_for_employee_in_range(self, employee_id, start_date, end_date):
        self.calls.append(employee_id)
        if self.on_call is not None:
            self.on_call(employee_id)
        await asyncio.sleep(0)
        return [r for r in self.records.get(employee_id, []) if start_date <= r.work_date <= end_date]


class StaticValidator(AnomalyValidator):
    """Returns the same verdict for every employee."""

    def __init__(self, result: PayrollValidationResult):
        self.result = result
        self.contexts: List[PayrollValidationContext] = []

    async def validate(self, context: PayrollValidationContext) -> PayrollValidationResult:
        self.contexts.append(context)
        return self.result


class SlowValidator(AnomalyValidator):
    async def validate(self, context):
        await asyncio.sleep(5)
        return PayrollValidationResult(has_errors=False)


class BrokenValidator(AnomalyValidator):
    async def validate(self, context):
        raise RuntimeError("validator backend unavailable")


# =============================================================================
# HELPERS
# =============================================================================

def weekdays(year: int, month: int) -> List[date]:
    """Monday-Friday dates of a month."""
    current = date(year, month, 1)
    days = []
    while current.month == month:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


def attendance_for(
    year: int,
    month: int,
    present_days: int,
    late_days: int = 0,
    overtime: Optional[Dict[int, Decimal]] = None,
) -> List[AttendanceRecord]:
    """
    Records for every weekday of a month: the first ``present_days`` are
    present, the rest absent. ``overtime`` maps day-of-month to hours.
    """
    overtime = overtime or {}
    records = []
    for index, work_date in enumerate(weekdays(year, month)):
        records.append(AttendanceRecord(
            work_date=work_date,
            is_present=index < present_days,
            is_late=index < late_days,
            overtime_hours=overtime.get(work_date.day, Decimal("0")),
        ))
    return records


def make_profile(employer_id: UUID, **overrides) -> EmployeeProfile:
    values = dict(
        id=uuid4(),
        employer_id=employer_id,
        employee_number="EMP-001",
        full_name="Budi Santoso",
        base_salary=Decimal("10000000"),
        marital_status=MaritalStatus.SINGLE,
        dependent_count=0,
        employment_type="permanent",
        department="Finance",
        position="Accountant",
        jkk_risk_class=1,
    )
    values.update(overrides)
    return EmployeeProfile(**values)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def employer_id() -> UUID:
    return uuid4()


@pytest.fixture
def repository() -> InMemoryPayrollRepository:
    return InMemoryPayrollRepository()


@pytest.fixture
def employee(employer_id) -> EmployeeProfile:
    """Single employee, 10,000,000 base salary, TK/0."""
    return make_profile(employer_id)


@pytest_asyncio.fixture
async def april_period(repository, employer_id) -> PayrollPeriod:
    """Draft period for April 2025 (22 weekdays)."""
    period = PayrollPeriod.for_month(employer_id, 4, 2025, payment_date=date(2025, 4, 30))
    return await repository.create_period(period)


@pytest.fixture
def transport_allowance(employer_id) -> PayrollComponent:
    return PayrollComponent(
        employer_id=employer_id,
        code="TRANSPORT",
        name="Tunjangan Transport",
        component_type=ComponentType.EARNING,
        category=ComponentCategory.ALLOWANCE,
        default_amount=Decimal("500000"),
    )

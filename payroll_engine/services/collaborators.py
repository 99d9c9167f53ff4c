"""
Payroll Engine - External Collaborator Contracts

The processing run depends on three services it does not own:
- EmployeeDirectory: active employees and their salary data
- AttendanceProvider: daily attendance for a date range
- AnomalyValidator: advisory review of a computed payroll (best-effort)
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from payroll_engine.models.entities import AnomalyDetail, MaritalStatus


# ===========================================
# DATA CARRIED ACROSS THE BOUNDARY
# ===========================================

@dataclass(frozen=True)
class AttendanceRecord:
    """One attendance day."""
    work_date: date
    is_present: bool
    is_late: bool = False
    overtime_hours: Decimal = Decimal("0")


@dataclass(frozen=True)
class EmployeeProfile:
    """
    Salary data for one employee.

    ``allowances`` holds employee-specific amounts keyed by component code;
    a code without a matching component is paid as a taxable allowance.
    """
    id: uuid.UUID
    employer_id: uuid.UUID
    employee_number: str
    full_name: str
    base_salary: Decimal
    allowances: Mapping[str, Decimal] = field(default_factory=dict)
    marital_status: MaritalStatus = MaritalStatus.SINGLE
    dependent_count: int = 0
    employment_type: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    jkk_risk_class: Optional[int] = None
    join_date: Optional[date] = None
    exit_date: Optional[date] = None
    loan_installment: Decimal = Decimal("0")

    @property
    def is_married(self) -> bool:
        return self.marital_status == MaritalStatus.MARRIED


@dataclass(frozen=True)
class HistoricalPayData:
    """Averages over the employee's most recent processed periods."""
    periods_count: int
    average_gross_pay: Decimal
    average_net_pay: Decimal
    average_pph21: Decimal
    last_net_pay: Decimal


@dataclass(frozen=True)
class PayrollValidationContext:
    """Everything the processing run computed for one employee."""
    employee_id: uuid.UUID
    employee_name: str
    employment_type: Optional[str]
    period_month: int
    period_year: int

    contract_base_salary: Decimal
    prorated_base_salary: Decimal
    allowances: Decimal
    bpjs_base_allowances: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    total_earnings: Decimal
    taxable_income: Decimal

    bpjs_employee: Decimal
    bpjs_employer: Decimal
    pph21: Decimal
    loans: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    working_days: int
    present_days: int
    absent_days: int
    late_days: int
    overtime_hours: Decimal

    is_married: bool
    dependent_count: int
    jkk_risk_class: int
    bpjs_prorated: bool = False
    max_daily_overtime_hours: Decimal = Decimal("0")
    max_weekly_overtime_hours: Decimal = Decimal("0")
    history: Optional[HistoricalPayData] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for name, value in self.__dict__.items():
            if isinstance(value, (Decimal, uuid.UUID)):
                value = str(value)
            elif isinstance(value, HistoricalPayData):
                value = {k: str(v) for k, v in value.__dict__.items()}
            data[name] = value
        return data


@dataclass(frozen=True)
class PayrollValidationResult:
    """Advisory verdict on one employee's payroll."""
    has_errors: bool
    errors: Tuple[AnomalyDetail, ...] = ()
    confidence: Decimal = Decimal("1")
    review_text: str = ""
    recommendations: Tuple[str, ...] = ()


# ===========================================
# CONTRACTS
# ===========================================

class EmployeeDirectory(ABC):
    """Source of employee salary data."""

    @abstractmethod
    async def active_employees(self, employer_id: uuid.UUID) -> List[EmployeeProfile]:
        """All active employees of an employer."""
        pass

    @abstractmethod
    async def get_employee(self, employee_id: uuid.UUID) -> Optional[EmployeeProfile]:
        """One employee, or None when unknown."""
        pass


class AttendanceProvider(ABC):
    """Source of daily attendance."""

    @abstractmethod
    async def records_for_employee_in_range(
        self,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> List[AttendanceRecord]:
        """Attendance days between start_date and end_date, inclusive."""
        pass


class AnomalyValidator(ABC):
    """Advisory payroll review. Callers must tolerate failure."""

    @abstractmethod
    async def validate(self, context: PayrollValidationContext) -> PayrollValidationResult:
        pass

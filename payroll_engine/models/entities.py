"""
Payroll Engine - Payroll Domain Entities

Immutable records for payroll periods, per-employee summaries and salary
components. Every lifecycle operation returns an updated copy; the
original record is never modified. Invariants are checked on construction,
so an invalid record cannot exist.
"""

import calendar
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from payroll_engine.services.tax_calculators.tax_tables import round_rupiah
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    InvalidAmountException,
    InvalidDateRangeException,
    InvalidStateTransitionException,
    ValidationException,
)
from payroll_engine.utils.formula import evaluate_formula


# ===========================================
# ENUMS
# ===========================================

class PayrollPeriodStatus(str, Enum):
    """Payroll period lifecycle status."""
    DRAFT = "draft"
    PROCESSING = "processing"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayrollSummaryStatus(str, Enum):
    """Per-employee summary lifecycle status."""
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PAID = "paid"


class AnomalyType(str, Enum):
    CALCULATION_ERROR = "calculation_error"
    MISSING_DATA = "missing_data"
    UNUSUAL_AMOUNT = "unusual_amount"
    COMPLIANCE_ISSUE = "compliance_issue"
    DATA_MISMATCH = "data_mismatch"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


BLOCKING_SEVERITIES = (AnomalySeverity.HIGH, AnomalySeverity.CRITICAL)


class ComponentType(str, Enum):
    EARNING = "earning"
    DEDUCTION = "deduction"
    BENEFIT = "benefit"


class ComponentCategory(str, Enum):
    BASIC_SALARY = "basic_salary"
    ALLOWANCE = "allowance"
    OVERTIME = "overtime"
    BONUS = "bonus"
    BPJS = "bpjs"
    TAX = "tax"
    LOAN = "loan"
    OTHER = "other"


class CalculationType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"


class MaritalStatus(str, Enum):
    SINGLE = "single"
    MARRIED = "married"
    DIVORCED = "divorced"
    WIDOWED = "widowed"


# Indonesian month names for period labels
INDONESIAN_MONTHS = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)

ZERO = Decimal("0")


def _require_non_negative(values: Mapping[str, Any]) -> None:
    for name, value in values.items():
        if value is not None and value < 0:
            raise InvalidAmountException(name, value)


# ===========================================
# ANOMALIES
# ===========================================

@dataclass(frozen=True)
class AnomalyDetail:
    """One structured anomaly attached to a payroll summary."""
    type: AnomalyType
    description: str
    severity: AnomalySeverity
    field: Optional[str] = None
    expected_value: Optional[Decimal] = None
    actual_value: Optional[Decimal] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "description": self.description,
            "severity": self.severity.value,
        }
        if self.field:
            data["field"] = self.field
        if self.expected_value is not None:
            data["expected_value"] = str(self.expected_value)
        if self.actual_value is not None:
            data["actual_value"] = str(self.actual_value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnomalyDetail":
        expected = data.get("expected_value")
        actual = data.get("actual_value")
        return cls(
            type=AnomalyType(data["type"]),
            description=data["description"],
            severity=AnomalySeverity(data["severity"]),
            field=data.get("field"),
            expected_value=Decimal(str(expected)) if expected is not None else None,
            actual_value=Decimal(str(actual)) if actual is not None else None,
        )


# ===========================================
# PAYROLL PERIOD
# ===========================================

@dataclass(frozen=True)
class PayrollPeriod:
    """
    One calendar payroll cycle for an employer.

    Lifecycle: draft -> processing -> approved -> paid, and
    draft|processing|approved -> cancelled.
    """
    employer_id: uuid.UUID
    period_month: int
    period_year: int
    start_date: date
    end_date: date
    payment_date: date
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: PayrollPeriodStatus = PayrollPeriodStatus.DRAFT

    # Totals, owned by the processing run
    total_employees: int = 0
    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_bpjs_employer: Decimal = ZERO
    total_bpjs_employee: Decimal = ZERO
    total_pph21: Decimal = ZERO
    employees_with_anomalies: int = 0

    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if not 1 <= self.period_month <= 12:
            raise ValidationException(
                message=f"Period month must be between 1 and 12 (got {self.period_month})",
                field="period_month",
            )
        if not 2000 <= self.period_year <= 2100:
            raise ValidationException(
                message=f"Period year must be between 2000 and 2100 (got {self.period_year})",
                field="period_year",
            )
        if self.end_date < self.start_date:
            raise InvalidDateRangeException("End date must be on or after start date", field="end_date")
        if self.payment_date < self.end_date:
            raise InvalidDateRangeException("Payment date must be on or after end date", field="payment_date")
        _require_non_negative({
            "total_employees": self.total_employees,
            "total_gross_pay": self.total_gross_pay,
            "total_deductions": self.total_deductions,
            "total_net_pay": self.total_net_pay,
            "total_bpjs_employer": self.total_bpjs_employer,
            "total_bpjs_employee": self.total_bpjs_employee,
            "total_pph21": self.total_pph21,
            "employees_with_anomalies": self.employees_with_anomalies,
        })

    @classmethod
    def for_month(
        cls,
        employer_id: uuid.UUID,
        period_month: int,
        period_year: int,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> "PayrollPeriod":
        """Create a draft period covering a whole calendar month."""
        if not 1 <= period_month <= 12:
            raise ValidationException(
                message=f"Period month must be between 1 and 12 (got {period_month})",
                field="period_month",
            )
        last_day = calendar.monthrange(period_year, period_month)[1]
        end_date = date(period_year, period_month, last_day)
        return cls(
            employer_id=employer_id,
            period_month=period_month,
            period_year=period_year,
            start_date=date(period_year, period_month, 1),
            end_date=end_date,
            payment_date=payment_date or end_date,
            notes=notes,
        )

    @property
    def period_name(self) -> str:
        return f"{calendar.month_name[self.period_month]} {self.period_year}"

    @property
    def period_name_id(self) -> str:
        """Indonesian label, e.g. 'Januari 2025'."""
        return f"{INDONESIAN_MONTHS[self.period_month - 1]} {self.period_year}"

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.period_year, self.period_month)[1]

    @property
    def can_edit(self) -> bool:
        return self.status == PayrollPeriodStatus.DRAFT

    @property
    def can_approve(self) -> bool:
        return self.status == PayrollPeriodStatus.PROCESSING

    @property
    def can_pay(self) -> bool:
        return self.status == PayrollPeriodStatus.APPROVED

    def _require_status(self, action: str, *allowed: PayrollPeriodStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransitionException(
                resource_type="payroll period",
                current_status=self.status.value,
                action=action,
                allowed_from=[s.value for s in allowed],
            )

    def _updated(self, **changes) -> "PayrollPeriod":
        return replace(self, updated_at=datetime.utcnow(), **changes)

    def start_processing(self) -> "PayrollPeriod":
        self._require_status("process", PayrollPeriodStatus.DRAFT)
        return self._updated(status=PayrollPeriodStatus.PROCESSING)

    def approve(self, approved_by: uuid.UUID, notes: Optional[str] = None) -> "PayrollPeriod":
        self._require_status("approve", PayrollPeriodStatus.PROCESSING)
        return self._updated(
            status=PayrollPeriodStatus.APPROVED,
            approved_by=approved_by,
            approved_at=datetime.utcnow(),
            notes=notes if notes is not None else self.notes,
        )

    def mark_as_paid(self) -> "PayrollPeriod":
        self._require_status("pay", PayrollPeriodStatus.APPROVED)
        return self._updated(status=PayrollPeriodStatus.PAID, paid_at=datetime.utcnow())

    def cancel(self, notes: Optional[str] = None) -> "PayrollPeriod":
        self._require_status(
            "cancel",
            PayrollPeriodStatus.DRAFT,
            PayrollPeriodStatus.PROCESSING,
            PayrollPeriodStatus.APPROVED,
        )
        return self._updated(
            status=PayrollPeriodStatus.CANCELLED,
            notes=notes if notes is not None else self.notes,
        )

    def update_totals(
        self,
        total_employees: int,
        total_gross_pay: Decimal,
        total_deductions: Decimal,
        total_net_pay: Decimal,
        total_bpjs_employer: Decimal,
        total_bpjs_employee: Decimal,
        total_pph21: Decimal,
        employees_with_anomalies: int = 0,
    ) -> "PayrollPeriod":
        """Replace the aggregate totals; the only way totals change."""
        return self._updated(
            total_employees=total_employees,
            total_gross_pay=total_gross_pay,
            total_deductions=total_deductions,
            total_net_pay=total_net_pay,
            total_bpjs_employer=total_bpjs_employer,
            total_bpjs_employee=total_bpjs_employee,
            total_pph21=total_pph21,
            employees_with_anomalies=employees_with_anomalies,
        )

    def update_details(
        self,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> "PayrollPeriod":
        if not self.can_edit:
            raise BusinessRuleException(
                message=f"Payroll period {self.period_name} can only be edited while in draft",
                rule="PERIOD_EDITABLE_IN_DRAFT",
            )
        return self._updated(
            payment_date=payment_date or self.payment_date,
            notes=notes if notes is not None else self.notes,
        )


# ===========================================
# PAYROLL SUMMARY
# ===========================================

NET_PAY_TOLERANCE = Decimal("1")
SUSPICIOUS_CONFIDENCE = Decimal("0.7")


@dataclass(frozen=True)
class PayrollSummary:
    """
    Payroll calculation for one employee in one period.

    Lifecycle: draft -> calculated -> approved -> paid.
    """
    period_id: uuid.UUID
    employee_id: uuid.UUID
    employer_id: uuid.UUID
    employee_number: str
    employee_name: str
    department: Optional[str] = None
    position: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    # Attendance
    working_days: int = 0
    present_days: int = 0
    absent_days: int = 0
    late_days: int = 0
    overtime_hours: Decimal = ZERO

    # Earnings
    base_salary: Decimal = ZERO
    allowances: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    bonuses: Decimal = ZERO
    total_earnings: Decimal = ZERO

    # Deductions
    bpjs_kesehatan_employee: Decimal = ZERO
    bpjs_ketenagakerjaan_employee: Decimal = ZERO
    pph21: Decimal = ZERO
    loans: Decimal = ZERO
    other_deductions: Decimal = ZERO
    total_deductions: Decimal = ZERO

    net_pay: Decimal = ZERO

    # Employer cost
    bpjs_kesehatan_employer: Decimal = ZERO
    bpjs_ketenagakerjaan_employer: Decimal = ZERO
    employer_benefits: Decimal = ZERO
    total_employer_cost: Decimal = ZERO

    # Scalar breakdowns backing the payslip
    bpjs_details: Mapping[str, Decimal] = field(default_factory=dict)
    tax_details: Mapping[str, Any] = field(default_factory=dict)
    component_details: Tuple[Mapping[str, Any], ...] = ()

    # Anomaly review
    has_anomalies: bool = False
    anomaly_details: Tuple[AnomalyDetail, ...] = ()
    ai_confidence: Optional[Decimal] = None
    ai_review: Optional[str] = None

    notes: Optional[str] = None
    status: PayrollSummaryStatus = PayrollSummaryStatus.DRAFT
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        _require_non_negative({
            "working_days": self.working_days,
            "present_days": self.present_days,
            "absent_days": self.absent_days,
            "late_days": self.late_days,
            "overtime_hours": self.overtime_hours,
            "base_salary": self.base_salary,
            "allowances": self.allowances,
            "overtime_pay": self.overtime_pay,
            "bonuses": self.bonuses,
            "bpjs_kesehatan_employee": self.bpjs_kesehatan_employee,
            "bpjs_ketenagakerjaan_employee": self.bpjs_ketenagakerjaan_employee,
            "pph21": self.pph21,
            "loans": self.loans,
            "other_deductions": self.other_deductions,
            "net_pay": self.net_pay,
        })
        if self.present_days > self.working_days:
            raise ValidationException(
                message=(
                    f"Present days ({self.present_days}) cannot exceed "
                    f"working days ({self.working_days})"
                ),
                field="present_days",
            )
        expected_net = self.total_earnings - self.total_deductions
        if abs(self.net_pay - expected_net) > NET_PAY_TOLERANCE:
            raise ValidationException(
                message=(
                    f"Net pay {self.net_pay} does not equal total earnings minus "
                    f"total deductions ({expected_net})"
                ),
                field="net_pay",
            )
        if self.ai_confidence is not None and not 0 <= self.ai_confidence <= 1:
            raise ValidationException(
                message=f"AI confidence must be between 0 and 1 (got {self.ai_confidence})",
                field="ai_confidence",
            )

    @property
    def bpjs_employee_total(self) -> Decimal:
        return self.bpjs_kesehatan_employee + self.bpjs_ketenagakerjaan_employee

    @property
    def bpjs_employer_total(self) -> Decimal:
        return self.bpjs_kesehatan_employer + self.bpjs_ketenagakerjaan_employer

    @property
    def attendance_rate(self) -> Decimal:
        if self.working_days == 0:
            return ZERO
        return round_rupiah(Decimal(self.present_days) / self.working_days * 100)

    @property
    def blocking_anomalies(self) -> Tuple[AnomalyDetail, ...]:
        return tuple(a for a in self.anomaly_details if a.is_blocking)

    @property
    def has_critical_anomalies(self) -> bool:
        return self.has_anomalies and bool(self.blocking_anomalies)

    @property
    def is_suspicious(self) -> bool:
        if self.has_anomalies:
            return True
        if self.ai_confidence is not None and self.ai_confidence < SUSPICIOUS_CONFIDENCE:
            return True
        if self.net_pay > self.total_earnings * Decimal("1.1"):
            return True
        return self.total_deductions > self.total_earnings * Decimal("0.5")

    @property
    def can_approve(self) -> bool:
        return (
            self.status == PayrollSummaryStatus.CALCULATED
            and not self.has_critical_anomalies
            and ZERO <= self.net_pay <= self.total_earnings
        )

    def _require_status(self, action: str, *allowed: PayrollSummaryStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransitionException(
                resource_type="payroll summary",
                current_status=self.status.value,
                action=action,
                allowed_from=[s.value for s in allowed],
            )

    def _updated(self, **changes) -> "PayrollSummary":
        return replace(self, updated_at=datetime.utcnow(), **changes)

    def mark_calculated(self) -> "PayrollSummary":
        self._require_status("mark calculated", PayrollSummaryStatus.DRAFT)
        return self._updated(status=PayrollSummaryStatus.CALCULATED)

    def approve(self, notes: Optional[str] = None) -> "PayrollSummary":
        self._require_status("approve", PayrollSummaryStatus.CALCULATED)
        if self.has_critical_anomalies:
            raise BusinessRuleException(
                message=f"Cannot approve payroll for {self.employee_name}: critical anomalies present",
                rule="NO_CRITICAL_ANOMALIES",
                details={"anomalies": [a.to_dict() for a in self.blocking_anomalies]},
            )
        return self._updated(
            status=PayrollSummaryStatus.APPROVED,
            notes=notes if notes is not None else self.notes,
        )

    def mark_as_paid(self) -> "PayrollSummary":
        self._require_status("pay", PayrollSummaryStatus.APPROVED)
        return self._updated(status=PayrollSummaryStatus.PAID)

    def flag_anomaly(
        self,
        anomalies: Iterable[AnomalyDetail],
        confidence: Optional[Decimal] = None,
        review: Optional[str] = None,
    ) -> "PayrollSummary":
        """Attach validation findings; replaces any earlier findings."""
        self._require_status("flag", PayrollSummaryStatus.DRAFT, PayrollSummaryStatus.CALCULATED)
        anomalies = tuple(anomalies)
        return self._updated(
            has_anomalies=bool(anomalies),
            anomaly_details=anomalies,
            ai_confidence=confidence,
            ai_review=review,
        )


# ===========================================
# PAYROLL COMPONENT
# ===========================================

@dataclass(frozen=True)
class PayrollComponent:
    """Employer-defined earning, deduction or benefit."""
    employer_id: uuid.UUID
    code: str
    name: str
    component_type: ComponentType
    category: ComponentCategory
    calculation_type: CalculationType = CalculationType.FIXED
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    description: Optional[str] = None
    is_taxable: bool = True
    is_bpjs_base: bool = False
    is_system_component: bool = False
    default_amount: Decimal = ZERO
    percentage_value: Optional[Decimal] = None
    formula: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if not self.code or not self.code.strip():
            raise ValidationException(message="Component code is required", field="code")
        if not self.name or not self.name.strip():
            raise ValidationException(message="Component name is required", field="name")
        _require_non_negative({"default_amount": self.default_amount})
        if self.calculation_type == CalculationType.PERCENTAGE:
            if self.percentage_value is None or not 0 <= self.percentage_value <= 100:
                raise ValidationException(
                    message="Percentage components need a percentage value between 0 and 100",
                    field="percentage_value",
                )
        if self.calculation_type == CalculationType.FORMULA and not self.formula:
            raise ValidationException(message="Formula components need a formula", field="formula")
        if self.display_order < 0:
            raise ValidationException(message="Display order cannot be negative", field="display_order")

    def calculate_amount(
        self,
        base_salary: Decimal,
        custom_amount: Optional[Decimal] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Decimal:
        """
        Amount of this component for one employee, in whole rupiah.

        An employee-specific custom amount overrides the definition.
        Formulas see ``base_salary`` plus any extra variables.
        """
        if custom_amount is not None:
            return round_rupiah(Decimal(custom_amount))

        if self.calculation_type == CalculationType.FIXED:
            return round_rupiah(self.default_amount)

        if self.calculation_type == CalculationType.PERCENTAGE:
            return round_rupiah(Decimal(base_salary) * self.percentage_value / 100)

        context = {"base_salary": base_salary}
        context.update(variables or {})
        return round_rupiah(max(ZERO, evaluate_formula(self.formula, context)))

    def activate(self) -> "PayrollComponent":
        return replace(self, is_active=True, updated_at=datetime.utcnow())

    def deactivate(self) -> "PayrollComponent":
        return replace(self, is_active=False, updated_at=datetime.utcnow())

    def update(self, **changes) -> "PayrollComponent":
        if self.is_system_component:
            raise BusinessRuleException(
                message=f"System component '{self.code}' cannot be modified",
                rule="SYSTEM_COMPONENT_IMMUTABLE",
            )
        forbidden = {"id", "employer_id", "is_system_component", "created_at"} & set(changes)
        if forbidden:
            raise ValidationException(
                message=f"Fields cannot be changed: {', '.join(sorted(forbidden))}",
            )
        return replace(self, updated_at=datetime.utcnow(), **changes)

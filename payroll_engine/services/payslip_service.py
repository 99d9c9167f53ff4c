"""
Payroll Engine - Payslip Service

Turns a stored payroll summary into a payslip. Every line comes from the
breakdowns saved with the summary, so the payslip matches the amounts that
were approved without recalculating anything.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from payroll_engine.config import settings
from payroll_engine.models.entities import (
    ComponentCategory,
    ComponentType,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
)
from payroll_engine.repositories.base import PayrollRepository
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    ErrorCode,
    NotFoundException,
    PeriodNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

SUPPORTED_LANGUAGES = ("id", "en")

LABELS: Dict[str, Dict[str, str]] = {
    "id": {
        "BASIC": "Gaji Pokok",
        "ALLOW": "Tunjangan",
        "OVERTIME": "Lembur",
        "BPJS": "BPJS",
        "PPH21": "Pajak Penghasilan (PPh21)",
        "LOAN": "Pinjaman",
        "OTHER": "Potongan Lainnya",
    },
    "en": {
        "BASIC": "Basic Salary",
        "ALLOW": "Allowances",
        "OVERTIME": "Overtime Pay",
        "BPJS": "Social Security",
        "PPH21": "Income Tax (PPh21)",
        "LOAN": "Loans",
        "OTHER": "Other Deductions",
    },
}

BPJS_EMPLOYEE_LINES = (
    ("kesehatan_employee", "BPJS Kesehatan (1%)"),
    ("jht_employee", "BPJS JHT (2%)"),
    ("jp_employee", "BPJS JP (1%)"),
)

BPJS_EMPLOYER_LINES = (
    ("kesehatan_employer", "BPJS Kesehatan (4%)"),
    ("jkk_employer", "BPJS JKK"),
    ("jkm_employer", "BPJS JKM (0.3%)"),
    ("jht_employer", "BPJS JHT (3.7%)"),
    ("jp_employer", "BPJS JP (2%)"),
)


@dataclass(frozen=True)
class PayslipLine:
    code: str
    name: str
    amount: Decimal
    breakdown: Tuple["PayslipLine", ...] = ()


@dataclass(frozen=True)
class Payslip:
    """Presentation-ready payslip for one employee and period."""
    summary_id: uuid.UUID
    period_id: uuid.UUID
    language: str

    company_name: str
    company_address: str

    employee_id: uuid.UUID
    employee_number: str
    employee_name: str
    position: Optional[str]
    department: Optional[str]

    period_month: int
    period_year: int
    period_name: str
    payment_date: date
    status: str

    working_days: int
    present_days: int
    absent_days: int
    late_days: int
    overtime_hours: Decimal
    attendance_rate: Decimal

    earnings: Tuple[PayslipLine, ...]
    total_earnings: Decimal
    deductions: Tuple[PayslipLine, ...]
    total_deductions: Decimal
    net_pay: Decimal
    employer_costs: Tuple[PayslipLine, ...]
    total_employer_cost: Decimal

    ptkp_status: Optional[str] = None
    notes: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.utcnow)


def _amount(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _component_lines(
    details: Tuple[Mapping[str, Any], ...],
    component_type: ComponentType,
    loans: Optional[bool] = None,
) -> List[PayslipLine]:
    lines = []
    for item in details:
        if item.get("component_type") != component_type.value:
            continue
        is_loan = item.get("category") == ComponentCategory.LOAN.value
        if loans is not None and is_loan != loans:
            continue
        lines.append(PayslipLine(item["code"], item.get("name") or item["code"], _amount(item.get("amount"))))
    return lines


class PayslipService:
    """Assembles payslips for approved or paid periods."""

    def __init__(self, repository: PayrollRepository):
        self.repository = repository

    async def generate(self, summary_id: uuid.UUID, language: Optional[str] = None) -> Payslip:
        """
        Build the payslip for one payroll summary.

        Args:
            summary_id: Payroll summary to present
            language: "id" (default from settings) or "en"

        Raises:
            NotFoundException: summary or period missing
            BusinessRuleException: period is not approved or paid yet
        """
        language = (language or settings.payslip_default_language).lower()
        if language not in SUPPORTED_LANGUAGES:
            raise ValidationException(
                message=f"Unsupported payslip language '{language}'",
                field="language",
            )

        summary = await self.repository.get_summary(summary_id)
        if summary is None:
            raise NotFoundException("Payroll summary", summary_id, code=ErrorCode.SUMMARY_NOT_FOUND)

        period = await self.repository.get_period(summary.period_id)
        if period is None:
            raise PeriodNotFoundException(summary.period_id)

        if period.status not in (PayrollPeriodStatus.APPROVED, PayrollPeriodStatus.PAID):
            raise BusinessRuleException(
                message=f"Payslips are available once the period is approved (status: {period.status.value})",
                rule="PAYSLIP_REQUIRES_APPROVAL",
            )

        logger.info(f"Generating payslip for {summary.employee_number} ({period.period_name})")
        return self.assemble(summary, period, language)

    def assemble(self, summary: PayrollSummary, period: PayrollPeriod, language: str = "id") -> Payslip:
        labels = LABELS[language]
        details = tuple(summary.component_details)

        earnings = [PayslipLine("BASIC", labels["BASIC"], summary.base_salary)]
        component_earnings = _component_lines(details, ComponentType.EARNING)
        earnings.extend(component_earnings)
        unlisted = summary.allowances + summary.bonuses - sum((line.amount for line in component_earnings), ZERO)
        if unlisted > 0:
            earnings.append(PayslipLine("ALLOW", labels["ALLOW"], unlisted))
        if summary.overtime_pay > 0:
            earnings.append(PayslipLine("OVERTIME", labels["OVERTIME"], summary.overtime_pay))

        deductions = []
        bpjs = summary.bpjs_details
        if summary.bpjs_employee_total > 0:
            deductions.append(PayslipLine(
                "BPJS",
                labels["BPJS"],
                summary.bpjs_employee_total,
                tuple(PayslipLine(key.upper(), name, _amount(bpjs.get(key))) for key, name in BPJS_EMPLOYEE_LINES),
            ))
        if summary.pph21 > 0:
            deductions.append(PayslipLine("PPH21", labels["PPH21"], summary.pph21))
        if summary.loans > 0:
            deductions.append(PayslipLine(
                "LOAN",
                labels["LOAN"],
                summary.loans,
                tuple(_component_lines(details, ComponentType.DEDUCTION, loans=True)),
            ))
        if summary.other_deductions > 0:
            deductions.append(PayslipLine(
                "OTHER",
                labels["OTHER"],
                summary.other_deductions,
                tuple(_component_lines(details, ComponentType.DEDUCTION, loans=False)),
            ))

        employer_costs = [
            PayslipLine(key.upper(), name, _amount(bpjs.get(key)))
            for key, name in BPJS_EMPLOYER_LINES
            if _amount(bpjs.get(key)) > 0
        ]
        employer_costs.extend(_component_lines(details, ComponentType.BENEFIT))

        return Payslip(
            summary_id=summary.id,
            period_id=period.id,
            language=language,
            company_name=settings.company_name,
            company_address=settings.company_address,
            employee_id=summary.employee_id,
            employee_number=summary.employee_number,
            employee_name=summary.employee_name,
            position=summary.position,
            department=summary.department,
            period_month=period.period_month,
            period_year=period.period_year,
            period_name=period.period_name_id if language == "id" else period.period_name,
            payment_date=period.payment_date,
            status=summary.status.value,
            working_days=summary.working_days,
            present_days=summary.present_days,
            absent_days=summary.absent_days,
            late_days=summary.late_days,
            overtime_hours=summary.overtime_hours,
            attendance_rate=summary.attendance_rate,
            earnings=tuple(earnings),
            total_earnings=summary.total_earnings,
            deductions=tuple(deductions),
            total_deductions=summary.total_deductions,
            net_pay=summary.net_pay,
            employer_costs=tuple(employer_costs),
            total_employer_cost=summary.total_employer_cost,
            ptkp_status=summary.tax_details.get("ptkp_status"),
            notes=summary.notes,
        )

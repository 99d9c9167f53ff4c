"""
Payroll Processing Service
Monthly payroll run for an employer

For every employee of a draft period:
1. Attendance is summarised against the Monday-Friday working days
2. Base salary is prorated by present days
3. Components, overtime, BPJS and PPh21 are calculated
4. The result is optionally reviewed by the anomaly validator
5. The summary is stored as calculated

Employees are processed concurrently; one employee failing never stops the
run. The period is claimed for processing before the first worker starts,
and its totals are aggregated from the stored summaries once every worker
has returned.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from payroll_engine.config import settings
from payroll_engine.models.entities import (
    PayrollComponent,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
)
from payroll_engine.repositories.base import PayrollRepository, PeriodStats
from payroll_engine.services.collaborators import (
    AnomalyValidator,
    AttendanceProvider,
    AttendanceRecord,
    EmployeeDirectory,
    EmployeeProfile,
    HistoricalPayData,
    PayrollValidationContext,
    PayrollValidationResult,
)
from payroll_engine.services.payroll_component_service import calculate_employee_components
from payroll_engine.services.tax_calculators import (
    BPJSCalculationResult,
    BPJSCalculator,
    PPh21Calculator,
    round_rupiah,
)
from payroll_engine.services.tax_calculators.tax_tables import (
    MONTHLY_HOURS_DIVISOR,
    OVERTIME_FIRST_HOUR_MULTIPLIER,
    OVERTIME_NEXT_HOURS_MULTIPLIER,
)
from payroll_engine.utils.error_handling import (
    AppException,
    BusinessRuleException,
    EmployeeDataException,
    ErrorCode,
    InvalidStateTransitionException,
    PeriodNotFoundException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EmployeeOutcome:
    """What happened to one employee in a run."""
    employee_id: uuid.UUID
    status: OutcomeStatus
    employee_name: Optional[str] = None
    summary_id: Optional[uuid.UUID] = None
    net_pay: Optional[Decimal] = None
    has_anomalies: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class BatchProcessingResult:
    period_id: uuid.UUID
    total_employees: int
    summaries_created: int
    summaries_with_errors: int
    skipped: int
    cancelled: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    outcomes: Tuple[EmployeeOutcome, ...] = ()


@dataclass(frozen=True)
class AttendanceSummary:
    working_days: int
    present_days: int
    absent_days: int
    late_days: int
    overtime_hours: Decimal
    max_daily_overtime_hours: Decimal = ZERO
    max_weekly_overtime_hours: Decimal = ZERO


# ===========================================
# ATTENDANCE AND EARNINGS HELPERS
# ===========================================

def count_working_days(start_date: date, end_date: date) -> int:
    """Monday-Friday days between two dates, inclusive."""
    days = 0
    current = start_date
    while current <= end_date:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


def summarize_attendance(
    records: List[AttendanceRecord],
    start_date: date,
    end_date: date,
) -> AttendanceSummary:
    """
    Reduce daily attendance to the counters stored on a payroll summary.

    Records outside the window are ignored; several records for the same
    day count as one present day and their overtime is added up. Weekend
    shifts add overtime hours but never present or late days.
    """
    working_days = count_working_days(start_date, end_date)

    present_dates = set()
    late_dates = set()
    daily_overtime: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for record in records:
        if not start_date <= record.work_date <= end_date:
            continue
        if record.is_present and record.work_date.weekday() < 5:
            present_dates.add(record.work_date)
            if record.is_late:
                late_dates.add(record.work_date)
        if record.overtime_hours:
            daily_overtime[record.work_date] += Decimal(record.overtime_hours)

    weekly_overtime: Dict[Tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    for work_date, hours in daily_overtime.items():
        iso = work_date.isocalendar()
        weekly_overtime[(iso[0], iso[1])] += hours

    present_days = len(present_dates)
    return AttendanceSummary(
        working_days=working_days,
        present_days=present_days,
        absent_days=max(0, working_days - present_days),
        late_days=len(late_dates),
        overtime_hours=sum(daily_overtime.values(), ZERO),
        max_daily_overtime_hours=max(daily_overtime.values(), default=ZERO),
        max_weekly_overtime_hours=max(weekly_overtime.values(), default=ZERO),
    )


def prorate_base_salary(base_salary: Decimal, present_days: int, working_days: int) -> Decimal:
    if working_days <= 0:
        return ZERO
    return round_rupiah(Decimal(base_salary) / working_days * present_days)


def calculate_overtime_pay(base_salary: Decimal, overtime_hours: Decimal) -> Decimal:
    """
    Overtime pay: 1.5x the hourly rate for the first hour, 2x after.

    The hourly rate is base_salary / 173.
    """
    hours = Decimal(overtime_hours)
    if hours <= 0:
        return ZERO
    hourly_rate = Decimal(base_salary) / MONTHLY_HOURS_DIVISOR
    first_hour = min(hours, Decimal("1"))
    next_hours = max(ZERO, hours - 1)
    return round_rupiah(
        first_hour * hourly_rate * OVERTIME_FIRST_HOUR_MULTIPLIER
        + next_hours * hourly_rate * OVERTIME_NEXT_HOURS_MULTIPLIER
    )


def employed_days_in_period(
    profile: EmployeeProfile,
    start_date: date,
    end_date: date,
) -> Optional[int]:
    """
    Calendar days the employee was employed inside the period, or None when
    employment covers the whole period.
    """
    joined_inside = profile.join_date is not None and profile.join_date > start_date
    left_inside = profile.exit_date is not None and profile.exit_date < end_date
    if not joined_inside and not left_inside:
        return None
    first = profile.join_date if joined_inside else start_date
    last = profile.exit_date if left_inside else end_date
    return max(0, (last - first).days + 1)


# ===========================================
# PROCESSING SERVICE
# ===========================================

class PayrollProcessingService:
    """Runs payroll for a period against the external HR collaborators."""

    def __init__(
        self,
        repository: PayrollRepository,
        employee_directory: EmployeeDirectory,
        attendance_provider: AttendanceProvider,
        anomaly_validator: Optional[AnomalyValidator] = None,
        max_concurrency: Optional[int] = None,
        validation_timeout: Optional[float] = None,
        bpjs_calculator: Optional[BPJSCalculator] = None,
        pph21_calculator: Optional[PPh21Calculator] = None,
    ):
        self.repository = repository
        self.employee_directory = employee_directory
        self.attendance_provider = attendance_provider
        self.anomaly_validator = anomaly_validator
        self.max_concurrency = max_concurrency or settings.payroll_max_concurrency
        self.validation_timeout = (
            validation_timeout if validation_timeout is not None
            else settings.anomaly_validation_timeout_seconds
        )
        self.bpjs_calculator = bpjs_calculator or BPJSCalculator()
        self.pph21_calculator = pph21_calculator or PPh21Calculator()

    async def process_period(
        self,
        period_id: uuid.UUID,
        employee_ids: Optional[List[uuid.UUID]] = None,
        validate_with_ai: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchProcessingResult:
        """
        Calculate payroll for a draft period and move it to processing.

        Args:
            period_id: Period to process
            employee_ids: Explicit subset; all active employees when omitted
            validate_with_ai: Run the anomaly validator for each employee
            cancel_event: Set to stop before the next employee starts

        Returns:
            BatchProcessingResult with one outcome per employee
        """
        period = await self._get_period(period_id)
        if period.status != PayrollPeriodStatus.DRAFT:
            raise InvalidStateTransitionException(
                resource_type="payroll period",
                current_status=period.status.value,
                action="process",
                allowed_from=[PayrollPeriodStatus.DRAFT.value],
            )

        targets = await self._resolve_employees(period, employee_ids)

        # Claim the period before any worker starts; a concurrent run loses here.
        period = await self._transition(period.start_processing(), PayrollPeriodStatus.DRAFT, "process")
        logger.info(f"Processing payroll {period.period_name} for {len(targets)} employees")

        outcomes, summaries = await self._run(period, targets, validate_with_ai, cancel_event)

        stats = await self._store_totals(period)
        return self._build_result(period.id, outcomes, summaries, stats)

    async def resume_period(
        self,
        period_id: uuid.UUID,
        employee_ids: Optional[List[uuid.UUID]] = None,
        validate_with_ai: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchProcessingResult:
        """
        Continue a processing period whose earlier run was cancelled or
        skipped employees. Employees that already have a summary are left
        untouched; totals are recomputed from every summary of the period.
        """
        period = await self._get_period(period_id)
        if period.status != PayrollPeriodStatus.PROCESSING:
            raise InvalidStateTransitionException(
                resource_type="payroll period",
                current_status=period.status.value,
                action="resume",
                allowed_from=[PayrollPeriodStatus.PROCESSING.value],
            )

        existing = {s.employee_id for s in await self.repository.list_summaries(period.id)}
        targets = [
            target for target in await self._resolve_employees(period, employee_ids, allow_empty=True)
            if target[0] not in existing
        ]
        logger.info(f"Resuming payroll {period.period_name} for {len(targets)} remaining employees")

        outcomes, summaries = await self._run(period, targets, validate_with_ai, cancel_event)

        stats = await self._store_totals(period)
        return self._build_result(period.id, outcomes, summaries, stats)

    # ===========================================
    # RUN
    # ===========================================

    async def _get_period(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise PeriodNotFoundException(period_id)
        return period

    async def _resolve_employees(
        self,
        period: PayrollPeriod,
        employee_ids: Optional[List[uuid.UUID]],
        allow_empty: bool = False,
    ) -> List[Tuple[uuid.UUID, Optional[EmployeeProfile]]]:
        """(employee_id, profile) pairs; profile is None when the directory has no record."""
        if employee_ids:
            targets = []
            for employee_id in dict.fromkeys(employee_ids):
                targets.append((employee_id, await self.employee_directory.get_employee(employee_id)))
        else:
            employees = await self.employee_directory.active_employees(period.employer_id)
            targets = [(employee.id, employee) for employee in employees]

        if not targets and not allow_empty:
            raise BusinessRuleException(
                message="No employees found to process",
                rule="PERIOD_HAS_EMPLOYEES",
                code=ErrorCode.NO_EMPLOYEES,
            )
        return targets

    async def _run(
        self,
        period: PayrollPeriod,
        targets: List[Tuple[uuid.UUID, Optional[EmployeeProfile]]],
        validate_with_ai: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[List[EmployeeOutcome], List[PayrollSummary]]:
        components = await self.repository.list_components(period.employer_id, is_active=True)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        validate = validate_with_ai and self.anomaly_validator is not None

        async def worker(employee_id: uuid.UUID, profile: Optional[EmployeeProfile]):
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return EmployeeOutcome(employee_id, OutcomeStatus.CANCELLED, reason="run cancelled"), None
                return await self._process_one(period, employee_id, profile, components, validate)

        results = await asyncio.gather(*(worker(employee_id, profile) for employee_id, profile in targets))

        outcomes = [outcome for outcome, _ in results]
        summaries = [summary for _, summary in results if summary is not None]
        return outcomes, summaries

    async def _process_one(
        self,
        period: PayrollPeriod,
        employee_id: uuid.UUID,
        profile: Optional[EmployeeProfile],
        components: List[PayrollComponent],
        validate: bool,
    ) -> Tuple[EmployeeOutcome, Optional[PayrollSummary]]:
        try:
            if profile is None:
                raise EmployeeDataException(employee_id, "employee not found in directory")
            if profile.employer_id != period.employer_id:
                raise EmployeeDataException(employee_id, "employee belongs to another employer")

            summary = await self.repository.create_summary(
                await self.calculate_employee(period, profile, components, validate)
            )
        except AppException as e:
            logger.warning(f"Skipping employee {employee_id} in {period.period_name}: {e.message}")
            return EmployeeOutcome(
                employee_id,
                OutcomeStatus.SKIPPED,
                employee_name=profile.full_name if profile else None,
                reason=e.message,
            ), None
        except Exception as e:
            logger.exception(f"Unexpected error processing employee {employee_id}: {e}")
            return EmployeeOutcome(
                employee_id,
                OutcomeStatus.SKIPPED,
                employee_name=profile.full_name if profile else None,
                reason=f"unexpected error: {e}",
            ), None

        return EmployeeOutcome(
            employee_id,
            OutcomeStatus.COMPLETED,
            employee_name=summary.employee_name,
            summary_id=summary.id,
            net_pay=summary.net_pay,
            has_anomalies=summary.has_anomalies,
        ), summary

    # ===========================================
    # PER-EMPLOYEE CALCULATION
    # ===========================================

    async def calculate_employee(
        self,
        period: PayrollPeriod,
        profile: EmployeeProfile,
        components: List[PayrollComponent],
        validate: bool = False,
    ) -> PayrollSummary:
        """Compute one employee's calculated summary without storing it."""
        records = await self.attendance_provider.records_for_employee_in_range(
            profile.id, period.start_date, period.end_date
        )
        if not records:
            raise EmployeeDataException(profile.id, "missing attendance data")

        attendance = summarize_attendance(records, period.start_date, period.end_date)

        contract_base = Decimal(profile.base_salary)
        base_salary = prorate_base_salary(contract_base, attendance.present_days, attendance.working_days)
        overtime_pay = calculate_overtime_pay(contract_base, attendance.overtime_hours)

        breakdown = calculate_employee_components(
            components,
            contract_base,
            profile.allowances,
            variables={
                "prorated_base_salary": base_salary,
                "working_days": attendance.working_days,
                "present_days": attendance.present_days,
                "absent_days": attendance.absent_days,
                "late_days": attendance.late_days,
                "overtime_hours": attendance.overtime_hours,
            },
        )

        total_earnings = base_salary + breakdown.allowances + overtime_pay + breakdown.bonuses
        taxable_income = base_salary + overtime_pay + breakdown.taxable_earnings + breakdown.taxable_benefits

        risk_class = profile.jkk_risk_class or settings.payroll_default_jkk_risk_class
        bpjs = self._calculate_bpjs(period, profile, contract_base, breakdown.bpjs_base_allowances, risk_class)
        pph21 = self.pph21_calculator.calculate(
            taxable_income,
            bpjs.total_employee,
            profile.is_married,
            profile.dependent_count,
        )

        loans = breakdown.loans + round_rupiah(Decimal(profile.loan_installment))
        other_deductions = breakdown.other_deductions
        total_deductions = bpjs.total_employee + pph21.monthly_tax + loans + other_deductions
        net_pay = total_earnings - total_deductions

        bpjs_details = dict(bpjs.sub_scheme_amounts())
        if bpjs.proration_factor != 1:
            bpjs_details["proration_factor"] = bpjs.proration_factor.quantize(Decimal("0.0001"))

        summary = PayrollSummary(
            period_id=period.id,
            employee_id=profile.id,
            employer_id=profile.employer_id,
            employee_number=profile.employee_number,
            employee_name=profile.full_name,
            department=profile.department,
            position=profile.position,
            working_days=attendance.working_days,
            present_days=attendance.present_days,
            absent_days=attendance.absent_days,
            late_days=attendance.late_days,
            overtime_hours=attendance.overtime_hours,
            base_salary=base_salary,
            allowances=breakdown.allowances,
            overtime_pay=overtime_pay,
            bonuses=breakdown.bonuses,
            total_earnings=total_earnings,
            bpjs_kesehatan_employee=bpjs.kesehatan_employee,
            bpjs_ketenagakerjaan_employee=bpjs.ketenagakerjaan_employee,
            pph21=pph21.monthly_tax,
            loans=loans,
            other_deductions=other_deductions,
            total_deductions=total_deductions,
            net_pay=net_pay,
            bpjs_kesehatan_employer=bpjs.kesehatan_employer,
            bpjs_ketenagakerjaan_employer=bpjs.ketenagakerjaan_employer,
            employer_benefits=breakdown.benefits,
            total_employer_cost=total_earnings + bpjs.total_employer + breakdown.benefits,
            bpjs_details=bpjs_details,
            tax_details=pph21.scalar_details(),
            component_details=breakdown.lines,
        )

        if validate:
            context = PayrollValidationContext(
                employee_id=profile.id,
                employee_name=profile.full_name,
                employment_type=profile.employment_type,
                period_month=period.period_month,
                period_year=period.period_year,
                contract_base_salary=contract_base,
                prorated_base_salary=base_salary,
                allowances=breakdown.allowances,
                bpjs_base_allowances=breakdown.bpjs_base_allowances,
                overtime_pay=overtime_pay,
                bonuses=breakdown.bonuses,
                total_earnings=total_earnings,
                taxable_income=taxable_income,
                bpjs_employee=bpjs.total_employee,
                bpjs_employer=bpjs.total_employer,
                pph21=pph21.monthly_tax,
                loans=loans,
                other_deductions=other_deductions,
                total_deductions=total_deductions,
                net_pay=net_pay,
                working_days=attendance.working_days,
                present_days=attendance.present_days,
                absent_days=attendance.absent_days,
                late_days=attendance.late_days,
                overtime_hours=attendance.overtime_hours,
                is_married=profile.is_married,
                dependent_count=profile.dependent_count,
                jkk_risk_class=risk_class,
                bpjs_prorated=bpjs.proration_factor != 1,
                max_daily_overtime_hours=attendance.max_daily_overtime_hours,
                max_weekly_overtime_hours=attendance.max_weekly_overtime_hours,
            )
            review = await self._validate(period, context)
            if review is not None:
                has_errors = review.has_errors and bool(review.errors)
                summary = summary.flag_anomaly(
                    review.errors if has_errors else (),
                    confidence=review.confidence,
                    review=review.review_text or None,
                )

        return summary.mark_calculated()

    def _calculate_bpjs(
        self,
        period: PayrollPeriod,
        profile: EmployeeProfile,
        contract_base: Decimal,
        additional_base: Decimal,
        risk_class: int,
    ) -> BPJSCalculationResult:
        employed_days = employed_days_in_period(profile, period.start_date, period.end_date)
        if employed_days is None:
            return self.bpjs_calculator.calculate(contract_base, additional_base, risk_class)
        if employed_days == 0:
            raise EmployeeDataException(profile.id, "employee was not employed during the period")
        return self.bpjs_calculator.calculate_prorated(
            contract_base,
            additional_base,
            min(employed_days, period.days_in_month),
            period.days_in_month,
            risk_class,
        )

    async def _history(self, period: PayrollPeriod, employee_id: uuid.UUID) -> Optional[HistoricalPayData]:
        history = await self.repository.get_employee_history(
            employee_id,
            period.period_year,
            period.period_month,
            limit=settings.payroll_history_months,
        )
        if not history:
            return None
        count = len(history)
        return HistoricalPayData(
            periods_count=count,
            average_gross_pay=sum((s.total_earnings for s in history), ZERO) / count,
            average_net_pay=sum((s.net_pay for s in history), ZERO) / count,
            average_pph21=sum((s.pph21 for s in history), ZERO) / count,
            last_net_pay=history[0].net_pay,
        )

    async def _validate(
        self,
        period: PayrollPeriod,
        context: PayrollValidationContext,
    ) -> Optional[PayrollValidationResult]:
        """Advisory review; None means proceed without annotation."""
        try:
            history = await self._history(period, context.employee_id)
            if history is not None:
                context = replace(context, history=history)
            return await asyncio.wait_for(
                self.anomaly_validator.validate(context),
                timeout=self.validation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Anomaly validation timed out after {self.validation_timeout}s "
                f"for employee {context.employee_id}"
            )
        except Exception as e:
            logger.warning(f"Anomaly validation failed for employee {context.employee_id}: {e}")
        return None

    # ===========================================
    # TOTALS
    # ===========================================

    async def _transition(
        self,
        updated: PayrollPeriod,
        expected_status: PayrollPeriodStatus,
        action: str,
    ) -> PayrollPeriod:
        if await self.repository.update_period_if_status(updated, expected_status):
            return updated
        current = await self._get_period(updated.id)
        raise InvalidStateTransitionException(
            resource_type="payroll period",
            current_status=current.status.value,
            action=action,
            allowed_from=[expected_status.value],
        )

    async def _store_totals(self, period: PayrollPeriod) -> PeriodStats:
        """Write totals aggregated from every persisted summary of the period."""
        stats = await self.repository.get_period_stats(period.id)
        stored = await self.repository.update_period_if_status(
            self._apply_stats(period, stats), PayrollPeriodStatus.PROCESSING
        )
        if not stored:
            logger.warning(f"Payroll {period.period_name} left processing during the run; totals not written")
        return stats

    @staticmethod
    def _apply_stats(period: PayrollPeriod, stats: PeriodStats) -> PayrollPeriod:
        return period.update_totals(
            total_employees=stats.total_employees,
            total_gross_pay=stats.total_gross_pay,
            total_deductions=stats.total_deductions,
            total_net_pay=stats.total_net_pay,
            total_bpjs_employer=stats.total_bpjs_employer,
            total_bpjs_employee=stats.total_bpjs_employee,
            total_pph21=stats.total_pph21,
            employees_with_anomalies=stats.employees_with_anomalies,
        )

    @staticmethod
    def _build_result(
        period_id: uuid.UUID,
        outcomes: List[EmployeeOutcome],
        summaries: List[PayrollSummary],
        stats: PeriodStats,
    ) -> BatchProcessingResult:
        completed = [o for o in outcomes if o.status == OutcomeStatus.COMPLETED]
        skipped = [o for o in outcomes if o.status == OutcomeStatus.SKIPPED]
        cancelled = [o for o in outcomes if o.status == OutcomeStatus.CANCELLED]
        result = BatchProcessingResult(
            period_id=period_id,
            total_employees=len(outcomes),
            summaries_created=len(completed),
            summaries_with_errors=sum(1 for s in summaries if s.has_anomalies),
            skipped=len(skipped),
            cancelled=len(cancelled),
            total_gross_pay=stats.total_gross_pay,
            total_net_pay=stats.total_net_pay,
            outcomes=tuple(outcomes),
        )
        logger.info(
            f"Payroll run for period {period_id}: {result.summaries_created} calculated, "
            f"{result.summaries_with_errors} with anomalies, {result.skipped} skipped, "
            f"{result.cancelled} cancelled"
        )
        return result

"""
Payroll Engine - Payroll Processing Tests

Monthly runs against fake HR collaborators.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import (
    BrokenValidator,
    FakeAttendanceProvider,
    FakeEmployeeDirectory,
    SlowValidator,
    StaticValidator,
    attendance_for,
    make_profile,
    weekdays,
)
from payroll_engine.models.entities import (
    AnomalyDetail,
    AnomalySeverity,
    AnomalyType,
    PayrollPeriodStatus,
    PayrollSummaryStatus,
)
from payroll_engine.services.collaborators import AttendanceRecord, PayrollValidationResult
from payroll_engine.services.payroll_processing_service import (
    OutcomeStatus,
    PayrollProcessingService,
    calculate_overtime_pay,
    count_working_days,
    employed_days_in_period,
    summarize_attendance,
)
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    ErrorCode,
    InvalidStateTransitionException,
    PeriodNotFoundException,
)


def build_service(repository, profiles, records, **options):
    return PayrollProcessingService(
        repository,
        options.pop("directory", None) or FakeEmployeeDirectory(profiles),
        options.pop("attendance", None) or FakeAttendanceProvider(records),
        **options,
    )


class SlowDirectory(FakeEmployeeDirectory):
    """Yields before answering so overlapping runs both pass the draft check."""

    async def active_employees(self, employer_id):
        await asyncio.sleep(0.01)
        return await super().active_employees(employer_id)


# =============================================================================
# HELPERS
# =============================================================================

class TestAttendanceHelpers:
    """Working days, attendance counters, overtime and employment windows."""

    def test_count_working_days(self):
        assert count_working_days(date(2025, 4, 1), date(2025, 4, 30)) == 22
        assert count_working_days(date(2025, 4, 5), date(2025, 4, 6)) == 0

    def test_summarize_attendance(self):
        records = [
            AttendanceRecord(date(2025, 4, 1), True, overtime_hours=Decimal("2")),
            AttendanceRecord(date(2025, 4, 1), True, overtime_hours=Decimal("1")),
            AttendanceRecord(date(2025, 4, 2), True, overtime_hours=Decimal("3")),
            AttendanceRecord(date(2025, 4, 8), True, is_late=True),
            AttendanceRecord(date(2025, 4, 9), False),
            AttendanceRecord(date(2025, 5, 1), True, overtime_hours=Decimal("4")),
        ]

        summary = summarize_attendance(records, date(2025, 4, 1), date(2025, 4, 30))

        assert summary.working_days == 22
        assert summary.present_days == 3
        assert summary.absent_days == 19
        assert summary.late_days == 1
        assert summary.overtime_hours == Decimal("6")
        assert summary.max_daily_overtime_hours == Decimal("3")
        assert summary.max_weekly_overtime_hours == Decimal("6")

    def test_weekend_shift_counts_only_overtime(self):
        records = attendance_for(2025, 4, 22) + [
            AttendanceRecord(date(2025, 4, 5), True, is_late=True, overtime_hours=Decimal("3")),
        ]

        summary = summarize_attendance(records, date(2025, 4, 1), date(2025, 4, 30))

        assert summary.working_days == 22
        assert summary.present_days == 22
        assert summary.absent_days == 0
        assert summary.late_days == 0
        assert summary.overtime_hours == Decimal("3")
        assert summary.max_weekly_overtime_hours == Decimal("3")

    def test_overtime_pay(self):
        """First hour at 1.5x, the rest at 2x, hourly rate base / 173."""
        assert calculate_overtime_pay(Decimal("10000000"), Decimal("3")) == Decimal("317919")
        assert calculate_overtime_pay(Decimal("10000000"), Decimal("0")) == Decimal("0")

    def test_employed_days(self, employer_id):
        start, end = date(2025, 4, 1), date(2025, 4, 30)

        assert employed_days_in_period(make_profile(employer_id), start, end) is None
        assert employed_days_in_period(make_profile(employer_id, join_date=date(2025, 4, 16)), start, end) == 15
        assert employed_days_in_period(make_profile(employer_id, exit_date=date(2025, 4, 10)), start, end) == 10


# =============================================================================
# PROCESS PERIOD
# =============================================================================

class TestProcessPeriod:
    """PayrollProcessingService.process_period"""

    @pytest.mark.asyncio
    async def test_reference_employee(self, repository, employee, april_period):
        """10,000,000 contract, 20 of 22 days present, TK/0."""
        service = build_service(repository, [employee], {employee.id: attendance_for(2025, 4, 20)})

        result = await service.process_period(april_period.id)

        assert result.summaries_created == 1
        assert result.skipped == 0
        [outcome] = result.outcomes
        assert outcome.status == OutcomeStatus.COMPLETED

        summary = await repository.get_summary(outcome.summary_id)
        assert summary.status == PayrollSummaryStatus.CALCULATED
        assert summary.working_days == 22
        assert summary.present_days == 20
        assert summary.absent_days == 2
        assert summary.base_salary == Decimal("9090909")
        assert summary.bpjs_kesehatan_employee == Decimal("100000")
        assert summary.bpjs_ketenagakerjaan_employee == Decimal("300000")
        assert summary.bpjs_employer_total == Decimal("1024000")
        assert summary.pph21 == Decimal("186817")
        assert summary.total_deductions == Decimal("586817")
        assert summary.net_pay == Decimal("8504092")
        assert summary.total_employer_cost == Decimal("10114909")
        assert summary.tax_details["ptkp_status"] == "TK/0"

        period = await repository.get_period(april_period.id)
        assert period.status == PayrollPeriodStatus.PROCESSING
        assert period.total_employees == 1
        assert period.total_net_pay == Decimal("8504092")
        assert period.total_pph21 == Decimal("186817")

    @pytest.mark.asyncio
    async def test_saturday_shift_is_paid_as_overtime(self, repository, employee, april_period):
        """Full weekday attendance plus 3 hours on Saturday 5 April."""
        records = attendance_for(2025, 4, 22) + [
            AttendanceRecord(date(2025, 4, 5), True, overtime_hours=Decimal("3")),
        ]
        service = build_service(repository, [employee], {employee.id: records})

        result = await service.process_period(april_period.id)

        [outcome] = result.outcomes
        assert outcome.status == OutcomeStatus.COMPLETED
        summary = await repository.get_summary(outcome.summary_id)
        assert summary.present_days == 22
        assert summary.base_salary == Decimal("10000000")
        assert summary.overtime_hours == Decimal("3")
        # 10,000,000 / 173 x (1.5 + 2 x 2)
        assert summary.overtime_pay == Decimal("317919")

    @pytest.mark.asyncio
    async def test_components_and_overtime(self, repository, employee, april_period, transport_allowance):
        await repository.create_component(transport_allowance)
        records = attendance_for(2025, 4, 22, overtime={1: Decimal("3")})
        service = build_service(repository, [employee], {employee.id: records})

        result = await service.process_period(april_period.id)

        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert summary.base_salary == Decimal("10000000")
        assert summary.allowances == Decimal("500000")
        assert summary.overtime_pay == Decimal("317919")
        assert summary.total_earnings == Decimal("10817919")
        assert summary.net_pay == summary.total_earnings - summary.total_deductions
        assert [line["code"] for line in summary.component_details] == ["TRANSPORT"]

    @pytest.mark.asyncio
    async def test_loan_installment_deducted(self, repository, employer_id, april_period):
        profile = make_profile(employer_id, loan_installment=Decimal("250000"))
        service = build_service(repository, [profile], {profile.id: attendance_for(2025, 4, 20)})

        result = await service.process_period(april_period.id)

        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert summary.loans == Decimal("250000")
        assert summary.net_pay == Decimal("8254092")

    @pytest.mark.asyncio
    async def test_mid_month_joiner_gets_prorated_bpjs(self, repository, employer_id, april_period):
        profile = make_profile(employer_id, join_date=date(2025, 4, 16))
        records = [AttendanceRecord(d, True) for d in weekdays(2025, 4) if d.day >= 16]
        service = build_service(repository, [profile], {profile.id: records})

        result = await service.process_period(april_period.id)

        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert summary.present_days == 11
        assert summary.base_salary == Decimal("5000000")
        assert summary.bpjs_employee_total == Decimal("200000")
        assert summary.bpjs_details["proration_factor"] == Decimal("0.5000")

    @pytest.mark.asyncio
    async def test_missing_attendance_skips_employee(self, repository, employer_id, employee, april_period):
        absent = make_profile(employer_id, employee_number="EMP-002", full_name="Dewi Lestari")
        service = build_service(repository, [employee, absent], {employee.id: attendance_for(2025, 4, 22)})

        result = await service.process_period(april_period.id)

        assert result.total_employees == 2
        assert result.summaries_created == 1
        assert result.skipped == 1
        skipped = next(o for o in result.outcomes if o.status == OutcomeStatus.SKIPPED)
        assert skipped.employee_id == absent.id
        assert "missing attendance data" in skipped.reason
        assert (await repository.get_period(april_period.id)).total_employees == 1

    @pytest.mark.asyncio
    async def test_unknown_and_foreign_employees_skipped(self, repository, employee, april_period):
        foreign = make_profile(uuid4(), employee_number="EXT-001")
        records = {employee.id: attendance_for(2025, 4, 22), foreign.id: attendance_for(2025, 4, 22)}
        service = build_service(repository, [employee, foreign], records)

        result = await service.process_period(april_period.id, employee_ids=[employee.id, foreign.id, uuid4()])

        assert result.summaries_created == 1
        assert result.skipped == 2
        reasons = [o.reason for o in result.outcomes if o.status == OutcomeStatus.SKIPPED]
        assert any("another employer" in r for r in reasons)
        assert any("not found" in r for r in reasons)

    @pytest.mark.asyncio
    async def test_many_employees_processed_concurrently(self, repository, employer_id, april_period):
        profiles = [make_profile(employer_id, employee_number=f"EMP-{i:03d}") for i in range(12)]
        records = {p.id: attendance_for(2025, 4, 22) for p in profiles}
        service = build_service(repository, profiles, records, max_concurrency=4)

        result = await service.process_period(april_period.id)

        assert result.summaries_created == 12
        period = await repository.get_period(april_period.id)
        assert period.total_employees == 12
        assert period.total_net_pay == sum(
            (s.net_pay for s in await repository.list_summaries(april_period.id)), Decimal("0")
        )

    @pytest.mark.asyncio
    async def test_no_employees(self, repository, april_period):
        service = build_service(repository, [], {})

        with pytest.raises(BusinessRuleException) as exc_info:
            await service.process_period(april_period.id)

        assert exc_info.value.code == ErrorCode.NO_EMPLOYEES

    @pytest.mark.asyncio
    async def test_period_must_be_draft(self, repository, employee, april_period):
        service = build_service(repository, [employee], {employee.id: attendance_for(2025, 4, 22)})
        await service.process_period(april_period.id)

        with pytest.raises(InvalidStateTransitionException):
            await service.process_period(april_period.id)

    @pytest.mark.asyncio
    async def test_overlapping_runs_process_once(self, repository, employer_id, april_period):
        """Two runs started together: one claims the period, the other is rejected."""
        profiles = [make_profile(employer_id, employee_number=f"EMP-{i:03d}") for i in range(6)]
        records = {p.id: attendance_for(2025, 4, 22) for p in profiles}

        results = await asyncio.gather(
            build_service(repository, profiles, records, directory=SlowDirectory(profiles))
            .process_period(april_period.id),
            build_service(repository, profiles, records, directory=SlowDirectory(profiles))
            .process_period(april_period.id),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, InvalidStateTransitionException)]
        [finished] = [r for r in results if not isinstance(r, Exception)]
        assert len(rejected) == 1
        assert rejected[0].current_status == "processing"
        assert finished.summaries_created == 6

        summaries = await repository.list_summaries(april_period.id)
        period = await repository.get_period(april_period.id)
        assert len(summaries) == 6
        assert period.total_employees == 6
        assert period.total_gross_pay == sum((s.total_earnings for s in summaries), Decimal("0"))

    @pytest.mark.asyncio
    async def test_unknown_period(self, repository):
        service = build_service(repository, [], {})

        with pytest.raises(PeriodNotFoundException):
            await service.process_period(uuid4())


# =============================================================================
# ANOMALY VALIDATION
# =============================================================================

class TestValidationDuringProcessing:
    """Advisory validator calls."""

    @pytest.mark.asyncio
    async def test_findings_flag_summary(self, repository, employee, april_period):
        finding = AnomalyDetail(
            type=AnomalyType.UNUSUAL_AMOUNT,
            severity=AnomalySeverity.HIGH,
            description="Net pay differs 70% from the recent average",
            field="net_pay",
        )
        validator = StaticValidator(PayrollValidationResult(
            has_errors=True,
            errors=(finding,),
            confidence=Decimal("0.9"),
            review_text="Large change in net pay",
        ))
        service = build_service(
            repository, [employee], {employee.id: attendance_for(2025, 4, 20)}, anomaly_validator=validator,
        )

        result = await service.process_period(april_period.id)

        assert result.summaries_with_errors == 1
        assert result.outcomes[0].has_anomalies
        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert summary.anomaly_details == (finding,)
        assert summary.ai_confidence == Decimal("0.9")
        assert summary.ai_review == "Large change in net pay"
        assert (await repository.get_period(april_period.id)).employees_with_anomalies == 1

        [context] = validator.contexts
        assert context.prorated_base_salary == Decimal("9090909")
        assert context.pph21 == Decimal("186817")
        assert context.history is None

    @pytest.mark.asyncio
    async def test_clean_review_records_confidence(self, repository, employee, april_period):
        validator = StaticValidator(PayrollValidationResult(has_errors=False, confidence=Decimal("0.95")))
        service = build_service(
            repository, [employee], {employee.id: attendance_for(2025, 4, 20)}, anomaly_validator=validator,
        )

        result = await service.process_period(april_period.id)

        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert not summary.has_anomalies
        assert summary.ai_confidence == Decimal("0.95")

    @pytest.mark.asyncio
    async def test_validation_can_be_turned_off_per_run(self, repository, employee, april_period):
        validator = StaticValidator(PayrollValidationResult(has_errors=False))
        service = build_service(
            repository, [employee], {employee.id: attendance_for(2025, 4, 20)}, anomaly_validator=validator,
        )

        await service.process_period(april_period.id, validate_with_ai=False)

        assert validator.contexts == []

    @pytest.mark.asyncio
    async def test_slow_validator_does_not_block(self, repository, employee, april_period):
        service = build_service(
            repository, [employee], {employee.id: attendance_for(2025, 4, 20)},
            anomaly_validator=SlowValidator(),
            validation_timeout=0.01,
        )

        result = await service.process_period(april_period.id)

        assert result.summaries_created == 1
        summary = await repository.get_summary(result.outcomes[0].summary_id)
        assert summary.ai_confidence is None
        assert not summary.has_anomalies

    @pytest.mark.asyncio
    async def test_failing_validator_does_not_block(self, repository, employee, april_period):
        service = build_service(
            repository, [employee], {employee.id: attendance_for(2025, 4, 20)},
            anomaly_validator=BrokenValidator(),
        )

        result = await service.process_period(april_period.id)

        assert result.summaries_created == 1
        assert (await repository.get_summary(result.outcomes[0].summary_id)).ai_confidence is None


# =============================================================================
# CANCEL AND RESUME
# =============================================================================

class TestCancelAndResume:

    @pytest.mark.asyncio
    async def test_cancel_then_resume(self, repository, employer_id, april_period):
        first = make_profile(employer_id, employee_number="EMP-001")
        second = make_profile(employer_id, employee_number="EMP-002", full_name="Dewi Lestari")
        records = {first.id: attendance_for(2025, 4, 22), second.id: attendance_for(2025, 4, 20)}
        cancel_event = asyncio.Event()
        attendance = FakeAttendanceProvider(records, on_call=lambda _: cancel_event.set())
        service = build_service(repository, [first, second], records, attendance=attendance, max_concurrency=1)

        result = await service.process_period(april_period.id, cancel_event=cancel_event)

        assert result.summaries_created == 1
        assert result.cancelled == 1
        assert [o.status for o in result.outcomes] == [OutcomeStatus.COMPLETED, OutcomeStatus.CANCELLED]
        assert (await repository.get_period(april_period.id)).status == PayrollPeriodStatus.PROCESSING

        resumed = await service.resume_period(april_period.id)

        assert resumed.summaries_created == 1
        assert resumed.outcomes[0].employee_id == second.id
        period = await repository.get_period(april_period.id)
        assert period.total_employees == 2
        assert period.total_net_pay == sum(
            (s.net_pay for s in await repository.list_summaries(april_period.id)), Decimal("0")
        )

    @pytest.mark.asyncio
    async def test_resume_requires_processing_period(self, repository, employee, april_period):
        service = build_service(repository, [employee], {employee.id: attendance_for(2025, 4, 22)})

        with pytest.raises(InvalidStateTransitionException):
            await service.resume_period(april_period.id)

    @pytest.mark.asyncio
    async def test_resume_with_nothing_left(self, repository, employee, april_period):
        service = build_service(repository, [employee], {employee.id: attendance_for(2025, 4, 22)})
        await service.process_period(april_period.id)

        resumed = await service.resume_period(april_period.id)

        assert resumed.total_employees == 0
        assert (await repository.get_period(april_period.id)).total_employees == 1

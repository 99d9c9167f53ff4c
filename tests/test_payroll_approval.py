"""
Payroll Engine - Period and Approval Tests

Period management, the approval gate, payment and cancellation.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import (
    FakeAttendanceProvider,
    FakeEmployeeDirectory,
    StaticValidator,
    attendance_for,
)
from payroll_engine.models.entities import (
    AnomalyDetail,
    AnomalySeverity,
    AnomalyType,
    PayrollPeriodStatus,
    PayrollSummaryStatus,
)
from payroll_engine.services.collaborators import PayrollValidationResult
from payroll_engine.services.payroll_approval_service import PayrollApprovalService
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.payroll_processing_service import PayrollProcessingService
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    CriticalAnomaliesException,
    DuplicateEntryException,
    ErrorCode,
    InvalidStateTransitionException,
    NotFoundException,
    PeriodNotFoundException,
)


async def process(repository, period, employee, findings=()):
    validator = None
    if findings:
        validator = StaticValidator(PayrollValidationResult(
            has_errors=True,
            errors=tuple(findings),
            confidence=Decimal("0.9"),
        ))
    service = PayrollProcessingService(
        repository,
        FakeEmployeeDirectory([employee]),
        FakeAttendanceProvider({employee.id: attendance_for(2025, 4, 20)}),
        anomaly_validator=validator,
    )
    return await service.process_period(period.id)


class TestPayrollPeriodService:
    """Period CRUD, statistics and year-to-date figures."""

    @pytest.mark.asyncio
    async def test_create_period(self, repository, employer_id):
        service = PayrollPeriodService(repository)

        period = await service.create_period(employer_id, 5, 2025, notes="May payroll")

        assert period.status == PayrollPeriodStatus.DRAFT
        assert period.start_date == date(2025, 5, 1)
        assert period.end_date == date(2025, 5, 31)
        assert await service.get_period(period.id) == period

    @pytest.mark.asyncio
    async def test_duplicate_month_rejected(self, repository, employer_id, april_period):
        service = PayrollPeriodService(repository)

        with pytest.raises(DuplicateEntryException):
            await service.create_period(employer_id, 4, 2025)

    @pytest.mark.asyncio
    async def test_same_month_for_another_employer_allowed(self, repository, april_period):
        period = await PayrollPeriodService(repository).create_period(uuid4(), 4, 2025)

        assert period.id != april_period.id

    @pytest.mark.asyncio
    async def test_list_periods_filters(self, repository, employer_id, april_period):
        service = PayrollPeriodService(repository)
        await service.create_period(employer_id, 1, 2024)

        assert len(await service.list_periods(employer_id)) == 2
        assert [p.id for p in await service.list_periods(employer_id, year=2025)] == [april_period.id]
        assert await service.list_periods(employer_id, status=PayrollPeriodStatus.PAID) == []

    @pytest.mark.asyncio
    async def test_update_draft_period(self, repository, april_period):
        updated = await PayrollPeriodService(repository).update_period(
            april_period.id, payment_date=date(2025, 5, 2), notes="Paid after the long weekend",
        )

        assert updated.payment_date == date(2025, 5, 2)
        assert (await repository.get_period(april_period.id)).notes == "Paid after the long weekend"

    @pytest.mark.asyncio
    async def test_delete_draft_period(self, repository, april_period):
        service = PayrollPeriodService(repository)

        await service.delete_period(april_period.id)

        with pytest.raises(PeriodNotFoundException):
            await service.get_period(april_period.id)

    @pytest.mark.asyncio
    async def test_processed_period_cannot_be_deleted(self, repository, employee, april_period):
        await process(repository, april_period, employee)

        with pytest.raises(BusinessRuleException) as exc_info:
            await PayrollPeriodService(repository).delete_period(april_period.id)

        assert exc_info.value.code == ErrorCode.CANNOT_DELETE

    @pytest.mark.asyncio
    async def test_stats_and_summaries(self, repository, employee, april_period):
        await process(repository, april_period, employee)
        service = PayrollPeriodService(repository)

        stats = await service.get_period_stats(april_period.id)
        summaries = await service.list_summaries(april_period.id)

        assert stats.total_employees == 1
        assert stats.total_gross_pay == Decimal("9090909")
        assert stats.total_bpjs_employee == Decimal("400000")
        assert stats.total_bpjs_employer == Decimal("1024000")
        assert len(summaries) == 1
        assert await service.list_summaries(april_period.id, has_anomalies=True) == []
        assert await service.get_summary(summaries[0].id) == summaries[0]

    @pytest.mark.asyncio
    async def test_unknown_summary(self, repository):
        with pytest.raises(NotFoundException) as exc_info:
            await PayrollPeriodService(repository).get_summary(uuid4())

        assert exc_info.value.code == ErrorCode.SUMMARY_NOT_FOUND

    @pytest.mark.asyncio
    async def test_year_to_date(self, repository, employee, april_period):
        await process(repository, april_period, employee)

        ytd = await PayrollPeriodService(repository).get_employee_year_to_date(employee.id, 2025)

        assert ytd.periods_processed == 1
        assert ytd.total_net_pay == Decimal("8504092")
        assert ytd.total_pph21 == Decimal("186817")

        empty = await PayrollPeriodService(repository).get_employee_year_to_date(employee.id, 2024)
        assert empty.periods_processed == 0


class TestPayrollApproval:
    """Approval gate, payment and cancellation."""

    @pytest.mark.asyncio
    async def test_approve_and_pay(self, repository, employee, april_period):
        await process(repository, april_period, employee)
        service = PayrollApprovalService(repository)
        approver = uuid4()

        period = await service.approve_period(april_period.id, approver, notes="Checked by finance")

        assert period.status == PayrollPeriodStatus.APPROVED
        assert period.approved_by == approver
        [summary] = await repository.list_summaries(april_period.id)
        assert summary.status == PayrollSummaryStatus.APPROVED

        period = await service.mark_period_paid(april_period.id)

        assert period.status == PayrollPeriodStatus.PAID
        [summary] = await repository.list_summaries(april_period.id)
        assert summary.status == PayrollSummaryStatus.PAID

    @pytest.mark.asyncio
    async def test_blocking_anomalies_prevent_approval(self, repository, employee, april_period):
        finding = AnomalyDetail(
            type=AnomalyType.CALCULATION_ERROR,
            severity=AnomalySeverity.CRITICAL,
            description="PPh21 differs from the progressive tax calculation",
            field="pph21",
        )
        await process(repository, april_period, employee, findings=[finding])

        with pytest.raises(CriticalAnomaliesException) as exc_info:
            await PayrollApprovalService(repository).approve_period(april_period.id, uuid4())

        [entry] = exc_info.value.blocking
        assert entry["employee_id"] == str(employee.id)
        assert entry["anomalies"][0]["severity"] == "critical"
        assert exc_info.value.code == ErrorCode.CRITICAL_ANOMALIES
        assert (await repository.get_period(april_period.id)).status == PayrollPeriodStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_minor_anomalies_do_not_block(self, repository, employee, april_period):
        finding = AnomalyDetail(
            type=AnomalyType.MISSING_DATA,
            severity=AnomalySeverity.LOW,
            description="Department is missing",
        )
        await process(repository, april_period, employee, findings=[finding])

        period = await PayrollApprovalService(repository).approve_period(april_period.id, uuid4())

        assert period.status == PayrollPeriodStatus.APPROVED

    @pytest.mark.asyncio
    async def test_draft_cannot_be_approved(self, repository, april_period):
        with pytest.raises(InvalidStateTransitionException):
            await PayrollApprovalService(repository).approve_period(april_period.id, uuid4())

    @pytest.mark.asyncio
    async def test_unapproved_period_cannot_be_paid(self, repository, employee, april_period):
        await process(repository, april_period, employee)

        with pytest.raises(InvalidStateTransitionException):
            await PayrollApprovalService(repository).mark_period_paid(april_period.id)

    @pytest.mark.asyncio
    async def test_cancel_keeps_summaries(self, repository, employee, april_period):
        await process(repository, april_period, employee)

        period = await PayrollApprovalService(repository).cancel_period(april_period.id, "Salary table was wrong")

        assert period.status == PayrollPeriodStatus.CANCELLED
        assert period.notes == "Salary table was wrong"
        assert len(await repository.list_summaries(april_period.id)) == 1

    @pytest.mark.asyncio
    async def test_cancelled_period_excluded_from_year_to_date(self, repository, employee, april_period):
        await process(repository, april_period, employee)
        await PayrollApprovalService(repository).cancel_period(april_period.id)

        ytd = await PayrollPeriodService(repository).get_employee_year_to_date(employee.id, 2025)

        assert ytd.periods_processed == 0

    @pytest.mark.asyncio
    async def test_unknown_period(self, repository):
        with pytest.raises(PeriodNotFoundException):
            await PayrollApprovalService(repository).cancel_period(uuid4())

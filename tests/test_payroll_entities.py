"""
Payroll Engine - Payroll Record Tests

Lifecycle rules and invariants of periods and summaries.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engine.models.entities import (
    AnomalyDetail,
    AnomalySeverity,
    AnomalyType,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    InvalidDateRangeException,
    InvalidStateTransitionException,
    ValidationException,
)


def make_summary(**overrides) -> PayrollSummary:
    values = dict(
        period_id=uuid4(),
        employee_id=uuid4(),
        employer_id=uuid4(),
        employee_number="EMP-001",
        employee_name="Siti Rahayu",
        working_days=22,
        present_days=22,
        base_salary=Decimal("8000000"),
        total_earnings=Decimal("8000000"),
        bpjs_kesehatan_employee=Decimal("80000"),
        bpjs_ketenagakerjaan_employee=Decimal("240000"),
        pph21=Decimal("100000"),
        total_deductions=Decimal("420000"),
        net_pay=Decimal("7580000"),
    )
    values.update(overrides)
    return PayrollSummary(**values)


HIGH_ANOMALY = AnomalyDetail(
    type=AnomalyType.CALCULATION_ERROR,
    severity=AnomalySeverity.HIGH,
    description="PPh21 differs from the progressive tax calculation",
    field="pph21",
)

LOW_ANOMALY = AnomalyDetail(
    type=AnomalyType.MISSING_DATA,
    severity=AnomalySeverity.LOW,
    description="Department is missing",
)


class TestPayrollPeriod:
    """Period creation and lifecycle."""

    def test_for_month_covers_calendar_month(self):
        period = PayrollPeriod.for_month(uuid4(), 2, 2024)

        assert period.start_date == date(2024, 2, 1)
        assert period.end_date == date(2024, 2, 29)
        assert period.payment_date == period.end_date
        assert period.status == PayrollPeriodStatus.DRAFT
        assert period.days_in_month == 29

    def test_period_names(self):
        period = PayrollPeriod.for_month(uuid4(), 8, 2025)

        assert period.period_name == "August 2025"
        assert period.period_name_id == "Agustus 2025"

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month_rejected(self, month):
        with pytest.raises(ValidationException):
            PayrollPeriod.for_month(uuid4(), month, 2025)

    def test_payment_before_end_rejected(self):
        with pytest.raises(InvalidDateRangeException):
            PayrollPeriod.for_month(uuid4(), 4, 2025, payment_date=date(2025, 4, 15))

    def test_full_lifecycle(self):
        approver = uuid4()
        period = PayrollPeriod.for_month(uuid4(), 4, 2025)

        period = period.start_processing()
        assert period.status == PayrollPeriodStatus.PROCESSING
        assert period.can_approve

        period = period.approve(approver, notes="OK")
        assert period.status == PayrollPeriodStatus.APPROVED
        assert period.approved_by == approver
        assert period.approved_at is not None

        period = period.mark_as_paid()
        assert period.status == PayrollPeriodStatus.PAID
        assert period.paid_at is not None

    def test_transitions_return_new_records(self):
        draft = PayrollPeriod.for_month(uuid4(), 4, 2025)
        processing = draft.start_processing()

        assert draft.status == PayrollPeriodStatus.DRAFT
        assert processing.id == draft.id

    def test_cannot_approve_draft(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025)

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            period.approve(uuid4())

        assert exc_info.value.details["allowed_from"] == ["processing"]

    def test_cannot_pay_before_approval(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025).start_processing()

        with pytest.raises(InvalidStateTransitionException):
            period.mark_as_paid()

    def test_cannot_process_twice(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025).start_processing()

        with pytest.raises(InvalidStateTransitionException):
            period.start_processing()

    def test_cancel_from_approved(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025).start_processing().approve(uuid4())

        cancelled = period.cancel("Wrong salary table")

        assert cancelled.status == PayrollPeriodStatus.CANCELLED
        assert cancelled.notes == "Wrong salary table"

    def test_paid_period_cannot_be_cancelled(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025).start_processing().approve(uuid4()).mark_as_paid()

        with pytest.raises(InvalidStateTransitionException):
            period.cancel()

    def test_details_editable_only_in_draft(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025)
        updated = period.update_details(payment_date=date(2025, 5, 2), notes="Paid after holiday")

        assert updated.payment_date == date(2025, 5, 2)

        with pytest.raises(BusinessRuleException):
            updated.start_processing().update_details(notes="too late")

    def test_negative_totals_rejected(self):
        period = PayrollPeriod.for_month(uuid4(), 4, 2025)

        with pytest.raises(ValidationException):
            period.update_totals(1, Decimal("-1"), Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"))


class TestPayrollSummary:
    """Summary invariants and lifecycle."""

    def test_net_pay_must_balance(self):
        with pytest.raises(ValidationException):
            make_summary(net_pay=Decimal("7000000"))

    def test_present_days_cannot_exceed_working_days(self):
        with pytest.raises(ValidationException):
            make_summary(present_days=23)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationException):
            make_summary(loans=Decimal("-5"))

    def test_bpjs_totals(self):
        summary = make_summary(
            bpjs_kesehatan_employer=Decimal("320000"),
            bpjs_ketenagakerjaan_employer=Decimal("500000"),
        )

        assert summary.bpjs_employee_total == Decimal("320000")
        assert summary.bpjs_employer_total == Decimal("820000")

    def test_attendance_rate(self):
        summary = make_summary(present_days=11)

        assert summary.attendance_rate == Decimal("50")

    def test_lifecycle(self):
        summary = make_summary().mark_calculated()
        assert summary.status == PayrollSummaryStatus.CALCULATED

        summary = summary.approve()
        assert summary.status == PayrollSummaryStatus.APPROVED

        summary = summary.mark_as_paid()
        assert summary.status == PayrollSummaryStatus.PAID

    def test_cannot_pay_unapproved_summary(self):
        with pytest.raises(InvalidStateTransitionException):
            make_summary().mark_calculated().mark_as_paid()

    def test_flag_anomaly_records_findings(self):
        summary = make_summary().flag_anomaly([LOW_ANOMALY], confidence=Decimal("0.85"), review="Minor issue")

        assert summary.has_anomalies
        assert summary.anomaly_details == (LOW_ANOMALY,)
        assert summary.ai_confidence == Decimal("0.85")
        assert not summary.has_critical_anomalies

    def test_flag_anomaly_without_findings(self):
        summary = make_summary().flag_anomaly([], confidence=Decimal("0.95"))

        assert not summary.has_anomalies
        assert summary.ai_confidence == Decimal("0.95")

    def test_high_severity_blocks_approval(self):
        summary = make_summary().flag_anomaly([HIGH_ANOMALY, LOW_ANOMALY]).mark_calculated()

        assert summary.has_critical_anomalies
        assert summary.blocking_anomalies == (HIGH_ANOMALY,)
        assert not summary.can_approve
        with pytest.raises(BusinessRuleException):
            summary.approve()

    def test_cannot_flag_approved_summary(self):
        summary = make_summary().mark_calculated().approve()

        with pytest.raises(InvalidStateTransitionException):
            summary.flag_anomaly([LOW_ANOMALY])

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(ValidationException):
            make_summary().flag_anomaly([], confidence=Decimal("1.5"))


class TestAnomalyDetail:

    def test_dict_round_trip_keeps_amounts(self):
        anomaly = AnomalyDetail(
            type=AnomalyType.COMPLIANCE_ISSUE,
            severity=AnomalySeverity.HIGH,
            description="Net pay is below the regional minimum wage (UMR)",
            field="net_pay",
            expected_value=Decimal("4500000"),
            actual_value=Decimal("3900000"),
        )

        assert AnomalyDetail.from_dict(anomaly.to_dict()) == anomaly
        assert anomaly.is_blocking

"""
Payroll Approval Service
Approval, payment and cancellation of processed payroll periods

Approval is a hard gate: a period whose summaries carry a high or critical
anomaly cannot be approved until those anomalies are cleared.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from payroll_engine.models.entities import (
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)
from payroll_engine.repositories.base import PayrollRepository
from payroll_engine.utils.error_handling import (
    CriticalAnomaliesException,
    InvalidStateTransitionException,
    PeriodNotFoundException,
)

logger = logging.getLogger(__name__)


def blocking_anomaly_report(summaries: List[PayrollSummary]) -> List[Dict[str, Any]]:
    """One entry per summary with high or critical anomalies."""
    report = []
    for summary in summaries:
        if not summary.has_critical_anomalies:
            continue
        report.append({
            "summary_id": str(summary.id),
            "employee_id": str(summary.employee_id),
            "employee_name": summary.employee_name,
            "anomalies": [a.to_dict() for a in summary.blocking_anomalies],
        })
    return report


class PayrollApprovalService:
    """State transitions of a period after processing."""

    def __init__(self, repository: PayrollRepository):
        self.repository = repository

    async def _get_period(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise PeriodNotFoundException(period_id)
        return period

    async def approve_period(
        self,
        period_id: uuid.UUID,
        approver_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> PayrollPeriod:
        """
        Approve a processing period and its calculated summaries.

        Raises:
            InvalidStateTransitionException: period is not processing
            CriticalAnomaliesException: with the blocking anomaly list
        """
        period = await self._get_period(period_id)
        if not period.can_approve:
            raise InvalidStateTransitionException(
                resource_type="payroll period",
                current_status=period.status.value,
                action="approve",
                allowed_from=[PayrollPeriodStatus.PROCESSING.value],
            )

        summaries = await self.repository.list_summaries(period.id)
        blocking = blocking_anomaly_report(summaries)
        if blocking:
            logger.warning(
                f"Approval of payroll {period.period_name} blocked by anomalies "
                f"for {len(blocking)} employee(s)"
            )
            raise CriticalAnomaliesException(blocking)

        approved = [
            s.approve(notes) for s in summaries
            if s.status == PayrollSummaryStatus.CALCULATED
        ]
        if approved:
            await self.repository.update_summaries(approved)

        period = await self.repository.update_period(period.approve(approver_id, notes))
        logger.info(
            f"Payroll {period.period_name} approved by {approver_id} "
            f"({len(approved)} summaries)"
        )
        return period

    async def mark_period_paid(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self._get_period(period_id)
        paid_period = period.mark_as_paid()

        summaries = await self.repository.list_summaries(period.id, status=PayrollSummaryStatus.APPROVED)
        if summaries:
            await self.repository.update_summaries([s.mark_as_paid() for s in summaries])

        period = await self.repository.update_period(paid_period)
        logger.info(f"Payroll {period.period_name} marked as paid")
        return period

    async def cancel_period(self, period_id: uuid.UUID, notes: Optional[str] = None) -> PayrollPeriod:
        """Cancel a period that has not been paid. Stored summaries are kept."""
        period = await self._get_period(period_id)
        period = await self.repository.update_period(period.cancel(notes))
        logger.info(f"Payroll {period.period_name} cancelled")
        return period

"""
Payroll Period Service
Creation and maintenance of payroll periods and read access to their summaries
"""

import logging
import uuid
from datetime import date
from typing import List, Optional

from payroll_engine.models.entities import (
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)
from payroll_engine.repositories.base import EmployeeYearToDateStats, PayrollRepository, PeriodStats
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    DuplicateEntryException,
    ErrorCode,
    NotFoundException,
    PeriodNotFoundException,
)

logger = logging.getLogger(__name__)


class PayrollPeriodService:
    """Service for payroll period CRUD."""

    def __init__(self, repository: PayrollRepository):
        self.repository = repository

    async def create_period(
        self,
        employer_id: uuid.UUID,
        period_month: int,
        period_year: int,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> PayrollPeriod:
        """
        Create a draft period covering one calendar month.

        Raises:
            DuplicateEntryException: the employer already has a period for that month
        """
        period = PayrollPeriod.for_month(employer_id, period_month, period_year, payment_date, notes)

        existing = await self.repository.find_period_by_month_year(employer_id, period_month, period_year)
        if existing is not None:
            raise DuplicateEntryException("Payroll period", "period", period.period_name)

        period = await self.repository.create_period(period)
        logger.info(f"Created payroll period {period.period_name} for employer {employer_id}")
        return period

    async def get_period(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self.repository.get_period(period_id)
        if period is None:
            raise PeriodNotFoundException(period_id)
        return period

    async def list_periods(
        self,
        employer_id: uuid.UUID,
        year: Optional[int] = None,
        status: Optional[PayrollPeriodStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PayrollPeriod]:
        return await self.repository.list_periods(employer_id, year, status, limit, offset)

    async def update_period(
        self,
        period_id: uuid.UUID,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> PayrollPeriod:
        """Change payment date or notes of a draft period."""
        period = await self.get_period(period_id)
        return await self.repository.update_period(period.update_details(payment_date, notes))

    async def delete_period(self, period_id: uuid.UUID) -> None:
        period = await self.get_period(period_id)
        if period.status != PayrollPeriodStatus.DRAFT:
            raise BusinessRuleException(
                message=f"Only draft payroll periods can be deleted (status: {period.status.value})",
                rule="PERIOD_DELETABLE_IN_DRAFT",
                code=ErrorCode.CANNOT_DELETE,
            )
        await self.repository.delete_period(period_id)
        logger.info(f"Deleted payroll period {period.period_name}")

    # ===========================================
    # SUMMARIES AND STATISTICS
    # ===========================================

    async def list_summaries(
        self,
        period_id: uuid.UUID,
        has_anomalies: Optional[bool] = None,
        status: Optional[PayrollSummaryStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[PayrollSummary]:
        await self.get_period(period_id)
        return await self.repository.list_summaries(period_id, has_anomalies, status, limit, offset)

    async def get_summary(self, summary_id: uuid.UUID) -> PayrollSummary:
        summary = await self.repository.get_summary(summary_id)
        if summary is None:
            raise NotFoundException("Payroll summary", summary_id, code=ErrorCode.SUMMARY_NOT_FOUND)
        return summary

    async def get_period_stats(self, period_id: uuid.UUID) -> PeriodStats:
        await self.get_period(period_id)
        return await self.repository.get_period_stats(period_id)

    async def get_employee_year_to_date(self, employee_id: uuid.UUID, year: int) -> EmployeeYearToDateStats:
        return await self.repository.get_employee_year_to_date_stats(employee_id, year)

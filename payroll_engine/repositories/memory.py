"""
Payroll Engine - In-Memory Payroll Repository

Process-local storage, used for development and tests. Records are
immutable, so they are stored and returned as-is.
"""

import asyncio
import uuid
from typing import Dict, List, Optional, Tuple

from payroll_engine.models.entities import (
    ComponentCategory,
    ComponentType,
    PayrollComponent,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)
from payroll_engine.repositories.base import (
    EmployeeYearToDateStats,
    PayrollRepository,
    PeriodStats,
)
from payroll_engine.utils.error_handling import DuplicateEntryException, NotFoundException


class InMemoryPayrollRepository(PayrollRepository):
    """Dictionary-backed repository guarded by an asyncio lock."""

    def __init__(self):
        self._periods: Dict[uuid.UUID, PayrollPeriod] = {}
        self._summaries: Dict[uuid.UUID, PayrollSummary] = {}
        self._components: Dict[uuid.UUID, PayrollComponent] = {}
        self._lock = asyncio.Lock()

    # ===========================================
    # PERIODS
    # ===========================================

    async def get_period(self, period_id: uuid.UUID) -> Optional[PayrollPeriod]:
        return self._periods.get(period_id)

    async def list_periods(
        self,
        employer_id: uuid.UUID,
        year: Optional[int] = None,
        status: Optional[PayrollPeriodStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PayrollPeriod]:
        periods = [
            p for p in self._periods.values()
            if p.employer_id == employer_id
            and (year is None or p.period_year == year)
            and (status is None or p.status == status)
        ]
        periods.sort(key=lambda p: (p.period_year, p.period_month), reverse=True)
        return periods[offset:offset + limit]

    async def find_period_by_month_year(
        self,
        employer_id: uuid.UUID,
        month: int,
        year: int,
    ) -> Optional[PayrollPeriod]:
        for period in self._periods.values():
            if (period.employer_id, period.period_month, period.period_year) == (employer_id, month, year):
                return period
        return None

    async def create_period(self, period: PayrollPeriod) -> PayrollPeriod:
        async with self._lock:
            existing = await self.find_period_by_month_year(
                period.employer_id, period.period_month, period.period_year
            )
            if existing is not None:
                raise DuplicateEntryException("Payroll period", "month", period.period_name)
            self._periods[period.id] = period
        return period

    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod:
        async with self._lock:
            if period.id not in self._periods:
                raise NotFoundException("Payroll period", period.id)
            self._periods[period.id] = period
        return period

    async def update_period_if_status(
        self,
        period: PayrollPeriod,
        expected_status: PayrollPeriodStatus,
    ) -> bool:
        async with self._lock:
            stored = self._periods.get(period.id)
            if stored is None:
                raise NotFoundException("Payroll period", period.id)
            if stored.status != expected_status:
                return False
            self._periods[period.id] = period
        return True

    async def delete_period(self, period_id: uuid.UUID) -> bool:
        async with self._lock:
            if self._periods.pop(period_id, None) is None:
                return False
            for summary_id in [s.id for s in self._summaries.values() if s.period_id == period_id]:
                del self._summaries[summary_id]
        return True

    # ===========================================
    # COMPONENTS
    # ===========================================

    async def get_component(self, component_id: uuid.UUID) -> Optional[PayrollComponent]:
        return self._components.get(component_id)

    async def list_components(
        self,
        employer_id: uuid.UUID,
        component_type: Optional[ComponentType] = None,
        category: Optional[ComponentCategory] = None,
        is_active: Optional[bool] = None,
    ) -> List[PayrollComponent]:
        components = [
            c for c in self._components.values()
            if c.employer_id == employer_id
            and (component_type is None or c.component_type == component_type)
            and (category is None or c.category == category)
            and (is_active is None or c.is_active == is_active)
        ]
        components.sort(key=lambda c: (c.display_order, c.code))
        return components

    async def find_component_by_code(self, employer_id: uuid.UUID, code: str) -> Optional[PayrollComponent]:
        for component in self._components.values():
            if component.employer_id == employer_id and component.code == code:
                return component
        return None

    async def create_component(self, component: PayrollComponent) -> PayrollComponent:
        async with self._lock:
            if await self.find_component_by_code(component.employer_id, component.code):
                raise DuplicateEntryException("Payroll component", "code", component.code)
            self._components[component.id] = component
        return component

    async def update_component(self, component: PayrollComponent) -> PayrollComponent:
        async with self._lock:
            if component.id not in self._components:
                raise NotFoundException("Payroll component", component.id)
            self._components[component.id] = component
        return component

    async def delete_component(self, component_id: uuid.UUID) -> bool:
        async with self._lock:
            return self._components.pop(component_id, None) is not None

    # ===========================================
    # SUMMARIES
    # ===========================================

    async def get_summary(self, summary_id: uuid.UUID) -> Optional[PayrollSummary]:
        return self._summaries.get(summary_id)

    async def list_summaries(
        self,
        period_id: uuid.UUID,
        has_anomalies: Optional[bool] = None,
        status: Optional[PayrollSummaryStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[PayrollSummary]:
        summaries = [
            s for s in self._summaries.values()
            if s.period_id == period_id
            and (has_anomalies is None or s.has_anomalies == has_anomalies)
            and (status is None or s.status == status)
        ]
        summaries.sort(key=lambda s: s.employee_number)
        end = None if limit is None else offset + limit
        return summaries[offset:end]

    async def find_summary(self, period_id: uuid.UUID, employee_id: uuid.UUID) -> Optional[PayrollSummary]:
        for summary in self._summaries.values():
            if summary.period_id == period_id and summary.employee_id == employee_id:
                return summary
        return None

    def _employee_summaries_with_periods(
        self,
        employee_id: uuid.UUID,
    ) -> List[Tuple[PayrollSummary, PayrollPeriod]]:
        pairs = []
        for summary in self._summaries.values():
            period = self._periods.get(summary.period_id)
            if summary.employee_id == employee_id and period is not None:
                pairs.append((summary, period))
        pairs.sort(key=lambda pair: (pair[1].period_year, pair[1].period_month), reverse=True)
        return pairs

    async def list_employee_summaries(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[PayrollSummary]:
        return [
            summary for summary, period in self._employee_summaries_with_periods(employee_id)
            if year is None or period.period_year == year
        ]

    async def create_summary(self, summary: PayrollSummary) -> PayrollSummary:
        async with self._lock:
            self._insert_summary(summary)
        return summary

    def _insert_summary(self, summary: PayrollSummary) -> None:
        if summary.period_id not in self._periods:
            raise NotFoundException("Payroll period", summary.period_id)
        for existing in self._summaries.values():
            if existing.period_id == summary.period_id and existing.employee_id == summary.employee_id:
                raise DuplicateEntryException("Payroll summary", "employee_id", str(summary.employee_id))
        self._summaries[summary.id] = summary

    async def create_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        async with self._lock:
            snapshot = dict(self._summaries)
            try:
                for summary in summaries:
                    self._insert_summary(summary)
            except Exception:
                self._summaries = snapshot
                raise
        return summaries

    async def update_summary(self, summary: PayrollSummary) -> PayrollSummary:
        return (await self.update_summaries([summary]))[0]

    async def update_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        async with self._lock:
            missing = [s.id for s in summaries if s.id not in self._summaries]
            if missing:
                raise NotFoundException("Payroll summary", missing[0])
            for summary in summaries:
                self._summaries[summary.id] = summary
        return summaries

    async def delete_summary(self, summary_id: uuid.UUID) -> bool:
        async with self._lock:
            return self._summaries.pop(summary_id, None) is not None

    # ===========================================
    # STATISTICS
    # ===========================================

    async def get_period_stats(self, period_id: uuid.UUID) -> PeriodStats:
        return PeriodStats.from_summaries(period_id, await self.list_summaries(period_id))

    async def get_employee_year_to_date_stats(self, employee_id: uuid.UUID, year: int) -> EmployeeYearToDateStats:
        summaries = [
            summary for summary, period in self._employee_summaries_with_periods(employee_id)
            if period.period_year == year and period.status != PayrollPeriodStatus.CANCELLED
        ]
        return EmployeeYearToDateStats.from_summaries(employee_id, year, summaries)

    async def get_employee_history(
        self,
        employee_id: uuid.UUID,
        before_year: int,
        before_month: int,
        limit: int = 3,
    ) -> List[PayrollSummary]:
        history = [
            summary for summary, period in self._employee_summaries_with_periods(employee_id)
            if (period.period_year, period.period_month) < (before_year, before_month)
            and period.status != PayrollPeriodStatus.CANCELLED
        ]
        return history[:limit]

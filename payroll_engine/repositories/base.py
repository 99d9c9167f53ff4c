"""
Payroll Engine - Payroll Repository Contract

Storage-agnostic access to payroll periods, summaries and components. The
processing, approval and payslip services depend only on this interface.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from payroll_engine.models.entities import (
    ComponentCategory,
    ComponentType,
    PayrollComponent,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PeriodStats:
    """Totals over every summary of a period."""
    period_id: uuid.UUID
    total_employees: int = 0
    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_bpjs_employee: Decimal = ZERO
    total_bpjs_employer: Decimal = ZERO
    total_pph21: Decimal = ZERO
    employees_with_anomalies: int = 0

    @classmethod
    def from_summaries(cls, period_id: uuid.UUID, summaries: Iterable[PayrollSummary]) -> "PeriodStats":
        """Reduce a completed set of summaries into period totals."""
        summaries = list(summaries)
        return cls(
            period_id=period_id,
            total_employees=len(summaries),
            total_gross_pay=sum((s.total_earnings for s in summaries), ZERO),
            total_deductions=sum((s.total_deductions for s in summaries), ZERO),
            total_net_pay=sum((s.net_pay for s in summaries), ZERO),
            total_bpjs_employee=sum((s.bpjs_employee_total for s in summaries), ZERO),
            total_bpjs_employer=sum((s.bpjs_employer_total for s in summaries), ZERO),
            total_pph21=sum((s.pph21 for s in summaries), ZERO),
            employees_with_anomalies=sum(1 for s in summaries if s.has_anomalies),
        )


@dataclass(frozen=True)
class EmployeeYearToDateStats:
    """One employee's processed payroll within a calendar year."""
    employee_id: uuid.UUID
    year: int
    periods_processed: int = 0
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_pph21: Decimal = ZERO
    total_bpjs_employee: Decimal = ZERO

    @classmethod
    def from_summaries(
        cls,
        employee_id: uuid.UUID,
        year: int,
        summaries: Iterable[PayrollSummary],
    ) -> "EmployeeYearToDateStats":
        summaries = list(summaries)
        return cls(
            employee_id=employee_id,
            year=year,
            periods_processed=len(summaries),
            total_gross_pay=sum((s.total_earnings for s in summaries), ZERO),
            total_net_pay=sum((s.net_pay for s in summaries), ZERO),
            total_pph21=sum((s.pph21 for s in summaries), ZERO),
            total_bpjs_employee=sum((s.bpjs_employee_total for s in summaries), ZERO),
        )


class PayrollRepository(ABC):
    """Persistence for payroll periods, summaries and components."""

    # ===========================================
    # PERIODS
    # ===========================================

    @abstractmethod
    async def get_period(self, period_id: uuid.UUID) -> Optional[PayrollPeriod]:
        pass

    @abstractmethod
    async def list_periods(
        self,
        employer_id: uuid.UUID,
        year: Optional[int] = None,
        status: Optional[PayrollPeriodStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PayrollPeriod]:
        """Periods of an employer, newest first."""
        pass

    @abstractmethod
    async def find_period_by_month_year(
        self,
        employer_id: uuid.UUID,
        month: int,
        year: int,
    ) -> Optional[PayrollPeriod]:
        pass

    @abstractmethod
    async def create_period(self, period: PayrollPeriod) -> PayrollPeriod:
        """Store a new period. Raises DuplicateEntryException for a taken month."""
        pass

    @abstractmethod
    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod:
        """Replace a stored period in one write."""
        pass

    @abstractmethod
    async def update_period_if_status(
        self,
        period: PayrollPeriod,
        expected_status: PayrollPeriodStatus,
    ) -> bool:
        """
        Replace a stored period only while its stored status is still
        expected_status. Returns False, writing nothing, when another writer
        moved it first.
        """
        pass

    @abstractmethod
    async def delete_period(self, period_id: uuid.UUID) -> bool:
        """Delete a period and its summaries."""
        pass

    # ===========================================
    # COMPONENTS
    # ===========================================

    @abstractmethod
    async def get_component(self, component_id: uuid.UUID) -> Optional[PayrollComponent]:
        pass

    @abstractmethod
    async def list_components(
        self,
        employer_id: uuid.UUID,
        component_type: Optional[ComponentType] = None,
        category: Optional[ComponentCategory] = None,
        is_active: Optional[bool] = None,
    ) -> List[PayrollComponent]:
        """Components ordered by display order, then code."""
        pass

    @abstractmethod
    async def find_component_by_code(self, employer_id: uuid.UUID, code: str) -> Optional[PayrollComponent]:
        pass

    @abstractmethod
    async def create_component(self, component: PayrollComponent) -> PayrollComponent:
        pass

    @abstractmethod
    async def update_component(self, component: PayrollComponent) -> PayrollComponent:
        pass

    @abstractmethod
    async def delete_component(self, component_id: uuid.UUID) -> bool:
        pass

    # ===========================================
    # SUMMARIES
    # ===========================================

    @abstractmethod
    async def get_summary(self, summary_id: uuid.UUID) -> Optional[PayrollSummary]:
        pass

    @abstractmethod
    async def list_summaries(
        self,
        period_id: uuid.UUID,
        has_anomalies: Optional[bool] = None,
        status: Optional[PayrollSummaryStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[PayrollSummary]:
        """Summaries of a period ordered by employee number."""
        pass

    @abstractmethod
    async def find_summary(self, period_id: uuid.UUID, employee_id: uuid.UUID) -> Optional[PayrollSummary]:
        pass

    @abstractmethod
    async def list_employee_summaries(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[PayrollSummary]:
        pass

    @abstractmethod
    async def create_summary(self, summary: PayrollSummary) -> PayrollSummary:
        """Store a new summary. Raises DuplicateEntryException for a second one per employee."""
        pass

    @abstractmethod
    async def create_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        """Store several summaries in one write."""
        pass

    @abstractmethod
    async def update_summary(self, summary: PayrollSummary) -> PayrollSummary:
        pass

    @abstractmethod
    async def update_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        """Replace several summaries in one write."""
        pass

    @abstractmethod
    async def delete_summary(self, summary_id: uuid.UUID) -> bool:
        pass

    # ===========================================
    # STATISTICS
    # ===========================================

    @abstractmethod
    async def get_period_stats(self, period_id: uuid.UUID) -> PeriodStats:
        pass

    @abstractmethod
    async def get_employee_year_to_date_stats(self, employee_id: uuid.UUID, year: int) -> EmployeeYearToDateStats:
        """Totals over the employee's processed (non-cancelled) periods in a year."""
        pass

    @abstractmethod
    async def get_employee_history(
        self,
        employee_id: uuid.UUID,
        before_year: int,
        before_month: int,
        limit: int = 3,
    ) -> List[PayrollSummary]:
        """The employee's summaries from earlier non-cancelled periods, newest first."""
        pass

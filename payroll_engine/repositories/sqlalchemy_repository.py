"""
Payroll Engine - SQLAlchemy Payroll Repository

Async SQLAlchemy 2.0 storage for payroll records. Each operation opens its
own session from the session factory, so concurrent processing workers
never share a session.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.models.entities import (
    AnomalyDetail,
    ComponentCategory,
    ComponentType,
    PayrollComponent,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollSummary,
    PayrollSummaryStatus,
)
from payroll_engine.models.payroll import (
    PayrollComponentRecord,
    PayrollPeriodRecord,
    PayrollSummaryRecord,
)
from payroll_engine.repositories.base import (
    EmployeeYearToDateStats,
    PayrollRepository,
    PeriodStats,
)
from payroll_engine.utils.error_handling import DuplicateEntryException, NotFoundException

logger = logging.getLogger(__name__)

_PERIOD_FIELDS = (
    "id", "employer_id", "period_month", "period_year", "start_date", "end_date",
    "payment_date", "status", "total_employees", "total_gross_pay", "total_deductions",
    "total_net_pay", "total_bpjs_employer", "total_bpjs_employee", "total_pph21",
    "employees_with_anomalies", "approved_by", "approved_at", "paid_at", "notes",
    "created_at", "updated_at",
)

_SUMMARY_SCALAR_FIELDS = (
    "id", "period_id", "employee_id", "employer_id", "employee_number", "employee_name",
    "department", "position", "working_days", "present_days", "absent_days", "late_days",
    "overtime_hours", "base_salary", "allowances", "overtime_pay", "bonuses",
    "total_earnings", "bpjs_kesehatan_employee", "bpjs_ketenagakerjaan_employee", "pph21",
    "loans", "other_deductions", "total_deductions", "net_pay", "bpjs_kesehatan_employer",
    "bpjs_ketenagakerjaan_employer", "employer_benefits", "total_employer_cost",
    "has_anomalies", "ai_confidence", "ai_review", "notes", "status",
    "created_at", "updated_at",
)

_COMPONENT_FIELDS = (
    "id", "employer_id", "code", "name", "description", "component_type", "category",
    "is_taxable", "is_bpjs_base", "is_system_component", "calculation_type",
    "default_amount", "percentage_value", "formula", "display_order", "is_active",
    "created_at", "updated_at",
)

# tax_details entries stored as text rather than amounts
_TAX_TEXT_KEYS = {"ptkp_status"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


# ===========================================
# ROW <-> RECORD MAPPING
# ===========================================

def _period_from_row(row: PayrollPeriodRecord) -> PayrollPeriod:
    return PayrollPeriod(**{name: getattr(row, name) for name in _PERIOD_FIELDS})


def _period_to_row(period: PayrollPeriod, row: Optional[PayrollPeriodRecord] = None) -> PayrollPeriodRecord:
    row = row or PayrollPeriodRecord()
    for name in _PERIOD_FIELDS:
        setattr(row, name, getattr(period, name))
    return row


def _summary_from_row(row: PayrollSummaryRecord) -> PayrollSummary:
    values = {name: getattr(row, name) for name in _SUMMARY_SCALAR_FIELDS}
    values["bpjs_details"] = {k: Decimal(v) for k, v in (row.bpjs_details or {}).items()}
    values["tax_details"] = {
        k: v if k in _TAX_TEXT_KEYS else Decimal(v)
        for k, v in (row.tax_details or {}).items()
    }
    values["component_details"] = tuple(
        {**item, "amount": Decimal(item["amount"])} for item in (row.component_details or [])
    )
    values["anomaly_details"] = tuple(
        AnomalyDetail.from_dict(item) for item in (row.anomaly_details or [])
    )
    return PayrollSummary(**values)


def _summary_to_row(summary: PayrollSummary, row: Optional[PayrollSummaryRecord] = None) -> PayrollSummaryRecord:
    row = row or PayrollSummaryRecord()
    for name in _SUMMARY_SCALAR_FIELDS:
        setattr(row, name, getattr(summary, name))
    row.bpjs_details = _to_json(summary.bpjs_details)
    row.tax_details = _to_json(summary.tax_details)
    row.component_details = _to_json(summary.component_details)
    row.anomaly_details = [a.to_dict() for a in summary.anomaly_details]
    return row


def _component_from_row(row: PayrollComponentRecord) -> PayrollComponent:
    return PayrollComponent(**{name: getattr(row, name) for name in _COMPONENT_FIELDS})


def _component_to_row(
    component: PayrollComponent,
    row: Optional[PayrollComponentRecord] = None,
) -> PayrollComponentRecord:
    row = row or PayrollComponentRecord()
    for name in _COMPONENT_FIELDS:
        setattr(row, name, getattr(component, name))
    return row


class SQLAlchemyPayrollRepository(PayrollRepository):
    """
    Payroll repository on SQLAlchemy 2.0 async.

    Args:
        session_factory: async_sessionmaker producing AsyncSession objects
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _get_row(self, session: AsyncSession, model, row_id: uuid.UUID, resource_type: str):
        row = await session.get(model, row_id)
        if row is None:
            raise NotFoundException(resource_type, row_id)
        return row

    # ===========================================
    # PERIODS
    # ===========================================

    async def get_period(self, period_id: uuid.UUID) -> Optional[PayrollPeriod]:
        async with self.session_factory() as session:
            row = await session.get(PayrollPeriodRecord, period_id)
            return _period_from_row(row) if row else None

    async def list_periods(
        self,
        employer_id: uuid.UUID,
        year: Optional[int] = None,
        status: Optional[PayrollPeriodStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PayrollPeriod]:
        query = select(PayrollPeriodRecord).where(PayrollPeriodRecord.employer_id == employer_id)
        if year is not None:
            query = query.where(PayrollPeriodRecord.period_year == year)
        if status is not None:
            query = query.where(PayrollPeriodRecord.status == status)
        query = query.order_by(
            PayrollPeriodRecord.period_year.desc(),
            PayrollPeriodRecord.period_month.desc(),
        ).limit(limit).offset(offset)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_period_from_row(row) for row in result.scalars().all()]

    async def find_period_by_month_year(
        self,
        employer_id: uuid.UUID,
        month: int,
        year: int,
    ) -> Optional[PayrollPeriod]:
        query = select(PayrollPeriodRecord).where(
            and_(
                PayrollPeriodRecord.employer_id == employer_id,
                PayrollPeriodRecord.period_month == month,
                PayrollPeriodRecord.period_year == year,
            )
        )
        async with self.session_factory() as session:
            row = (await session.execute(query)).scalar_one_or_none()
            return _period_from_row(row) if row else None

    async def create_period(self, period: PayrollPeriod) -> PayrollPeriod:
        async with self.session_factory() as session:
            session.add(_period_to_row(period))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(f"Duplicate payroll period {period.period_name} for employer {period.employer_id}")
                raise DuplicateEntryException("Payroll period", "month", period.period_name)
        return period

    async def update_period(self, period: PayrollPeriod) -> PayrollPeriod:
        async with self.session_factory() as session:
            row = await self._get_row(session, PayrollPeriodRecord, period.id, "Payroll period")
            _period_to_row(period, row)
            await session.commit()
        return period

    async def update_period_if_status(
        self,
        period: PayrollPeriod,
        expected_status: PayrollPeriodStatus,
    ) -> bool:
        # Single guarded UPDATE so two writers cannot both win.
        values = {name: getattr(period, name) for name in _PERIOD_FIELDS if name not in ("id", "created_at")}
        statement = (
            update(PayrollPeriodRecord)
            .where(
                and_(
                    PayrollPeriodRecord.id == period.id,
                    PayrollPeriodRecord.status == expected_status,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(statement)
            if result.rowcount == 0:
                await session.rollback()
                await self._get_row(session, PayrollPeriodRecord, period.id, "Payroll period")
                return False
            await session.commit()
        return True

    async def delete_period(self, period_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            await session.execute(delete(PayrollSummaryRecord).where(PayrollSummaryRecord.period_id == period_id))
            result = await session.execute(delete(PayrollPeriodRecord).where(PayrollPeriodRecord.id == period_id))
            await session.commit()
            return result.rowcount > 0

    # ===========================================
    # COMPONENTS
    # ===========================================

    async def get_component(self, component_id: uuid.UUID) -> Optional[PayrollComponent]:
        async with self.session_factory() as session:
            row = await session.get(PayrollComponentRecord, component_id)
            return _component_from_row(row) if row else None

    async def list_components(
        self,
        employer_id: uuid.UUID,
        component_type: Optional[ComponentType] = None,
        category: Optional[ComponentCategory] = None,
        is_active: Optional[bool] = None,
    ) -> List[PayrollComponent]:
        query = select(PayrollComponentRecord).where(PayrollComponentRecord.employer_id == employer_id)
        if component_type is not None:
            query = query.where(PayrollComponentRecord.component_type == component_type)
        if category is not None:
            query = query.where(PayrollComponentRecord.category == category)
        if is_active is not None:
            query = query.where(PayrollComponentRecord.is_active == is_active)
        query = query.order_by(PayrollComponentRecord.display_order, PayrollComponentRecord.code)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_component_from_row(row) for row in result.scalars().all()]

    async def find_component_by_code(self, employer_id: uuid.UUID, code: str) -> Optional[PayrollComponent]:
        query = select(PayrollComponentRecord).where(
            and_(
                PayrollComponentRecord.employer_id == employer_id,
                PayrollComponentRecord.code == code,
            )
        )
        async with self.session_factory() as session:
            row = (await session.execute(query)).scalar_one_or_none()
            return _component_from_row(row) if row else None

    async def create_component(self, component: PayrollComponent) -> PayrollComponent:
        async with self.session_factory() as session:
            session.add(_component_to_row(component))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateEntryException("Payroll component", "code", component.code)
        return component

    async def update_component(self, component: PayrollComponent) -> PayrollComponent:
        async with self.session_factory() as session:
            row = await self._get_row(session, PayrollComponentRecord, component.id, "Payroll component")
            _component_to_row(component, row)
            await session.commit()
        return component

    async def delete_component(self, component_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(PayrollComponentRecord).where(PayrollComponentRecord.id == component_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ===========================================
    # SUMMARIES
    # ===========================================

    async def get_summary(self, summary_id: uuid.UUID) -> Optional[PayrollSummary]:
        async with self.session_factory() as session:
            row = await session.get(PayrollSummaryRecord, summary_id)
            return _summary_from_row(row) if row else None

    async def list_summaries(
        self,
        period_id: uuid.UUID,
        has_anomalies: Optional[bool] = None,
        status: Optional[PayrollSummaryStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[PayrollSummary]:
        query = select(PayrollSummaryRecord).where(PayrollSummaryRecord.period_id == period_id)
        if has_anomalies is not None:
            query = query.where(PayrollSummaryRecord.has_anomalies == has_anomalies)
        if status is not None:
            query = query.where(PayrollSummaryRecord.status == status)
        query = query.order_by(PayrollSummaryRecord.employee_number).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_summary_from_row(row) for row in result.scalars().all()]

    async def find_summary(self, period_id: uuid.UUID, employee_id: uuid.UUID) -> Optional[PayrollSummary]:
        query = select(PayrollSummaryRecord).where(
            and_(
                PayrollSummaryRecord.period_id == period_id,
                PayrollSummaryRecord.employee_id == employee_id,
            )
        )
        async with self.session_factory() as session:
            row = (await session.execute(query)).scalar_one_or_none()
            return _summary_from_row(row) if row else None

    def _employee_summaries_query(self, employee_id: uuid.UUID):
        return (
            select(PayrollSummaryRecord)
            .join(PayrollPeriodRecord, PayrollPeriodRecord.id == PayrollSummaryRecord.period_id)
            .where(PayrollSummaryRecord.employee_id == employee_id)
            .order_by(PayrollPeriodRecord.period_year.desc(), PayrollPeriodRecord.period_month.desc())
        )

    async def list_employee_summaries(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[PayrollSummary]:
        query = self._employee_summaries_query(employee_id)
        if year is not None:
            query = query.where(PayrollPeriodRecord.period_year == year)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_summary_from_row(row) for row in result.scalars().all()]

    async def create_summary(self, summary: PayrollSummary) -> PayrollSummary:
        return (await self.create_summaries([summary]))[0]

    async def create_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        async with self.session_factory() as session:
            session.add_all([_summary_to_row(s) for s in summaries])
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(f"Rejected batch of {len(summaries)} summaries: duplicate employee in period")
                raise DuplicateEntryException(
                    "Payroll summary", "employee_id", ", ".join(str(s.employee_id) for s in summaries)
                )
        return summaries

    async def update_summary(self, summary: PayrollSummary) -> PayrollSummary:
        return (await self.update_summaries([summary]))[0]

    async def update_summaries(self, summaries: List[PayrollSummary]) -> List[PayrollSummary]:
        async with self.session_factory() as session:
            for summary in summaries:
                row = await self._get_row(session, PayrollSummaryRecord, summary.id, "Payroll summary")
                _summary_to_row(summary, row)
            await session.commit()
        return summaries

    async def delete_summary(self, summary_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(PayrollSummaryRecord).where(PayrollSummaryRecord.id == summary_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ===========================================
    # STATISTICS
    # ===========================================

    async def get_period_stats(self, period_id: uuid.UUID) -> PeriodStats:
        s = PayrollSummaryRecord
        query = select(
            func.count(s.id),
            func.coalesce(func.sum(s.total_earnings), 0),
            func.coalesce(func.sum(s.total_deductions), 0),
            func.coalesce(func.sum(s.net_pay), 0),
            func.coalesce(func.sum(s.bpjs_kesehatan_employee + s.bpjs_ketenagakerjaan_employee), 0),
            func.coalesce(func.sum(s.bpjs_kesehatan_employer + s.bpjs_ketenagakerjaan_employer), 0),
            func.coalesce(func.sum(s.pph21), 0),
            func.coalesce(func.sum(case((s.has_anomalies.is_(True), 1), else_=0)), 0),
        ).where(s.period_id == period_id)

        async with self.session_factory() as session:
            row = (await session.execute(query)).one()

        return PeriodStats(
            period_id=period_id,
            total_employees=row[0],
            total_gross_pay=Decimal(str(row[1])),
            total_deductions=Decimal(str(row[2])),
            total_net_pay=Decimal(str(row[3])),
            total_bpjs_employee=Decimal(str(row[4])),
            total_bpjs_employer=Decimal(str(row[5])),
            total_pph21=Decimal(str(row[6])),
            employees_with_anomalies=row[7],
        )

    async def get_employee_year_to_date_stats(self, employee_id: uuid.UUID, year: int) -> EmployeeYearToDateStats:
        query = self._employee_summaries_query(employee_id).where(
            PayrollPeriodRecord.period_year == year,
            PayrollPeriodRecord.status != PayrollPeriodStatus.CANCELLED,
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            summaries = [_summary_from_row(row) for row in result.scalars().all()]
        return EmployeeYearToDateStats.from_summaries(employee_id, year, summaries)

    async def get_employee_history(
        self,
        employee_id: uuid.UUID,
        before_year: int,
        before_month: int,
        limit: int = 3,
    ) -> List[PayrollSummary]:
        query = self._employee_summaries_query(employee_id).where(
            or_(
                PayrollPeriodRecord.period_year < before_year,
                and_(
                    PayrollPeriodRecord.period_year == before_year,
                    PayrollPeriodRecord.period_month < before_month,
                ),
            ),
            PayrollPeriodRecord.status != PayrollPeriodStatus.CANCELLED,
        ).limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_summary_from_row(row) for row in result.scalars().all()]

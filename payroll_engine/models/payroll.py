"""
Payroll Engine - Payroll Tables

SQLAlchemy storage for payroll periods, employee summaries and salary
components. These rows back SQLAlchemyPayrollRepository; the engine itself
works with the immutable records in payroll_engine.models.entities.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_engine.models.base import BaseModel
from payroll_engine.models.entities import (
    CalculationType,
    ComponentCategory,
    ComponentType,
    PayrollPeriodStatus,
    PayrollSummaryStatus,
)


def _money(nullable: bool = False):
    return mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=nullable,
    )


# ===========================================
# PAYROLL PERIOD
# ===========================================

class PayrollPeriodRecord(BaseModel):
    """
    One monthly payroll cycle for an employer.
    """
    
    __tablename__ = "payroll_periods"
    
    employer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="Date employees will be paid",
    )
    
    status: Mapped[PayrollPeriodStatus] = mapped_column(
        SQLEnum(PayrollPeriodStatus),
        default=PayrollPeriodStatus.DRAFT,
        nullable=False,
    )
    
    # Totals (written by the processing run)
    total_employees: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross_pay: Mapped[Decimal] = _money()
    total_deductions: Mapped[Decimal] = _money()
    total_net_pay: Mapped[Decimal] = _money()
    total_bpjs_employer: Mapped[Decimal] = _money()
    total_bpjs_employee: Mapped[Decimal] = _money()
    total_pph21: Mapped[Decimal] = _money()
    employees_with_anomalies: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    
    # Approval workflow
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    __table_args__ = (
        UniqueConstraint('employer_id', 'period_month', 'period_year', name='uq_payroll_period_employer_month'),
        CheckConstraint('end_date >= start_date', name='period_dates'),
        CheckConstraint('payment_date >= end_date', name='period_payment_date'),
    )
    
    def __repr__(self) -> str:
        return f"<PayrollPeriodRecord(id={self.id}, {self.period_year}-{self.period_month:02d}, status={self.status})>"


# ===========================================
# PAYROLL SUMMARY
# ===========================================

class PayrollSummaryRecord(BaseModel):
    """
    Payroll result for one employee in one period.
    """
    
    __tablename__ = "payroll_summaries"
    
    period_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    employer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    employee_number: Mapped[str] = mapped_column(String(50), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    # Attendance
    working_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    present_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    absent_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    late_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(precision=8, scale=2), default=Decimal("0"), nullable=False)
    
    # Earnings
    base_salary: Mapped[Decimal] = _money()
    allowances: Mapped[Decimal] = _money()
    overtime_pay: Mapped[Decimal] = _money()
    bonuses: Mapped[Decimal] = _money()
    total_earnings: Mapped[Decimal] = _money()
    
    # Deductions
    bpjs_kesehatan_employee: Mapped[Decimal] = _money()
    bpjs_ketenagakerjaan_employee: Mapped[Decimal] = _money()
    pph21: Mapped[Decimal] = _money()
    loans: Mapped[Decimal] = _money()
    other_deductions: Mapped[Decimal] = _money()
    total_deductions: Mapped[Decimal] = _money()
    net_pay: Mapped[Decimal] = _money()
    
    # Employer cost
    bpjs_kesehatan_employer: Mapped[Decimal] = _money()
    bpjs_ketenagakerjaan_employer: Mapped[Decimal] = _money()
    employer_benefits: Mapped[Decimal] = _money()
    total_employer_cost: Mapped[Decimal] = _money()
    
    # Breakdown stored as JSON
    bpjs_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    tax_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    component_details: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    
    # Anomaly review
    has_anomalies: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    anomaly_details: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    ai_confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=4, scale=3), nullable=True)
    ai_review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[PayrollSummaryStatus] = mapped_column(
        SQLEnum(PayrollSummaryStatus),
        default=PayrollSummaryStatus.DRAFT,
        nullable=False,
    )
    
    __table_args__ = (
        UniqueConstraint('period_id', 'employee_id', name='uq_payroll_summary_period_employee'),
        CheckConstraint('present_days <= working_days', name='summary_present_days'),
        CheckConstraint('net_pay >= 0', name='summary_net_pay'),
    )
    
    def __repr__(self) -> str:
        return f"<PayrollSummaryRecord(id={self.id}, employee={self.employee_number}, net={self.net_pay})>"


# ===========================================
# PAYROLL COMPONENT
# ===========================================

class PayrollComponentRecord(BaseModel):
    """
    Employer-defined earning, deduction or benefit.
    """
    
    __tablename__ = "payroll_components"
    
    employer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    component_type: Mapped[ComponentType] = mapped_column(SQLEnum(ComponentType), nullable=False)
    category: Mapped[ComponentCategory] = mapped_column(SQLEnum(ComponentCategory), nullable=False)
    
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_bpjs_base: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system_component: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    
    calculation_type: Mapped[CalculationType] = mapped_column(
        SQLEnum(CalculationType),
        default=CalculationType.FIXED,
        nullable=False,
    )
    default_amount: Mapped[Decimal] = _money()
    percentage_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=5, scale=2), nullable=True)
    formula: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    __table_args__ = (
        UniqueConstraint('employer_id', 'code', name='uq_payroll_component_employer_code'),
    )
    
    def __repr__(self) -> str:
        return f"<PayrollComponentRecord(code={self.code}, type={self.component_type})>"

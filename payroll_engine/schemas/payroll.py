"""
Payroll Engine - Payroll Schemas

Pydantic schemas for payroll requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ===========================================
# ENUMS AS LITERALS
# ===========================================

PeriodStatusEnum = Literal["draft", "processing", "approved", "paid", "cancelled"]
SummaryStatusEnum = Literal["draft", "calculated", "approved", "paid"]
ComponentTypeEnum = Literal["earning", "deduction", "benefit"]
ComponentCategoryEnum = Literal[
    "basic_salary", "allowance", "overtime", "bonus", "bpjs", "tax", "loan", "other"
]
CalculationTypeEnum = Literal["fixed", "percentage", "formula"]
LanguageEnum = Literal["id", "en"]


# ===========================================
# PERIOD SCHEMAS
# ===========================================

class PayrollPeriodCreate(BaseModel):
    """Create payroll period request."""
    employer_id: UUID
    period_month: int = Field(..., ge=1, le=12)
    period_year: int = Field(..., ge=2000, le=2100)
    payment_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PayrollPeriodUpdate(BaseModel):
    """Update a draft payroll period."""
    payment_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PayrollPeriodResponse(BaseModel):
    """Payroll period response."""
    id: UUID
    employer_id: UUID
    period_month: int
    period_year: int
    period_name: str
    period_name_id: str
    start_date: date
    end_date: date
    payment_date: date
    status: PeriodStatusEnum

    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_bpjs_employer: Decimal
    total_bpjs_employee: Decimal
    total_pph21: Decimal
    employees_with_anomalies: int

    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PeriodStatsResponse(BaseModel):
    period_id: UUID
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_bpjs_employee: Decimal
    total_bpjs_employer: Decimal
    total_pph21: Decimal
    employees_with_anomalies: int

    class Config:
        from_attributes = True


class EmployeeYearToDateResponse(BaseModel):
    employee_id: UUID
    year: int
    periods_processed: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    total_pph21: Decimal
    total_bpjs_employee: Decimal

    class Config:
        from_attributes = True


# ===========================================
# PROCESSING AND APPROVAL
# ===========================================

class ProcessPeriodRequest(BaseModel):
    """Run payroll for a draft period."""
    employee_ids: Optional[List[UUID]] = Field(
        None, description="Process only these employees; all active employees when omitted"
    )
    validate_with_ai: bool = True


class EmployeeOutcomeResponse(BaseModel):
    employee_id: UUID
    status: Literal["completed", "skipped", "cancelled"]
    employee_name: Optional[str] = None
    summary_id: Optional[UUID] = None
    net_pay: Optional[Decimal] = None
    has_anomalies: bool = False
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class BatchProcessingResponse(BaseModel):
    period_id: UUID
    total_employees: int
    summaries_created: int
    summaries_with_errors: int
    skipped: int
    cancelled: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    outcomes: List[EmployeeOutcomeResponse]

    class Config:
        from_attributes = True


class ApprovePeriodRequest(BaseModel):
    approver_id: UUID
    notes: Optional[str] = Field(None, max_length=1000)


class CancelPeriodRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


# ===========================================
# SUMMARY SCHEMAS
# ===========================================

class AnomalyResponse(BaseModel):
    type: str
    description: str
    severity: str
    field: Optional[str] = None
    expected_value: Optional[Decimal] = None
    actual_value: Optional[Decimal] = None

    class Config:
        from_attributes = True


class PayrollSummaryResponse(BaseModel):
    """Payroll summary for one employee."""
    id: UUID
    period_id: UUID
    employee_id: UUID
    employer_id: UUID
    employee_number: str
    employee_name: str
    department: Optional[str] = None
    position: Optional[str] = None

    working_days: int
    present_days: int
    absent_days: int
    late_days: int
    overtime_hours: Decimal

    base_salary: Decimal
    allowances: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    total_earnings: Decimal

    bpjs_kesehatan_employee: Decimal
    bpjs_ketenagakerjaan_employee: Decimal
    pph21: Decimal
    loans: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    bpjs_kesehatan_employer: Decimal
    bpjs_ketenagakerjaan_employer: Decimal
    employer_benefits: Decimal
    total_employer_cost: Decimal

    bpjs_details: Dict[str, Decimal] = {}
    tax_details: Dict[str, Any] = {}
    component_details: List[Dict[str, Any]] = []

    has_anomalies: bool
    anomaly_details: List[AnomalyResponse] = []
    ai_confidence: Optional[Decimal] = None
    ai_review: Optional[str] = None
    notes: Optional[str] = None
    status: SummaryStatusEnum
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ===========================================
# PAYSLIP SCHEMAS
# ===========================================

class PayslipLineResponse(BaseModel):
    code: str
    name: str
    amount: Decimal
    breakdown: List["PayslipLineResponse"] = []

    class Config:
        from_attributes = True


class PayslipResponse(BaseModel):
    summary_id: UUID
    period_id: UUID
    language: LanguageEnum
    company_name: str
    company_address: str
    employee_id: UUID
    employee_number: str
    employee_name: str
    position: Optional[str] = None
    department: Optional[str] = None
    period_month: int
    period_year: int
    period_name: str
    payment_date: date
    status: str
    working_days: int
    present_days: int
    absent_days: int
    late_days: int
    overtime_hours: Decimal
    attendance_rate: Decimal
    earnings: List[PayslipLineResponse]
    total_earnings: Decimal
    deductions: List[PayslipLineResponse]
    total_deductions: Decimal
    net_pay: Decimal
    employer_costs: List[PayslipLineResponse]
    total_employer_cost: Decimal
    ptkp_status: Optional[str] = None
    notes: Optional[str] = None
    generated_at: datetime

    class Config:
        from_attributes = True


# ===========================================
# COMPONENT SCHEMAS
# ===========================================

class PayrollComponentBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    calculation_type: CalculationTypeEnum = "fixed"
    is_taxable: bool = True
    is_bpjs_base: bool = False
    default_amount: Decimal = Field(Decimal("0"), ge=0)
    percentage_value: Optional[Decimal] = Field(None, ge=0, le=100)
    formula: Optional[str] = Field(None, max_length=500)
    display_order: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_calculation_inputs(self):
        if self.calculation_type == "percentage" and self.percentage_value is None:
            raise ValueError("percentage_value is required for percentage components")
        if self.calculation_type == "formula" and not self.formula:
            raise ValueError("formula is required for formula components")
        return self


class PayrollComponentCreate(PayrollComponentBase):
    """Create payroll component request."""
    employer_id: UUID
    code: str = Field(..., min_length=1, max_length=50)
    component_type: ComponentTypeEnum
    category: ComponentCategoryEnum


class PayrollComponentUpdate(BaseModel):
    """Partial update; only provided fields change."""
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    calculation_type: Optional[CalculationTypeEnum] = None
    is_taxable: Optional[bool] = None
    is_bpjs_base: Optional[bool] = None
    default_amount: Optional[Decimal] = Field(None, ge=0)
    percentage_value: Optional[Decimal] = Field(None, ge=0, le=100)
    formula: Optional[str] = Field(None, max_length=500)
    display_order: Optional[int] = Field(None, ge=0)


class PayrollComponentResponse(BaseModel):
    id: UUID
    employer_id: UUID
    code: str
    name: str
    description: Optional[str] = None
    component_type: ComponentTypeEnum
    category: ComponentCategoryEnum
    calculation_type: CalculationTypeEnum
    is_taxable: bool
    is_bpjs_base: bool
    is_system_component: bool
    default_amount: Decimal
    percentage_value: Optional[Decimal] = None
    formula: Optional[str] = None
    display_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SeedComponentsRequest(BaseModel):
    employer_id: UUID


# ===========================================
# CALCULATOR SCHEMAS
# ===========================================

class BPJSCalculationRequest(BaseModel):
    """Preview BPJS contributions."""
    base_salary: Decimal = Field(..., ge=0)
    additional_base: Decimal = Field(Decimal("0"), ge=0)
    risk_class: int = Field(1, ge=1, le=5)
    working_days_in_period: Optional[int] = Field(None, ge=0)
    total_days_in_month: Optional[int] = Field(None, ge=1, le=31)

    @model_validator(mode="after")
    def check_proration(self):
        if (self.working_days_in_period is None) != (self.total_days_in_month is None):
            raise ValueError("working_days_in_period and total_days_in_month must be given together")
        return self


class BPJSCalculationResponse(BaseModel):
    base_salary: Decimal
    additional_base: Decimal
    risk_class: int
    kesehatan_base: Decimal
    ketenagakerjaan_base: Decimal
    kesehatan_employee: Decimal
    kesehatan_employer: Decimal
    jkk_employer: Decimal
    jkm_employer: Decimal
    jht_employee: Decimal
    jht_employer: Decimal
    jp_employee: Decimal
    jp_employer: Decimal
    proration_factor: Decimal
    total_employee: Decimal
    total_employer: Decimal
    grand_total: Decimal

    class Config:
        from_attributes = True


class PPh21CalculationRequest(BaseModel):
    """Preview monthly PPh21."""
    gross_income: Decimal = Field(..., ge=0)
    bpjs_employee: Decimal = Field(Decimal("0"), ge=0)
    is_married: bool = False
    dependents: int = Field(0, ge=0)


class TaxBracketLineResponse(BaseModel):
    bracket: str
    rate: Decimal
    amount: Decimal
    tax: Decimal

    class Config:
        from_attributes = True


class PPh21CalculationResponse(BaseModel):
    gross_income: Decimal
    annual_gross_income: Decimal
    bpjs_deduction: Decimal
    occupational_deduction: Decimal
    total_deductions: Decimal
    net_income: Decimal
    annual_net_income: Decimal
    ptkp: Decimal
    ptkp_status: str
    taxable_income: Decimal
    taxable_income_rounded: Decimal
    tax_breakdown: List[TaxBracketLineResponse]
    annual_tax: Decimal
    monthly_tax: Decimal
    effective_tax_rate: Decimal

    class Config:
        from_attributes = True


class BonusTaxRequest(BaseModel):
    regular_income: Decimal = Field(..., ge=0)
    bonus_amount: Decimal = Field(..., ge=0)
    bpjs_employee: Decimal = Field(Decimal("0"), ge=0)
    is_married: bool = False
    dependents: int = Field(0, ge=0)


class BonusTaxResponse(BaseModel):
    bonus_amount: Decimal
    regular_annual_tax: Decimal
    annual_tax_with_bonus: Decimal
    bonus_tax: Decimal
    bonus_net_amount: Decimal
    effective_tax_rate: Decimal

    class Config:
        from_attributes = True


class SeveranceTaxRequest(BaseModel):
    severance_amount: Decimal = Field(..., ge=0)


class SeveranceTaxResponse(BaseModel):
    severance_amount: Decimal
    tax_breakdown: List[TaxBracketLineResponse]
    total_tax: Decimal
    net_amount: Decimal
    effective_tax_rate: Decimal

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    """Generic message response."""
    message: str
    success: bool = True

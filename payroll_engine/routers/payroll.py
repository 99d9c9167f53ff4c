"""
Payroll Engine - Payroll Router

API endpoints for Indonesian payroll: periods, processing, approval,
components, payslips and the BPJS / PPh21 calculators.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status

from payroll_engine.dependencies import (
    get_approval_service,
    get_component_service,
    get_payslip_service,
    get_period_service,
    get_processing_service,
)
from payroll_engine.models.entities import (
    CalculationType,
    ComponentCategory,
    ComponentType,
    PayrollPeriodStatus,
    PayrollSummaryStatus,
)
from payroll_engine.schemas.payroll import (
    # Period schemas
    PayrollPeriodCreate,
    PayrollPeriodUpdate,
    PayrollPeriodResponse,
    PeriodStatsResponse,
    PeriodStatusEnum,
    # Processing schemas
    ProcessPeriodRequest,
    BatchProcessingResponse,
    ApprovePeriodRequest,
    CancelPeriodRequest,
    # Summary schemas
    PayrollSummaryResponse,
    SummaryStatusEnum,
    EmployeeYearToDateResponse,
    # Payslip schemas
    PayslipResponse,
    LanguageEnum,
    # Component schemas
    PayrollComponentCreate,
    PayrollComponentUpdate,
    PayrollComponentResponse,
    SeedComponentsRequest,
    ComponentTypeEnum,
    ComponentCategoryEnum,
    # Calculator schemas
    BPJSCalculationRequest,
    BPJSCalculationResponse,
    PPh21CalculationRequest,
    PPh21CalculationResponse,
    BonusTaxRequest,
    BonusTaxResponse,
    SeveranceTaxRequest,
    SeveranceTaxResponse,
    # Other
    MessageResponse,
)
from payroll_engine.services.payroll_approval_service import PayrollApprovalService
from payroll_engine.services.payroll_component_service import PayrollComponentService
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.payroll_processing_service import PayrollProcessingService
from payroll_engine.services.payslip_pdf_service import PayslipPDFRenderer
from payroll_engine.services.payslip_service import PayslipService
from payroll_engine.services.tax_calculators.bpjs_service import BPJSCalculator
from payroll_engine.services.tax_calculators.pph21_service import PPh21Calculator


router = APIRouter()


# ===========================================
# PERIOD ENDPOINTS
# ===========================================

@router.post(
    "/periods",
    response_model=PayrollPeriodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll period",
    description="Create a draft payroll period for one employer and month.",
)
async def create_period(
    data: PayrollPeriodCreate,
    service: PayrollPeriodService = Depends(get_period_service),
):
    """Create a payroll period."""
    period = await service.create_period(
        employer_id=data.employer_id,
        period_month=data.period_month,
        period_year=data.period_year,
        payment_date=data.payment_date,
        notes=data.notes,
    )
    return PayrollPeriodResponse.model_validate(period)


@router.get(
    "/periods",
    response_model=List[PayrollPeriodResponse],
    summary="List payroll periods",
)
async def list_periods(
    employer_id: uuid.UUID = Query(..., description="Employer ID"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    period_status: Optional[PeriodStatusEnum] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: PayrollPeriodService = Depends(get_period_service),
):
    """List an employer's payroll periods, newest first."""
    periods = await service.list_periods(
        employer_id=employer_id,
        year=year,
        status=PayrollPeriodStatus(period_status) if period_status else None,
        limit=limit,
        offset=offset,
    )
    return [PayrollPeriodResponse.model_validate(p) for p in periods]


@router.get(
    "/periods/{period_id}",
    response_model=PayrollPeriodResponse,
    summary="Get payroll period",
)
async def get_period(
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    period = await service.get_period(period_id)
    return PayrollPeriodResponse.model_validate(period)


@router.patch(
    "/periods/{period_id}",
    response_model=PayrollPeriodResponse,
    summary="Update payroll period",
    description="Change the payment date or notes of a draft period.",
)
async def update_period(
    data: PayrollPeriodUpdate,
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    period = await service.update_period(period_id, payment_date=data.payment_date, notes=data.notes)
    return PayrollPeriodResponse.model_validate(period)


@router.delete(
    "/periods/{period_id}",
    response_model=MessageResponse,
    summary="Delete payroll period",
    description="Delete a draft payroll period.",
)
async def delete_period(
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.delete_period(period_id)
    return MessageResponse(message="Payroll period deleted")


@router.get(
    "/periods/{period_id}/stats",
    response_model=PeriodStatsResponse,
    summary="Payroll period statistics",
)
async def get_period_stats(
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    stats = await service.get_period_stats(period_id)
    return PeriodStatsResponse.model_validate(stats)


# ===========================================
# PROCESSING AND APPROVAL ENDPOINTS
# ===========================================

@router.post(
    "/periods/{period_id}/process",
    response_model=BatchProcessingResponse,
    summary="Process payroll period",
    description=(
        "Calculate payroll for every active employee (or the given subset) "
        "of a draft period. The period moves to processing."
    ),
)
async def process_period(
    data: ProcessPeriodRequest,
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollProcessingService = Depends(get_processing_service),
):
    """Run payroll for a draft period."""
    result = await service.process_period(
        period_id,
        employee_ids=data.employee_ids,
        validate_with_ai=data.validate_with_ai,
    )
    return BatchProcessingResponse.model_validate(result)


@router.post(
    "/periods/{period_id}/resume",
    response_model=BatchProcessingResponse,
    summary="Resume payroll processing",
    description="Calculate employees that have no summary yet in a processing period.",
)
async def resume_period(
    data: ProcessPeriodRequest,
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollProcessingService = Depends(get_processing_service),
):
    result = await service.resume_period(
        period_id,
        employee_ids=data.employee_ids,
        validate_with_ai=data.validate_with_ai,
    )
    return BatchProcessingResponse.model_validate(result)


@router.post(
    "/periods/{period_id}/approve",
    response_model=PayrollPeriodResponse,
    summary="Approve payroll period",
    description="Approve a processing period. Rejected while any summary has a high or critical anomaly.",
)
async def approve_period(
    data: ApprovePeriodRequest,
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollApprovalService = Depends(get_approval_service),
):
    period = await service.approve_period(period_id, approver_id=data.approver_id, notes=data.notes)
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/periods/{period_id}/pay",
    response_model=PayrollPeriodResponse,
    summary="Mark payroll period as paid",
)
async def mark_period_paid(
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollApprovalService = Depends(get_approval_service),
):
    period = await service.mark_period_paid(period_id)
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/periods/{period_id}/cancel",
    response_model=PayrollPeriodResponse,
    summary="Cancel payroll period",
)
async def cancel_period(
    data: CancelPeriodRequest,
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    service: PayrollApprovalService = Depends(get_approval_service),
):
    period = await service.cancel_period(period_id, notes=data.notes)
    return PayrollPeriodResponse.model_validate(period)


# ===========================================
# SUMMARY ENDPOINTS
# ===========================================

@router.get(
    "/periods/{period_id}/summaries",
    response_model=List[PayrollSummaryResponse],
    summary="List payroll summaries",
    description="Per-employee payroll summaries of a period, ordered by employee number.",
)
async def list_summaries(
    period_id: uuid.UUID = Path(..., description="Payroll period ID"),
    has_anomalies: Optional[bool] = Query(None),
    summary_status: Optional[SummaryStatusEnum] = Query(None, alias="status"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: PayrollPeriodService = Depends(get_period_service),
):
    summaries = await service.list_summaries(
        period_id,
        has_anomalies=has_anomalies,
        status=PayrollSummaryStatus(summary_status) if summary_status else None,
        limit=limit,
        offset=offset,
    )
    return [PayrollSummaryResponse.model_validate(s) for s in summaries]


@router.get(
    "/summaries/{summary_id}",
    response_model=PayrollSummaryResponse,
    summary="Get payroll summary",
)
async def get_summary(
    summary_id: uuid.UUID = Path(..., description="Payroll summary ID"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    summary = await service.get_summary(summary_id)
    return PayrollSummaryResponse.model_validate(summary)


@router.get(
    "/employees/{employee_id}/year-to-date",
    response_model=EmployeeYearToDateResponse,
    summary="Employee year-to-date totals",
)
async def get_employee_year_to_date(
    employee_id: uuid.UUID = Path(..., description="Employee ID"),
    year: int = Query(..., ge=2000, le=2100),
    service: PayrollPeriodService = Depends(get_period_service),
):
    stats = await service.get_employee_year_to_date(employee_id, year)
    return EmployeeYearToDateResponse.model_validate(stats)


# ===========================================
# PAYSLIP ENDPOINTS
# ===========================================

@router.get(
    "/summaries/{summary_id}/payslip",
    response_model=PayslipResponse,
    summary="Get payslip",
    description="Payslip of an approved or paid summary, in Indonesian (id) or English (en).",
)
async def get_payslip(
    summary_id: uuid.UUID = Path(..., description="Payroll summary ID"),
    language: Optional[LanguageEnum] = Query(None),
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = await service.generate(summary_id, language)
    return PayslipResponse.model_validate(payslip)


@router.get(
    "/summaries/{summary_id}/payslip/pdf",
    summary="Download payslip PDF",
)
async def download_payslip_pdf(
    summary_id: uuid.UUID = Path(..., description="Payroll summary ID"),
    language: Optional[LanguageEnum] = Query(None),
    service: PayslipService = Depends(get_payslip_service),
):
    """Render the payslip as a PDF attachment."""
    payslip = await service.generate(summary_id, language)
    pdf_bytes = PayslipPDFRenderer().render(payslip)

    filename = f"payslip_{payslip.employee_number}_{payslip.period_year}_{payslip.period_month:02d}.pdf"

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(pdf_bytes)),
        }
    )


# ===========================================
# COMPONENT ENDPOINTS
# ===========================================

@router.post(
    "/components",
    response_model=PayrollComponentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payroll component",
)
async def create_component(
    data: PayrollComponentCreate,
    service: PayrollComponentService = Depends(get_component_service),
):
    options = data.model_dump(exclude={"employer_id", "code", "name", "component_type", "category", "calculation_type"})
    component = await service.create_component(
        employer_id=data.employer_id,
        code=data.code,
        name=data.name,
        component_type=ComponentType(data.component_type),
        category=ComponentCategory(data.category),
        calculation_type=CalculationType(data.calculation_type),
        **options,
    )
    return PayrollComponentResponse.model_validate(component)


@router.get(
    "/components",
    response_model=List[PayrollComponentResponse],
    summary="List payroll components",
)
async def list_components(
    employer_id: uuid.UUID = Query(..., description="Employer ID"),
    component_type: Optional[ComponentTypeEnum] = Query(None),
    category: Optional[ComponentCategoryEnum] = Query(None),
    is_active: Optional[bool] = Query(None),
    service: PayrollComponentService = Depends(get_component_service),
):
    components = await service.list_components(
        employer_id,
        component_type=ComponentType(component_type) if component_type else None,
        category=ComponentCategory(category) if category else None,
        is_active=is_active,
    )
    return [PayrollComponentResponse.model_validate(c) for c in components]


@router.post(
    "/components/seed",
    response_model=List[PayrollComponentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Seed system components",
    description="Create the standard system components an employer does not have yet.",
)
async def seed_components(
    data: SeedComponentsRequest,
    service: PayrollComponentService = Depends(get_component_service),
):
    created = await service.seed_default_components(data.employer_id)
    return [PayrollComponentResponse.model_validate(c) for c in created]


@router.get(
    "/components/{component_id}",
    response_model=PayrollComponentResponse,
    summary="Get payroll component",
)
async def get_component(
    component_id: uuid.UUID = Path(..., description="Payroll component ID"),
    service: PayrollComponentService = Depends(get_component_service),
):
    component = await service.get_component(component_id)
    return PayrollComponentResponse.model_validate(component)


@router.patch(
    "/components/{component_id}",
    response_model=PayrollComponentResponse,
    summary="Update payroll component",
)
async def update_component(
    data: PayrollComponentUpdate,
    component_id: uuid.UUID = Path(..., description="Payroll component ID"),
    service: PayrollComponentService = Depends(get_component_service),
):
    changes = data.model_dump(exclude_unset=True)
    if "calculation_type" in changes:
        changes["calculation_type"] = CalculationType(changes["calculation_type"])
    component = await service.update_component(component_id, **changes)
    return PayrollComponentResponse.model_validate(component)


@router.post(
    "/components/{component_id}/activate",
    response_model=PayrollComponentResponse,
    summary="Activate payroll component",
)
async def activate_component(
    component_id: uuid.UUID = Path(..., description="Payroll component ID"),
    service: PayrollComponentService = Depends(get_component_service),
):
    component = await service.activate_component(component_id)
    return PayrollComponentResponse.model_validate(component)


@router.post(
    "/components/{component_id}/deactivate",
    response_model=PayrollComponentResponse,
    summary="Deactivate payroll component",
)
async def deactivate_component(
    component_id: uuid.UUID = Path(..., description="Payroll component ID"),
    service: PayrollComponentService = Depends(get_component_service),
):
    component = await service.deactivate_component(component_id)
    return PayrollComponentResponse.model_validate(component)


@router.delete(
    "/components/{component_id}",
    response_model=MessageResponse,
    summary="Delete payroll component",
    description="Delete a custom component. System components cannot be deleted.",
)
async def delete_component(
    component_id: uuid.UUID = Path(..., description="Payroll component ID"),
    service: PayrollComponentService = Depends(get_component_service),
):
    await service.delete_component(component_id)
    return MessageResponse(message="Payroll component deleted")


# ===========================================
# CALCULATION ENDPOINTS
# ===========================================

@router.post(
    "/calculate/bpjs",
    response_model=BPJSCalculationResponse,
    summary="Calculate BPJS contributions",
    description="Preview employee and employer BPJS contributions without saving anything.",
)
async def calculate_bpjs(data: BPJSCalculationRequest):
    calculator = BPJSCalculator()
    if data.working_days_in_period is not None:
        result = calculator.calculate_prorated(
            data.base_salary,
            data.additional_base,
            data.working_days_in_period,
            data.total_days_in_month,
            risk_class=data.risk_class,
        )
    else:
        result = calculator.calculate(data.base_salary, data.additional_base, data.risk_class)
    return BPJSCalculationResponse.model_validate(result)


@router.post(
    "/calculate/pph21",
    response_model=PPh21CalculationResponse,
    summary="Calculate PPh21",
    description="Preview monthly PPh21 withholding using the annualised method.",
)
async def calculate_pph21(data: PPh21CalculationRequest):
    result = PPh21Calculator().calculate(
        data.gross_income,
        bpjs_employee=data.bpjs_employee,
        is_married=data.is_married,
        dependents=data.dependents,
    )
    return PPh21CalculationResponse.model_validate(result)


@router.post(
    "/calculate/bonus-tax",
    response_model=BonusTaxResponse,
    summary="Calculate tax on a bonus or THR",
)
async def calculate_bonus_tax(data: BonusTaxRequest):
    result = PPh21Calculator().calculate_bonus(
        data.regular_income,
        data.bonus_amount,
        bpjs_employee=data.bpjs_employee,
        is_married=data.is_married,
        dependents=data.dependents,
    )
    return BonusTaxResponse.model_validate(result)


@router.post(
    "/calculate/severance-tax",
    response_model=SeveranceTaxResponse,
    summary="Calculate tax on severance pay",
)
async def calculate_severance_tax(data: SeveranceTaxRequest):
    result = PPh21Calculator().calculate_severance(data.severance_amount)
    return SeveranceTaxResponse.model_validate(result)

"""
Payroll Engine - FastAPI Dependencies

Shared dependencies wiring the payroll services to the collaborators
installed on the application at startup.

This module provides dependency injection for:
1. The payroll repository
2. The HR collaborators (employee directory and attendance)
3. The anomaly validator
4. Service instances built from the above
"""

from typing import Optional

from fastapi import Depends, Request

from payroll_engine.repositories.base import PayrollRepository
from payroll_engine.services.collaborators import (
    AnomalyValidator,
    AttendanceProvider,
    EmployeeDirectory,
)
from payroll_engine.services.payroll_approval_service import PayrollApprovalService
from payroll_engine.services.payroll_component_service import PayrollComponentService
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.payroll_processing_service import PayrollProcessingService
from payroll_engine.services.payslip_service import PayslipService


def get_payroll_repository(request: Request) -> PayrollRepository:
    """Repository installed on app.state by the application lifespan."""
    return request.app.state.payroll_repository


def get_employee_directory(request: Request) -> EmployeeDirectory:
    return request.app.state.employee_directory


def get_attendance_provider(request: Request) -> AttendanceProvider:
    return request.app.state.attendance_provider


def get_anomaly_validator(request: Request) -> Optional[AnomalyValidator]:
    return getattr(request.app.state, "anomaly_validator", None)


def get_period_service(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayrollPeriodService:
    return PayrollPeriodService(repository)


def get_component_service(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayrollComponentService:
    return PayrollComponentService(repository)


def get_approval_service(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayrollApprovalService:
    return PayrollApprovalService(repository)


def get_payslip_service(
    repository: PayrollRepository = Depends(get_payroll_repository),
) -> PayslipService:
    return PayslipService(repository)


def get_processing_service(
    repository: PayrollRepository = Depends(get_payroll_repository),
    employee_directory: EmployeeDirectory = Depends(get_employee_directory),
    attendance_provider: AttendanceProvider = Depends(get_attendance_provider),
    anomaly_validator: Optional[AnomalyValidator] = Depends(get_anomaly_validator),
) -> PayrollProcessingService:
    return PayrollProcessingService(
        repository=repository,
        employee_directory=employee_directory,
        attendance_provider=attendance_provider,
        anomaly_validator=anomaly_validator,
    )

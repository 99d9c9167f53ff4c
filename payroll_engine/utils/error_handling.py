"""
Error Handling Module for the Payroll Engine

This module provides centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Payroll state-machine and anomaly rejections
- Database and external service error handling
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("payroll_engine.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""
    
    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PTKP_INPUT = "INVALID_PTKP_INPUT"
    INVALID_RISK_CLASS = "INVALID_RISK_CLASS"
    INVALID_FORMULA = "INVALID_FORMULA"
    
    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    PERIOD_NOT_FOUND = "PERIOD_NOT_FOUND"
    SUMMARY_NOT_FOUND = "SUMMARY_NOT_FOUND"
    COMPONENT_NOT_FOUND = "COMPONENT_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    
    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    CRITICAL_ANOMALIES = "CRITICAL_ANOMALIES"
    CANNOT_DELETE = "CANNOT_DELETE"
    NO_EMPLOYEES = "NO_EMPLOYEES"
    MISSING_EMPLOYEE_DATA = "MISSING_EMPLOYEE_DATA"
    
    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    HR_SERVICE_ERROR = "HR_SERVICE_ERROR"
    OPENAI_API_ERROR = "OPENAI_API_ERROR"
    
    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    
    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""
    
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""
    
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidAmountException(ValidationException):
    """Negative or otherwise invalid money amount"""
    
    def __init__(self, field: str, amount: Any):
        super().__init__(
            message=f"{field} cannot be negative (got {amount})",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""
    
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            field=field,
            code=ErrorCode.INVALID_DATE_RANGE,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""
    
    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class PeriodNotFoundException(NotFoundException):
    """Payroll period not found"""
    
    def __init__(self, period_id: Union[str, UUID]):
        super().__init__(
            resource_type="Payroll period",
            resource_id=period_id,
            code=ErrorCode.PERIOD_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""
    
    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class DuplicateEntryException(ConflictException):
    """Duplicate entry exception"""
    
    def __init__(
        self,
        resource_type: str,
        field: str,
        value: str,
    ):
        super().__init__(
            message=f"{resource_type} with {field} '{value}' already exists",
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_ENTRY,
            details={"field": field, "value": value},
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""
    
    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class InvalidStateTransitionException(BusinessRuleException):
    """A lifecycle transition was requested from the wrong status"""
    
    def __init__(self, resource_type: str, current_status: str, action: str, allowed_from: List[str]):
        super().__init__(
            message=f"Cannot {action} {resource_type} in '{current_status}' status",
            rule="VALID_STATE_TRANSITION",
            code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "resource_type": resource_type,
                "current_status": current_status,
                "action": action,
                "allowed_from": allowed_from,
            },
        )
        self.current_status = current_status


class CriticalAnomaliesException(BusinessRuleException):
    """Approval blocked by unresolved high or critical anomalies"""
    
    def __init__(self, blocking: List[Dict[str, Any]]):
        super().__init__(
            message=(
                f"Cannot approve payroll: {len(blocking)} employee(s) have "
                f"critical anomalies that must be resolved first"
            ),
            rule="NO_CRITICAL_ANOMALIES",
            code=ErrorCode.CRITICAL_ANOMALIES,
            details={"blocking_anomalies": blocking},
        )
        self.blocking = blocking


class EmployeeDataException(BusinessRuleException):
    """Per-employee data needed for calculation is missing or unusable"""
    
    def __init__(self, employee_id: Union[str, UUID], reason: str):
        super().__init__(
            message=f"Employee {employee_id}: {reason}",
            rule="EMPLOYEE_DATA_COMPLETE",
            code=ErrorCode.MISSING_EMPLOYEE_DATA,
            details={"employee_id": str(employee_id), "reason": reason},
        )
        self.employee_id = employee_id
        self.reason = reason


# ============================================================================
# External Service Exceptions
# ============================================================================

class ExternalServiceException(AppException):
    """External service error exception"""
    
    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["service"] = service_name
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=_details,
            original_error=original_error,
        )


class HRServiceException(ExternalServiceException):
    """Employee directory or attendance API error"""
    
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            service_name="HR API",
            message=f"HR service error: {message}",
            code=ErrorCode.HR_SERVICE_ERROR,
            original_error=original_error,
        )


class OpenAIAPIException(ExternalServiceException):
    """OpenAI API error"""
    
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            service_name="OpenAI API",
            message=f"AI service error: {message}",
            code=ErrorCode.OPENAI_API_ERROR,
            original_error=original_error,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

# Codes for errors raised by FastAPI/Starlette rather than by the engine
_HTTP_STATUS_CODES = {
    400: ErrorCode.INVALID_INPUT,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.INVALID_INPUT,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


def error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Render the engine's standard {"detail": {...}} error body"""
    detail: Dict[str, Any] = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if field:
        detail["field"] = field
    if details:
        detail["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    # Rejected payroll actions are expected traffic; only server-side failures are errors
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code.value}: {exc.message}",
        exc_info=exc.original_error,
    )
    return error_response(exc.status_code, exc.code, exc.message, exc.details, exc.field)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {message}")
    return error_response(exc.status_code, code, message)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request bodies and query parameters that fail the pydantic schemas"""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.info(f"{request.method} {request.url.path} -> 422: {len(errors)} invalid field(s)")
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        details={"errors": errors},
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Unique constraints not already translated by a repository"""
    logger.warning(f"{request.method} {request.url.path} -> 409: {exc.orig}")
    return error_response(
        status.HTTP_409_CONFLICT,
        ErrorCode.DUPLICATE_ENTRY,
        "A payroll record with these values already exists",
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.DATABASE_ERROR,
        "A database error occurred",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        "An unexpected error occurred",
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the payroll error handlers; the most specific class wins"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

"""
Payroll Engine - HR Service Clients

HTTP implementations of the employee directory and attendance provider
contracts, backed by the HR service REST API.

Endpoints used:
- GET {directory}/employers/{employer_id}/employees?status=active
- GET {directory}/employees/{employee_id}
- GET {attendance}/employees/{employee_id}/attendance?start_date=&end_date=
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from payroll_engine.config import settings
from payroll_engine.models.entities import MaritalStatus
from payroll_engine.services.collaborators import (
    AttendanceProvider,
    AttendanceRecord,
    EmployeeDirectory,
    EmployeeProfile,
)
from payroll_engine.utils.error_handling import HRServiceException

logger = logging.getLogger(__name__)


# ===========================================
# WIRE PAYLOADS
# ===========================================

class EmployeePayload(BaseModel):
    id: uuid.UUID
    employer_id: uuid.UUID
    employee_number: str
    full_name: str
    base_salary: Decimal = Field(..., ge=0)
    allowances: Dict[str, Decimal] = Field(default_factory=dict)
    marital_status: MaritalStatus = MaritalStatus.SINGLE
    dependent_count: int = Field(0, ge=0)
    employment_type: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    jkk_risk_class: Optional[int] = Field(None, ge=1, le=5)
    join_date: Optional[date] = None
    exit_date: Optional[date] = None
    loan_installment: Decimal = Field(Decimal("0"), ge=0)

    def to_profile(self) -> EmployeeProfile:
        return EmployeeProfile(**self.model_dump())


class AttendancePayload(BaseModel):
    work_date: date
    is_present: bool
    is_late: bool = False
    overtime_hours: Decimal = Field(Decimal("0"), ge=0)

    def to_record(self) -> AttendanceRecord:
        return AttendanceRecord(**self.model_dump())


# ===========================================
# HTTP
# ===========================================

class HRServiceClient:
    """Thin JSON client for the HR service."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = settings.hr_api_key if api_key is None else api_key
        self.timeout = timeout or settings.hr_api_timeout_seconds
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Any]:
        """
        GET a JSON document from the HR service.

        Returns:
            Parsed JSON, or None for a 404 when allow_not_found is set

        Raises:
            HRServiceException: timeouts, transport errors, non-2xx responses
        """
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._get_headers(), params=params)
        except httpx.TimeoutException as e:
            logger.error(f"HR service timeout: GET {endpoint}")
            raise HRServiceException(f"request to {endpoint} timed out", original_error=e)
        except httpx.RequestError as e:
            logger.error(f"HR service request error: {e}")
            raise HRServiceException(f"request to {endpoint} failed", original_error=e)

        logger.debug(f"HR service GET {endpoint}: status={response.status_code}")

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise HRServiceException(f"GET {endpoint} returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise HRServiceException(f"GET {endpoint} returned invalid JSON", original_error=e)


def _items(payload: Any, key: str) -> List[Any]:
    """Accept both a bare list and an envelope like {"employees": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return payload.get(key) or payload.get("data") or []
    raise HRServiceException(f"unexpected response shape for {key}")


class HTTPEmployeeDirectory(EmployeeDirectory):
    """Employee directory served by the HR service."""

    def __init__(self, client: Optional[HRServiceClient] = None):
        self.client = client or HRServiceClient(settings.hr_directory_api_url)

    async def active_employees(self, employer_id: uuid.UUID) -> List[EmployeeProfile]:
        payload = await self.client.get(
            f"/employers/{employer_id}/employees",
            params={"status": "active"},
        )
        try:
            return [EmployeePayload.model_validate(item).to_profile() for item in _items(payload, "employees")]
        except ValidationError as e:
            raise HRServiceException("invalid employee data from HR service", original_error=e)

    async def get_employee(self, employee_id: uuid.UUID) -> Optional[EmployeeProfile]:
        payload = await self.client.get(f"/employees/{employee_id}", allow_not_found=True)
        if payload is None:
            return None
        try:
            return EmployeePayload.model_validate(payload).to_profile()
        except ValidationError as e:
            raise HRServiceException("invalid employee data from HR service", original_error=e)


class HTTPAttendanceProvider(AttendanceProvider):
    """Attendance records served by the HR service."""

    def __init__(self, client: Optional[HRServiceClient] = None):
        self.client = client or HRServiceClient(settings.attendance_api_url)

    async def records_for_employee_in_range(
        self,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> List[AttendanceRecord]:
        payload = await self.client.get(
            f"/employees/{employee_id}/attendance",
            params={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        try:
            return [AttendancePayload.model_validate(item).to_record() for item in _items(payload, "records")]
        except ValidationError as e:
            raise HRServiceException("invalid attendance data from HR service", original_error=e)

"""
Payroll Engine - Models Package

Immutable payroll records and the SQLAlchemy tables that store them.
"""

from payroll_engine.models.base import BaseModel, TimestampMixin
from payroll_engine.models.entities import (
    AnomalyDetail,
    AnomalySeverity,
    AnomalyType,
    CalculationType,
    ComponentCategory,
    ComponentType,
    MaritalStatus,
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

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AnomalyDetail",
    "AnomalySeverity",
    "AnomalyType",
    "CalculationType",
    "ComponentCategory",
    "ComponentType",
    "MaritalStatus",
    "PayrollComponent",
    "PayrollPeriod",
    "PayrollPeriodStatus",
    "PayrollSummary",
    "PayrollSummaryStatus",
    "PayrollComponentRecord",
    "PayrollPeriodRecord",
    "PayrollSummaryRecord",
]

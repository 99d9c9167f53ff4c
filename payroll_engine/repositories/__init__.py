"""
Payroll Engine - Repositories Package

Storage backends behind the PayrollRepository interface.
"""

from payroll_engine.repositories.base import (
    EmployeeYearToDateStats,
    PayrollRepository,
    PeriodStats,
)
from payroll_engine.repositories.memory import InMemoryPayrollRepository
from payroll_engine.repositories.sqlalchemy_repository import SQLAlchemyPayrollRepository

__all__ = [
    "EmployeeYearToDateStats",
    "PayrollRepository",
    "PeriodStats",
    "InMemoryPayrollRepository",
    "SQLAlchemyPayrollRepository",
]

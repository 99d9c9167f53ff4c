"""
Payroll Engine - Routers Package

FastAPI route handlers.

Routers:
- payroll: Periods, processing, approval, components, payslips and calculators
"""

from payroll_engine.routers import payroll

__all__ = ["payroll"]

"""
Payroll Engine - Tax Calculators Package

Statutory payroll calculations for Indonesia.

Modules:
- tax_tables: BPJS rates and caps, PTKP values, PPh21 and severance brackets
- bpjs_service: BPJS Kesehatan / Ketenagakerjaan contributions
- pph21_service: PPh21 monthly, bonus and severance withholding
"""

from decimal import Decimal

from payroll_engine.services.tax_calculators.bpjs_service import (
    BPJSCalculator,
    BPJSCalculationResult,
    BPJSLineItem,
)
from payroll_engine.services.tax_calculators.pph21_service import (
    PPh21Calculator,
    PPh21CalculationResult,
    BonusTaxResult,
    SeveranceTaxResult,
    TaxBracketLine,
    get_ptkp_status,
)
from payroll_engine.services.tax_calculators.tax_tables import (
    TaxBracket,
    round_rupiah,
    floor_thousand,
)


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def calculate_bpjs(
    base_salary: Decimal,
    additional_base: Decimal = Decimal("0"),
    risk_class: int = 1,
) -> BPJSCalculationResult:
    """
    Calculate BPJS contributions for one month.
    
    Args:
        base_salary: Monthly base salary
        additional_base: Allowances included in the contribution base
        risk_class: JKK risk class (1-5)
    
    Returns:
        BPJSCalculationResult
    """
    return BPJSCalculator().calculate(base_salary, additional_base, risk_class)


def calculate_pph21(
    gross_income: Decimal,
    bpjs_employee: Decimal = Decimal("0"),
    is_married: bool = False,
    dependents: int = 0,
) -> Decimal:
    """
    Calculate the monthly PPh21 withholding.
    
    Returns:
        Monthly tax in whole rupiah
    """
    return PPh21Calculator().calculate(gross_income, bpjs_employee, is_married, dependents).monthly_tax


def calculate_severance_tax(severance_amount: Decimal) -> Decimal:
    """Calculate one-time severance tax (0% / 5% / 15% / 25%)."""
    return PPh21Calculator().calculate_severance(severance_amount).total_tax


__all__ = [
    # BPJS
    "BPJSCalculator",
    "BPJSCalculationResult",
    "BPJSLineItem",
    # PPh21
    "PPh21Calculator",
    "PPh21CalculationResult",
    "BonusTaxResult",
    "SeveranceTaxResult",
    "TaxBracketLine",
    "get_ptkp_status",
    # Tables
    "TaxBracket",
    "round_rupiah",
    "floor_thousand",
    # Convenience functions
    "calculate_bpjs",
    "calculate_pph21",
    "calculate_severance_tax",
]

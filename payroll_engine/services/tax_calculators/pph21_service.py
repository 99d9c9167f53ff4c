"""
Payroll Engine - PPh21 Calculator Service

Monthly employee income-tax withholding (PPh Pasal 21).

Steps:
1. PTKP = Rp 54,000,000 + Rp 4,500,000 if married + Rp 4,500,000 per
   dependent (maximum 3 dependents)
2. Monthly deductions: biaya jabatan 5% of gross (max Rp 500,000) and the
   employee BPJS contribution (max 5% of gross)
3. Annualise net income, subtract PTKP, floor to Rp 1,000
4. Apply progressive brackets (5% / 15% / 25% / 30%), rounding each bracket
5. Monthly withholding = annual tax / 12, rounded

Bonus tax uses the differential method and severance uses its own one-time
bracket table.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from payroll_engine.services.tax_calculators.tax_tables import (
    BPJS_DEDUCTION_MAX_RATE,
    OCCUPATIONAL_COST_MAX_MONTHLY,
    OCCUPATIONAL_COST_RATE,
    PPH21_TAX_BRACKETS,
    PTKP_MARRIED,
    PTKP_MAX_DEPENDENTS,
    PTKP_PER_DEPENDENT,
    PTKP_SELF,
    SEVERANCE_TAX_BRACKETS,
    TaxBracket,
    floor_thousand,
    round_rupiah,
)
from payroll_engine.utils.error_handling import (
    ErrorCode,
    InvalidAmountException,
    ValidationException,
)


@dataclass(frozen=True)
class TaxBracketLine:
    """Audit-trail entry for one bracket."""
    bracket: str
    rate: Decimal
    amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class PTKPDetails:
    """Non-taxable allowance components."""
    self_allowance: Decimal
    married_allowance: Decimal
    dependent_allowance: Decimal
    dependent_count: int
    
    @property
    def total(self) -> Decimal:
        return self.self_allowance + self.married_allowance + self.dependent_allowance


@dataclass(frozen=True)
class PPh21CalculationResult:
    """Monthly PPh21 withholding with its full derivation."""
    gross_income: Decimal
    annual_gross_income: Decimal
    bpjs_deduction: Decimal
    occupational_deduction: Decimal
    total_deductions: Decimal
    net_income: Decimal
    annual_net_income: Decimal
    ptkp: Decimal
    taxable_income: Decimal
    taxable_income_rounded: Decimal
    tax_breakdown: Tuple[TaxBracketLine, ...]
    annual_tax: Decimal
    monthly_tax: Decimal
    ptkp_status: str
    ptkp_details: PTKPDetails
    
    @property
    def effective_tax_rate(self) -> Decimal:
        if self.annual_gross_income == 0:
            return Decimal("0")
        return self.annual_tax / self.annual_gross_income * 100
    
    def scalar_details(self) -> Dict[str, Any]:
        """Scalar figures copied onto a payroll summary."""
        return {
            "ptkp_status": self.ptkp_status,
            "ptkp": self.ptkp,
            "occupational_deduction": self.occupational_deduction,
            "bpjs_deduction": self.bpjs_deduction,
            "annual_net_income": self.annual_net_income,
            "taxable_income_rounded": self.taxable_income_rounded,
            "annual_tax": self.annual_tax,
            "monthly_tax": self.monthly_tax,
        }


@dataclass(frozen=True)
class BonusTaxResult:
    bonus_amount: Decimal
    regular_annual_tax: Decimal
    annual_tax_with_bonus: Decimal
    bonus_tax: Decimal
    bonus_net_amount: Decimal
    effective_tax_rate: Decimal


@dataclass(frozen=True)
class SeveranceTaxResult:
    severance_amount: Decimal
    tax_breakdown: Tuple[TaxBracketLine, ...]
    total_tax: Decimal
    net_amount: Decimal
    effective_tax_rate: Decimal


def get_ptkp_status(is_married: bool, dependents: int) -> str:
    """PTKP status code: TK/0..TK/3 for single, K/0..K/3 for married."""
    prefix = "K" if is_married else "TK"
    return f"{prefix}/{min(max(dependents, 0), PTKP_MAX_DEPENDENTS)}"


def apply_brackets(
    taxable_income: Decimal,
    brackets: List[TaxBracket],
) -> Tuple[Decimal, List[TaxBracketLine]]:
    """
    Apply progressive brackets.
    
    Every bracket appears in the breakdown; each bracket's tax is rounded
    on its own before summing.
    """
    total_tax = Decimal("0")
    breakdown = []
    
    for bracket in brackets:
        amount = bracket.amount_in_bracket(taxable_income)
        tax = round_rupiah(amount * bracket.rate / 100)
        total_tax += tax
        breakdown.append(TaxBracketLine(
            bracket=bracket.label,
            rate=bracket.rate,
            amount=amount,
            tax=tax,
        ))
    
    return total_tax, breakdown


class PPh21Calculator:
    """
    PPh21 calculator for Indonesian employee income tax.
    
    Implements the UU HPP progressive rates.
    """
    
    def __init__(self, tax_brackets: Optional[List[TaxBracket]] = None):
        self.tax_brackets = tax_brackets or PPH21_TAX_BRACKETS
    
    def calculate_ptkp(self, is_married: bool, dependents: int) -> PTKPDetails:
        """
        Calculate the annual non-taxable allowance.
        
        Dependents above 3 are clamped to 3; negative counts are rejected.
        """
        if dependents < 0:
            raise ValidationException(
                message=f"Dependent count cannot be negative (got {dependents})",
                field="dependents",
                code=ErrorCode.INVALID_PTKP_INPUT,
            )
        counted = min(dependents, PTKP_MAX_DEPENDENTS)
        return PTKPDetails(
            self_allowance=PTKP_SELF,
            married_allowance=PTKP_MARRIED if is_married else Decimal("0"),
            dependent_allowance=PTKP_PER_DEPENDENT * counted,
            dependent_count=counted,
        )
    
    def calculate_occupational_deduction(self, gross_income: Decimal) -> Decimal:
        """Biaya jabatan: 5% of gross, capped at Rp 500,000 per month."""
        return min(gross_income * OCCUPATIONAL_COST_RATE / 100, OCCUPATIONAL_COST_MAX_MONTHLY)
    
    def calculate_bpjs_deduction(self, gross_income: Decimal, bpjs_employee: Decimal) -> Decimal:
        """Employee BPJS is deductible up to 5% of gross."""
        return min(bpjs_employee, gross_income * BPJS_DEDUCTION_MAX_RATE / 100)
    
    def calculate(
        self,
        gross_income: Decimal,
        bpjs_employee: Decimal = Decimal("0"),
        is_married: bool = False,
        dependents: int = 0,
    ) -> PPh21CalculationResult:
        """
        Calculate monthly PPh21.
        
        Args:
            gross_income: Monthly gross taxable income
            bpjs_employee: Monthly employee BPJS contribution
            is_married: Marital status
            dependents: Number of dependents (clamped to 3)
        
        Returns:
            PPh21CalculationResult with bracket-by-bracket breakdown
        """
        gross_income = Decimal(gross_income)
        bpjs_employee = Decimal(bpjs_employee)
        if gross_income < 0:
            raise InvalidAmountException("gross_income", gross_income)
        if bpjs_employee < 0:
            raise InvalidAmountException("bpjs_employee", bpjs_employee)
        
        ptkp_details = self.calculate_ptkp(is_married, dependents)
        ptkp = ptkp_details.total
        
        occupational = self.calculate_occupational_deduction(gross_income)
        bpjs_deduction = self.calculate_bpjs_deduction(gross_income, bpjs_employee)
        total_deductions = occupational + bpjs_deduction
        
        net_income = gross_income - total_deductions
        annual_net_income = net_income * 12
        
        taxable_income = max(Decimal("0"), annual_net_income - ptkp)
        taxable_income_rounded = floor_thousand(taxable_income)
        
        annual_tax, breakdown = apply_brackets(taxable_income_rounded, self.tax_brackets)
        monthly_tax = round_rupiah(annual_tax / 12)
        
        return PPh21CalculationResult(
            gross_income=gross_income,
            annual_gross_income=gross_income * 12,
            bpjs_deduction=bpjs_deduction,
            occupational_deduction=occupational,
            total_deductions=total_deductions,
            net_income=net_income,
            annual_net_income=annual_net_income,
            ptkp=ptkp,
            taxable_income=taxable_income,
            taxable_income_rounded=taxable_income_rounded,
            tax_breakdown=tuple(breakdown),
            annual_tax=annual_tax,
            monthly_tax=monthly_tax,
            ptkp_status=get_ptkp_status(is_married, ptkp_details.dependent_count),
            ptkp_details=ptkp_details,
        )
    
    def calculate_bonus(
        self,
        regular_income: Decimal,
        bonus_amount: Decimal,
        bpjs_employee: Decimal = Decimal("0"),
        is_married: bool = False,
        dependents: int = 0,
    ) -> BonusTaxResult:
        """
        Tax on a bonus or THR using the differential method.
        
        The bonus is added once to the annualised regular net income (less
        the extra biaya jabatan it unlocks in the bonus month). Bonus tax is
        the difference in annual tax, kept within [0, bonus_amount].
        """
        bonus_amount = Decimal(bonus_amount)
        if bonus_amount < 0:
            raise InvalidAmountException("bonus_amount", bonus_amount)
        
        regular = self.calculate(regular_income, bpjs_employee, is_married, dependents)
        
        occupational_with_bonus = self.calculate_occupational_deduction(
            regular.gross_income + bonus_amount
        )
        extra_occupational = occupational_with_bonus - regular.occupational_deduction
        annual_net_with_bonus = regular.annual_net_income + bonus_amount - extra_occupational
        
        taxable_with_bonus = floor_thousand(max(Decimal("0"), annual_net_with_bonus - regular.ptkp))
        annual_tax_with_bonus, _ = apply_brackets(taxable_with_bonus, self.tax_brackets)
        
        bonus_tax = min(max(Decimal("0"), annual_tax_with_bonus - regular.annual_tax), bonus_amount)
        effective_rate = (bonus_tax / bonus_amount * 100) if bonus_amount > 0 else Decimal("0")
        
        return BonusTaxResult(
            bonus_amount=bonus_amount,
            regular_annual_tax=regular.annual_tax,
            annual_tax_with_bonus=annual_tax_with_bonus,
            bonus_tax=bonus_tax,
            bonus_net_amount=bonus_amount - bonus_tax,
            effective_tax_rate=effective_rate,
        )
    
    def calculate_severance(self, severance_amount: Decimal) -> SeveranceTaxResult:
        """One-time tax on a severance (pesangon) lump sum."""
        severance_amount = Decimal(severance_amount)
        if severance_amount < 0:
            raise InvalidAmountException("severance_amount", severance_amount)
        
        total_tax, breakdown = apply_brackets(severance_amount, SEVERANCE_TAX_BRACKETS)
        effective_rate = (
            total_tax / severance_amount * 100 if severance_amount > 0 else Decimal("0")
        )
        
        return SeveranceTaxResult(
            severance_amount=severance_amount,
            tax_breakdown=tuple(breakdown),
            total_tax=total_tax,
            net_amount=severance_amount - total_tax,
            effective_tax_rate=effective_rate,
        )
    
    def get_summary(self, result: PPh21CalculationResult) -> List[Dict[str, Any]]:
        """Labelled lines explaining the withholding on a payslip."""
        return [
            {"label": "Penghasilan Bruto", "value": result.gross_income},
            {"label": "Biaya Jabatan", "value": -result.occupational_deduction},
            {"label": "Iuran BPJS", "value": -result.bpjs_deduction},
            {"label": "Penghasilan Neto", "value": result.net_income},
            {"label": "Penghasilan Neto Setahun", "value": result.annual_net_income},
            {"label": f"PTKP ({result.ptkp_status})", "value": -result.ptkp},
            {"label": "PKP (dibulatkan)", "value": result.taxable_income_rounded},
            {"label": "PPh21 Setahun", "value": result.annual_tax},
            {"label": "PPh21 Sebulan", "value": result.monthly_tax},
        ]

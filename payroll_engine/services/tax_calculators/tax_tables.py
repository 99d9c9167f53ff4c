"""
Payroll Engine - Indonesian Statutory Rate Tables

Static configuration for BPJS contributions and PPh21 withholding.

BPJS Kesehatan (health):
- Employee 1%, employer 4%, salary base capped at Rp 12,000,000

BPJS Ketenagakerjaan (employment), base capped at Rp 13,710,732:
- JKK (work accident): employer only, 0.24% - 1.74% by risk class
- JKM (death benefit): employer only, 0.3%
- JHT (old-age savings): employee 2%, employer 3.7%
- JP (pension): employee 1%, employer 2%

PPh21 annual brackets (UU HPP):
- Rp 0 - 60,000,000: 5%
- Rp 60,000,001 - 250,000,000: 15%
- Rp 250,000,001 - 500,000,000: 25%
- Above Rp 500,000,000: 30%
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR
from typing import Dict, List, Optional


@dataclass(frozen=True)
class TaxBracket:
    """Progressive bracket definition. Rate is a percentage."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal
    
    def amount_in_bracket(self, taxable_income: Decimal) -> Decimal:
        """Portion of the income that falls inside this bracket."""
        if taxable_income <= self.lower:
            return Decimal("0")
        
        if self.upper is None:
            # Top bracket (no upper limit)
            return taxable_income - self.lower
        
        return min(taxable_income, self.upper) - self.lower
    
    @property
    def label(self) -> str:
        if self.upper is None:
            return f"> Rp {self.lower:,.0f}"
        return f"Rp {self.lower:,.0f} - Rp {self.upper:,.0f}"


# ===========================================
# ROUNDING
# ===========================================

def round_rupiah(amount: Decimal) -> Decimal:
    """Round to the nearest whole rupiah, halves away from zero."""
    return Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def floor_thousand(amount: Decimal) -> Decimal:
    """Statutory rounding of taxable income: always down to Rp 1,000."""
    return (Decimal(amount) / 1000).to_integral_value(rounding=ROUND_FLOOR) * 1000


# ===========================================
# BPJS KESEHATAN
# ===========================================
BPJS_KESEHATAN_EMPLOYEE_RATE = Decimal("1")
BPJS_KESEHATAN_EMPLOYER_RATE = Decimal("4")
BPJS_KESEHATAN_MAX_SALARY = Decimal("12000000")

# ===========================================
# BPJS KETENAGAKERJAAN
# ===========================================
BPJS_KETENAGAKERJAAN_MAX_SALARY = Decimal("13710732")

# JKK rate by work-accident risk class (1 = very low ... 5 = very high)
JKK_RATES: Dict[int, Decimal] = {
    1: Decimal("0.24"),
    2: Decimal("0.54"),
    3: Decimal("0.89"),
    4: Decimal("1.27"),
    5: Decimal("1.74"),
}

JKM_EMPLOYER_RATE = Decimal("0.3")
JHT_EMPLOYEE_RATE = Decimal("2")
JHT_EMPLOYER_RATE = Decimal("3.7")
JP_EMPLOYEE_RATE = Decimal("1")
JP_EMPLOYER_RATE = Decimal("2")

# ===========================================
# PPh21 - PTKP (Penghasilan Tidak Kena Pajak), annual
# ===========================================
PTKP_SELF = Decimal("54000000")
PTKP_MARRIED = Decimal("4500000")
PTKP_PER_DEPENDENT = Decimal("4500000")
PTKP_MAX_DEPENDENTS = 3

# ===========================================
# PPh21 - DEDUCTIONS (monthly)
# ===========================================
OCCUPATIONAL_COST_RATE = Decimal("5")  # Biaya jabatan
OCCUPATIONAL_COST_MAX_MONTHLY = Decimal("500000")
BPJS_DEDUCTION_MAX_RATE = Decimal("5")

# ===========================================
# PPh21 - BRACKETS
# ===========================================
PPH21_TAX_BRACKETS: List[TaxBracket] = [
    TaxBracket(Decimal("0"), Decimal("60000000"), Decimal("5")),
    TaxBracket(Decimal("60000000"), Decimal("250000000"), Decimal("15")),
    TaxBracket(Decimal("250000000"), Decimal("500000000"), Decimal("25")),
    TaxBracket(Decimal("500000000"), None, Decimal("30")),
]

# One-time severance (pesangon) brackets
SEVERANCE_TAX_BRACKETS: List[TaxBracket] = [
    TaxBracket(Decimal("0"), Decimal("50000000"), Decimal("0")),
    TaxBracket(Decimal("50000000"), Decimal("100000000"), Decimal("5")),
    TaxBracket(Decimal("100000000"), Decimal("500000000"), Decimal("15")),
    TaxBracket(Decimal("500000000"), None, Decimal("25")),
]

# ===========================================
# LABOUR LAW - OVERTIME
# ===========================================
MONTHLY_HOURS_DIVISOR = Decimal("173")
OVERTIME_FIRST_HOUR_MULTIPLIER = Decimal("1.5")
OVERTIME_NEXT_HOURS_MULTIPLIER = Decimal("2")
MAX_OVERTIME_HOURS_PER_DAY = Decimal("4")
MAX_OVERTIME_HOURS_PER_WEEK = Decimal("18")

"""
Payroll Engine - BPJS Contribution Calculator

Splits Indonesian social-security contributions between employee and
employer.

BPJS Kesehatan: 1% employee / 4% employer on a base capped at Rp 12,000,000.
BPJS Ketenagakerjaan on a base capped at Rp 13,710,732:
- JKK: employer only, rate by risk class 1-5
- JKM: employer only, 0.3%
- JHT: 2% employee / 3.7% employer
- JP: 1% employee / 2% employer

Every sub-scheme is rounded to whole rupiah before the totals are summed,
which is how official payslips round.
"""

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Dict, List, Optional

from payroll_engine.services.tax_calculators.tax_tables import (
    BPJS_KESEHATAN_EMPLOYEE_RATE,
    BPJS_KESEHATAN_EMPLOYER_RATE,
    BPJS_KESEHATAN_MAX_SALARY,
    BPJS_KETENAGAKERJAAN_MAX_SALARY,
    JKK_RATES,
    JKM_EMPLOYER_RATE,
    JHT_EMPLOYEE_RATE,
    JHT_EMPLOYER_RATE,
    JP_EMPLOYEE_RATE,
    JP_EMPLOYER_RATE,
    round_rupiah,
)
from payroll_engine.utils.error_handling import (
    ErrorCode,
    InvalidAmountException,
    ValidationException,
)


# Sub-scheme amounts, scaled individually by the proration variant
_SUB_SCHEME_FIELDS = (
    "kesehatan_employee",
    "kesehatan_employer",
    "jkk_employer",
    "jkm_employer",
    "jht_employee",
    "jht_employer",
    "jp_employee",
    "jp_employer",
)


@dataclass(frozen=True)
class BPJSCalculationResult:
    """Employee/employer split for every BPJS sub-scheme, in whole rupiah."""
    base_salary: Decimal
    additional_base: Decimal
    risk_class: int
    kesehatan_base: Decimal
    ketenagakerjaan_base: Decimal
    
    kesehatan_employee: Decimal
    kesehatan_employer: Decimal
    jkk_employer: Decimal
    jkm_employer: Decimal
    jht_employee: Decimal
    jht_employer: Decimal
    jp_employee: Decimal
    jp_employer: Decimal
    
    proration_factor: Decimal = Decimal("1")
    
    @property
    def kesehatan_total(self) -> Decimal:
        return self.kesehatan_employee + self.kesehatan_employer
    
    @property
    def jht_total(self) -> Decimal:
        return self.jht_employee + self.jht_employer
    
    @property
    def jp_total(self) -> Decimal:
        return self.jp_employee + self.jp_employer
    
    @property
    def ketenagakerjaan_employee(self) -> Decimal:
        return self.jht_employee + self.jp_employee
    
    @property
    def ketenagakerjaan_employer(self) -> Decimal:
        return self.jkk_employer + self.jkm_employer + self.jht_employer + self.jp_employer
    
    @property
    def ketenagakerjaan_total(self) -> Decimal:
        return self.ketenagakerjaan_employee + self.ketenagakerjaan_employer
    
    @property
    def total_employee(self) -> Decimal:
        return self.kesehatan_employee + self.ketenagakerjaan_employee
    
    @property
    def total_employer(self) -> Decimal:
        return self.kesehatan_employer + self.ketenagakerjaan_employer
    
    @property
    def grand_total(self) -> Decimal:
        return self.total_employee + self.total_employer
    
    def sub_scheme_amounts(self) -> Dict[str, Decimal]:
        """Scalar amounts per sub-scheme, as copied onto a payroll summary."""
        return {name: getattr(self, name) for name in _SUB_SCHEME_FIELDS}
    
    def to_dict(self) -> Dict[str, object]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.update({
            "kesehatan_total": self.kesehatan_total,
            "jht_total": self.jht_total,
            "jp_total": self.jp_total,
            "ketenagakerjaan_employee": self.ketenagakerjaan_employee,
            "ketenagakerjaan_employer": self.ketenagakerjaan_employer,
            "ketenagakerjaan_total": self.ketenagakerjaan_total,
            "total_employee": self.total_employee,
            "total_employer": self.total_employer,
            "grand_total": self.grand_total,
        })
        return data


@dataclass(frozen=True)
class BPJSLineItem:
    """Labelled contribution line for payslips."""
    name: str
    amount: Decimal


class BPJSCalculator:
    """
    BPJS contribution calculator.
    
    Stateless; rates can be overridden for testing or future regulation
    changes through the constructor.
    """
    
    def __init__(
        self,
        kesehatan_max_salary: Decimal = BPJS_KESEHATAN_MAX_SALARY,
        ketenagakerjaan_max_salary: Decimal = BPJS_KETENAGAKERJAAN_MAX_SALARY,
        jkk_rates: Optional[Dict[int, Decimal]] = None,
    ):
        self.kesehatan_max_salary = kesehatan_max_salary
        self.ketenagakerjaan_max_salary = ketenagakerjaan_max_salary
        self.jkk_rates = jkk_rates or JKK_RATES
    
    def _validate(self, base_salary: Decimal, additional_base: Decimal, risk_class: int) -> None:
        if base_salary < 0:
            raise InvalidAmountException("base_salary", base_salary)
        if additional_base < 0:
            raise InvalidAmountException("additional_base", additional_base)
        if isinstance(risk_class, bool) or not isinstance(risk_class, int) or risk_class not in self.jkk_rates:
            raise ValidationException(
                message=f"JKK risk class must be one of {sorted(self.jkk_rates)}, got {risk_class}",
                field="risk_class",
                code=ErrorCode.INVALID_RISK_CLASS,
            )
    
    @staticmethod
    def _share(base: Decimal, rate: Decimal) -> Decimal:
        return round_rupiah(base * rate / 100)
    
    def calculate(
        self,
        base_salary: Decimal,
        additional_base: Decimal = Decimal("0"),
        risk_class: int = 1,
    ) -> BPJSCalculationResult:
        """
        Calculate BPJS contributions for one month.
        
        Args:
            base_salary: Monthly base salary
            additional_base: Allowances included in the contribution base
            risk_class: JKK work-accident risk class (1-5)
        
        Returns:
            BPJSCalculationResult with every sub-scheme split
        """
        base_salary = Decimal(base_salary)
        additional_base = Decimal(additional_base)
        self._validate(base_salary, additional_base, risk_class)
        
        contribution_base = base_salary + additional_base
        kesehatan_base = min(contribution_base, self.kesehatan_max_salary)
        ketenagakerjaan_base = min(contribution_base, self.ketenagakerjaan_max_salary)
        
        return BPJSCalculationResult(
            base_salary=base_salary,
            additional_base=additional_base,
            risk_class=risk_class,
            kesehatan_base=kesehatan_base,
            ketenagakerjaan_base=ketenagakerjaan_base,
            kesehatan_employee=self._share(kesehatan_base, BPJS_KESEHATAN_EMPLOYEE_RATE),
            kesehatan_employer=self._share(kesehatan_base, BPJS_KESEHATAN_EMPLOYER_RATE),
            jkk_employer=self._share(ketenagakerjaan_base, self.jkk_rates[risk_class]),
            jkm_employer=self._share(ketenagakerjaan_base, JKM_EMPLOYER_RATE),
            jht_employee=self._share(ketenagakerjaan_base, JHT_EMPLOYEE_RATE),
            jht_employer=self._share(ketenagakerjaan_base, JHT_EMPLOYER_RATE),
            jp_employee=self._share(ketenagakerjaan_base, JP_EMPLOYEE_RATE),
            jp_employer=self._share(ketenagakerjaan_base, JP_EMPLOYER_RATE),
        )
    
    def calculate_prorated(
        self,
        base_salary: Decimal,
        additional_base: Decimal,
        working_days_in_period: int,
        total_days_in_month: int,
        risk_class: int = 1,
    ) -> BPJSCalculationResult:
        """
        Calculate contributions for an employee who joined or left mid-month.
        
        Each sub-scheme is scaled by working_days / total_days and rounded
        on its own; totals are the sums of the scaled sub-schemes.
        """
        if total_days_in_month <= 0:
            raise ValidationException(
                message="total_days_in_month must be positive",
                field="total_days_in_month",
            )
        if working_days_in_period < 0 or working_days_in_period > total_days_in_month:
            raise ValidationException(
                message=(
                    f"working_days_in_period must be between 0 and {total_days_in_month}, "
                    f"got {working_days_in_period}"
                ),
                field="working_days_in_period",
            )
        
        full = self.calculate(base_salary, additional_base, risk_class)
        factor = Decimal(working_days_in_period) / Decimal(total_days_in_month)
        
        scaled = {
            name: round_rupiah(amount * factor)
            for name, amount in full.sub_scheme_amounts().items()
        }
        return replace(full, proration_factor=factor, **scaled)
    
    def get_breakdown(self, result: BPJSCalculationResult) -> Dict[str, List[BPJSLineItem]]:
        """Labelled employee and employer lines for a payslip."""
        jkk_rate = self.jkk_rates[result.risk_class]
        return {
            "employee": [
                BPJSLineItem("BPJS Kesehatan (1%)", result.kesehatan_employee),
                BPJSLineItem("BPJS JHT (2%)", result.jht_employee),
                BPJSLineItem("BPJS JP (1%)", result.jp_employee),
            ],
            "employer": [
                BPJSLineItem("BPJS Kesehatan (4%)", result.kesehatan_employer),
                BPJSLineItem(f"BPJS JKK ({jkk_rate.normalize()}%)", result.jkk_employer),
                BPJSLineItem("BPJS JKM (0.3%)", result.jkm_employer),
                BPJSLineItem("BPJS JHT (3.7%)", result.jht_employer),
                BPJSLineItem("BPJS JP (2%)", result.jp_employer),
            ],
        }

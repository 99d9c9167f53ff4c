"""
Payroll Engine - Tax Calculator Tests

Unit tests for BPJS contributions and PPh21 withholding.
"""

import pytest
from decimal import Decimal

from payroll_engine.services.tax_calculators import (
    BPJSCalculator,
    PPh21Calculator,
    calculate_bpjs,
    calculate_pph21,
    calculate_severance_tax,
    floor_thousand,
    get_ptkp_status,
    round_rupiah,
)
from payroll_engine.utils.error_handling import (
    ErrorCode,
    InvalidAmountException,
    ValidationException,
)


class TestRounding:
    """Rupiah rounding helpers."""

    def test_round_rupiah_half_up(self):
        assert round_rupiah(Decimal("1234.5")) == Decimal("1235")
        assert round_rupiah(Decimal("1234.49")) == Decimal("1234")

    def test_floor_thousand_never_rounds_up(self):
        assert floor_thousand(Decimal("44836362.60")) == Decimal("44836000")
        assert floor_thousand(Decimal("999.99")) == Decimal("0")


class TestBPJSCalculation:
    """BPJS Kesehatan and Ketenagakerjaan contributions."""

    def test_contributions_below_caps(self):
        """10,000,000 salary, risk class 1."""
        result = BPJSCalculator().calculate(Decimal("10000000"))

        assert result.kesehatan_employee == Decimal("100000")
        assert result.kesehatan_employer == Decimal("400000")
        assert result.jkk_employer == Decimal("24000")
        assert result.jkm_employer == Decimal("30000")
        assert result.jht_employee == Decimal("200000")
        assert result.jht_employer == Decimal("370000")
        assert result.jp_employee == Decimal("100000")
        assert result.jp_employer == Decimal("200000")

        assert result.total_employee == Decimal("400000")
        assert result.total_employer == Decimal("1024000")
        assert result.grand_total == Decimal("1424000")

    def test_totals_are_sums_of_sub_schemes(self):
        result = calculate_bpjs(Decimal("7350000"), Decimal("650000"), risk_class=3)
        amounts = result.sub_scheme_amounts()

        employee = sum(v for k, v in amounts.items() if k.endswith("_employee"))
        employer = sum(v for k, v in amounts.items() if k.endswith("_employer"))
        assert result.total_employee == employee
        assert result.total_employer == employer
        assert result.grand_total == employee + employer

    def test_caps_apply_per_scheme(self):
        """Kesehatan capped at 12,000,000; Ketenagakerjaan at 13,710,732."""
        result = BPJSCalculator().calculate(Decimal("20000000"))

        assert result.kesehatan_base == Decimal("12000000")
        assert result.ketenagakerjaan_base == Decimal("13710732")
        assert result.kesehatan_employee == Decimal("120000")
        assert result.kesehatan_employer == Decimal("480000")
        # 13,710,732 x 2% = 274,214.64
        assert result.jht_employee == Decimal("274215")
        # 13,710,732 x 1% = 137,107.32
        assert result.jp_employee == Decimal("137107")

    def test_additional_base_counts_towards_contribution_base(self):
        result = BPJSCalculator().calculate(Decimal("5000000"), Decimal("1000000"))

        assert result.kesehatan_base == Decimal("6000000")
        assert result.kesehatan_employee == Decimal("60000")

    def test_risk_class_changes_only_jkk(self):
        low = BPJSCalculator().calculate(Decimal("10000000"), risk_class=1)
        high = BPJSCalculator().calculate(Decimal("10000000"), risk_class=5)

        assert high.jkk_employer == Decimal("174000")
        assert high.total_employee == low.total_employee
        assert high.jkm_employer == low.jkm_employer

    @pytest.mark.parametrize("risk_class", [0, 6, -1])
    def test_invalid_risk_class_rejected(self, risk_class):
        with pytest.raises(ValidationException) as exc_info:
            BPJSCalculator().calculate(Decimal("10000000"), risk_class=risk_class)

        assert exc_info.value.code == ErrorCode.INVALID_RISK_CLASS

    @pytest.mark.parametrize("risk_class", [True, 1.0, "1", None])
    def test_risk_class_must_be_an_integer(self, risk_class):
        with pytest.raises(ValidationException) as exc_info:
            BPJSCalculator().calculate(Decimal("10000000"), risk_class=risk_class)

        assert exc_info.value.code == ErrorCode.INVALID_RISK_CLASS

    @pytest.mark.parametrize("risk_class", [1, 2, 3, 4, 5])
    def test_salaries_above_both_caps_contribute_the_same(self, risk_class):
        calculator = BPJSCalculator()

        above = calculator.calculate(Decimal("15000000"), risk_class=risk_class)
        far_above = calculator.calculate(Decimal("85000000"), Decimal("2500000"), risk_class=risk_class)

        assert above.sub_scheme_amounts() == far_above.sub_scheme_amounts()
        assert above.total_employee == far_above.total_employee
        assert above.total_employer == far_above.total_employer

    @pytest.mark.parametrize("risk_class", [1, 2, 3, 4, 5])
    @pytest.mark.parametrize("base_salary", ["0", "1", "4999999", "7350001", "12000001", "98765432"])
    def test_amounts_are_whole_non_negative_rupiah(self, risk_class, base_salary):
        result = BPJSCalculator().calculate(Decimal(base_salary), Decimal("333333"), risk_class=risk_class)

        for name, amount in result.sub_scheme_amounts().items():
            assert amount >= 0, name
            assert amount == amount.to_integral_value(), name

    def test_negative_salary_rejected(self):
        with pytest.raises(InvalidAmountException):
            BPJSCalculator().calculate(Decimal("-1"))

    def test_zero_salary_gives_zero_contributions(self):
        result = BPJSCalculator().calculate(Decimal("0"))

        assert result.grand_total == Decimal("0")


class TestBPJSProration:
    """Mid-month joiners and leavers."""

    def test_half_month(self):
        result = BPJSCalculator().calculate_prorated(Decimal("10000000"), Decimal("0"), 15, 30)

        assert result.proration_factor == Decimal("0.5")
        assert result.kesehatan_employee == Decimal("50000")
        assert result.jht_employee == Decimal("100000")
        assert result.jp_employee == Decimal("50000")
        assert result.total_employee == Decimal("200000")
        assert result.total_employer == Decimal("512000")

    def test_full_month_matches_unprorated(self):
        calculator = BPJSCalculator()
        full = calculator.calculate(Decimal("8750000"), Decimal("250000"), 2)
        prorated = calculator.calculate_prorated(Decimal("8750000"), Decimal("250000"), 31, 31, 2)

        assert prorated.sub_scheme_amounts() == full.sub_scheme_amounts()
        assert prorated.total_employee == full.total_employee

    def test_totals_stay_sums_after_proration(self):
        result = BPJSCalculator().calculate_prorated(Decimal("9333333"), Decimal("0"), 11, 31, 4)
        amounts = result.sub_scheme_amounts()

        assert result.total_employee == sum(v for k, v in amounts.items() if k.endswith("_employee"))

    def test_more_days_than_month_rejected(self):
        with pytest.raises(ValidationException):
            BPJSCalculator().calculate_prorated(Decimal("10000000"), Decimal("0"), 32, 31)

    def test_zero_month_length_rejected(self):
        with pytest.raises(ValidationException):
            BPJSCalculator().calculate_prorated(Decimal("10000000"), Decimal("0"), 0, 0)


class TestPPh21Calculation:
    """Monthly PPh21 using the annualised method."""

    def test_zero_income_no_tax(self):
        result = PPh21Calculator().calculate(Decimal("0"))

        assert result.monthly_tax == Decimal("0")
        assert result.annual_tax == Decimal("0")
        assert result.taxable_income == Decimal("0")

    def test_income_below_ptkp_no_tax(self):
        """4,500,000/month single: annual net 51,300,000 < PTKP 54,000,000."""
        assert calculate_pph21(Decimal("4500000")) == Decimal("0")

    def test_single_first_bracket(self):
        """
        5,000,000/month, TK/0:
        biaya jabatan 250,000; annual net 57,000,000; taxable 3,000,000 at 5%.
        """
        result = PPh21Calculator().calculate(Decimal("5000000"))

        assert result.occupational_deduction == Decimal("250000")
        assert result.ptkp == Decimal("54000000")
        assert result.taxable_income_rounded == Decimal("3000000")
        assert result.annual_tax == Decimal("150000")
        assert result.monthly_tax == Decimal("12500")
        assert result.ptkp_status == "TK/0"

    def test_reference_employee(self):
        """9,090,909 taxable with 400,000 BPJS, TK/0."""
        result = PPh21Calculator().calculate(Decimal("9090909"), Decimal("400000"))

        assert result.taxable_income_rounded == Decimal("44836000")
        assert result.annual_tax == Decimal("2241800")
        assert result.monthly_tax == Decimal("186817")

    def test_taxable_income_floored_to_thousand(self):
        result = PPh21Calculator().calculate(Decimal("5000100"))

        assert result.taxable_income == Decimal("3001140.00")
        assert result.taxable_income_rounded == Decimal("3001000")

    def test_occupational_deduction_capped(self):
        result = PPh21Calculator().calculate(Decimal("50000000"))

        assert result.occupational_deduction == Decimal("500000")

    def test_bpjs_deduction_capped_at_five_percent(self):
        result = PPh21Calculator().calculate(Decimal("1000000"), Decimal("200000"))

        assert result.bpjs_deduction == Decimal("50000")

    def test_progressive_brackets(self):
        """
        30,000,000/month TK/0: annual net 354,000,000; taxable 300,000,000.
        60M at 5% + 190M at 15% + 50M at 25% = 3M + 28.5M + 12.5M.
        """
        result = PPh21Calculator().calculate(Decimal("30000000"))

        assert result.taxable_income_rounded == Decimal("300000000")
        assert result.annual_tax == Decimal("44000000")
        assert [line.tax for line in result.tax_breakdown] == [
            Decimal("3000000"), Decimal("28500000"), Decimal("12500000"), Decimal("0"),
        ]

    def test_monthly_times_twelve_close_to_annual(self):
        result = PPh21Calculator().calculate(Decimal("17345678"), Decimal("350000"), True, 2)

        assert abs(result.monthly_tax * 12 - result.annual_tax) <= Decimal("6")

    def test_married_with_dependents_reduces_tax(self):
        single = calculate_pph21(Decimal("15000000"))
        married = calculate_pph21(Decimal("15000000"), is_married=True, dependents=2)

        assert married < single

    def test_dependents_clamped_to_three(self):
        result = PPh21Calculator().calculate(Decimal("15000000"), is_married=True, dependents=5)

        assert result.ptkp == Decimal("72000000")
        assert result.ptkp_status == "K/3"

    def test_negative_dependents_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            PPh21Calculator().calculate(Decimal("15000000"), dependents=-1)

        assert exc_info.value.code == ErrorCode.INVALID_PTKP_INPUT

    def test_negative_income_rejected(self):
        with pytest.raises(InvalidAmountException):
            PPh21Calculator().calculate(Decimal("-100"))

    def test_ptkp_status_codes(self):
        assert get_ptkp_status(False, 0) == "TK/0"
        assert get_ptkp_status(True, 1) == "K/1"
        assert get_ptkp_status(True, 7) == "K/3"


class TestBonusTax:
    """Differential tax on bonuses and THR."""

    def test_bonus_pushes_into_next_bracket(self):
        """
        10,000,000/month TK/0: taxable 60,000,000, tax 3,000,000.
        With a 10,000,000 bonus: taxable 70,000,000, tax 4,500,000.
        """
        result = PPh21Calculator().calculate_bonus(Decimal("10000000"), Decimal("10000000"))

        assert result.regular_annual_tax == Decimal("3000000")
        assert result.annual_tax_with_bonus == Decimal("4500000")
        assert result.bonus_tax == Decimal("1500000")
        assert result.bonus_net_amount == Decimal("8500000")
        assert result.effective_tax_rate == Decimal("15")

    def test_bonus_tax_within_bounds(self):
        calculator = PPh21Calculator()
        for regular, bonus in [
            (Decimal("4000000"), Decimal("2000000")),
            (Decimal("25000000"), Decimal("75000000")),
            (Decimal("0"), Decimal("1000")),
        ]:
            result = calculator.calculate_bonus(regular, bonus)
            assert Decimal("0") <= result.bonus_tax <= bonus

    def test_zero_bonus(self):
        result = PPh21Calculator().calculate_bonus(Decimal("10000000"), Decimal("0"))

        assert result.bonus_tax == Decimal("0")
        assert result.effective_tax_rate == Decimal("0")

    def test_negative_bonus_rejected(self):
        with pytest.raises(InvalidAmountException):
            PPh21Calculator().calculate_bonus(Decimal("10000000"), Decimal("-1"))


class TestSeveranceTax:
    """One-time severance brackets: 0% / 5% / 15% / 25%."""

    def test_first_50m_exempt(self):
        assert calculate_severance_tax(Decimal("40000000")) == Decimal("0")

    def test_multiple_brackets(self):
        """50M at 0% + 50M at 5% + 50M at 15%."""
        result = PPh21Calculator().calculate_severance(Decimal("150000000"))

        assert result.total_tax == Decimal("10000000")
        assert result.net_amount == Decimal("140000000")
        assert len(result.tax_breakdown) == 4

    def test_top_bracket(self):
        """600M: 0 + 2.5M + 60M + 25M."""
        assert calculate_severance_tax(Decimal("600000000")) == Decimal("87500000")

    def test_negative_severance_rejected(self):
        with pytest.raises(InvalidAmountException):
            calculate_severance_tax(Decimal("-5"))

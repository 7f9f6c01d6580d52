"""Tests for the what-if analysis helpers."""

from datetime import date
from decimal import Decimal

import pytest

from loan_schedule.analysis import (
    additional_payment_impact,
    affordable_loan,
    compare_schedules,
    refinance_comparison,
)
from loan_schedule.errors import ValidationError
from loan_schedule.execution import compute_schedule


class TestAdditionalPaymentImpact:
    def test_extra_payment_saves_time_and_interest(self, mortgage):
        impact = additional_payment_impact(mortgage, Decimal("200"))
        assert impact.payments_saved > 0
        assert impact.interest_saved > 0
        assert impact.time_saved_years * 12 + impact.time_saved_months == impact.payments_saved
        assert 0 <= impact.time_saved_months < 12
        assert impact.new_term == 360 - impact.payments_saved
        assert impact.new_payment == impact.original_payment + Decimal("200")
        assert impact.new_payoff_date < compute_schedule(mortgage).payoff_date

    def test_defaults_to_loans_own_additional_payment(self, five_year_loan):
        params = five_year_loan.replace(additional_payment=Decimal("100"))
        assert additional_payment_impact(params) == additional_payment_impact(five_year_loan, 100)

    def test_weekly_payments_convert_to_months(self, mortgage):
        impact = additional_payment_impact(mortgage.replace(payment_frequency="weekly"), Decimal("50"))
        months = impact.time_saved_years * 12 + impact.time_saved_months
        assert months == round(impact.payments_saved * 12 / 52)

    def test_no_extra_payment(self, five_year_loan):
        impact = additional_payment_impact(five_year_loan, 0)
        assert impact.payments_saved == 0
        assert impact.interest_saved == 0

    def test_negative_extra_payment(self, five_year_loan):
        with pytest.raises(ValidationError):
            additional_payment_impact(five_year_loan, -10)


class TestAffordableLoan:
    def test_inverse_of_payment_formula(self):
        result = affordable_loan(Decimal("858.91"), Decimal("5"), 360, start_date=date(2024, 1, 1))
        assert abs(result.affordable_principal - Decimal("160000")) < Decimal("1")
        assert abs(result.regular_payment - Decimal("858.91")) < Decimal("0.0001")

    def test_zero_rate(self):
        result = affordable_loan(500, 0, 24)
        assert result.affordable_principal == Decimal("12000")

    def test_down_payment_added_to_price(self):
        result = affordable_loan(1000, 6, 120, down_payment=20000)
        assert result.total_purchase_price == result.affordable_principal + 20000
        assert abs(result.loan.loan_amount - result.affordable_principal) < Decimal("1e-15")
        assert result.total_interest > 0

    @pytest.mark.parametrize("payment", [0, -100])
    def test_payment_must_be_positive(self, payment):
        with pytest.raises(ValidationError, match="greater than zero"):
            affordable_loan(payment)


class TestRefinanceComparison:
    def test_lower_rate_is_worthwhile(self, mortgage):
        result = refinance_comparison(mortgage, Decimal("3.5"), closing_costs=Decimal("3000"))
        assert result.new_payment < result.current_payment
        assert result.payment_savings > 0
        assert result.break_even_months == int(
            (Decimal("3000") / result.payment_savings).to_integral_value(rounding="ROUND_CEILING")
        )
        assert result.is_worthwhile
        assert result.new_principal == mortgage.loan_amount

    def test_higher_rate_never_breaks_even(self, mortgage):
        result = refinance_comparison(mortgage, Decimal("7"), closing_costs=1000)
        assert result.payment_savings < 0
        assert result.break_even_months is None
        assert not result.is_worthwhile

    def test_shorter_term(self, mortgage):
        result = refinance_comparison(mortgage, Decimal("4"), new_term=180)
        assert result.new_term == 180
        assert result.new_total_payments == 180
        assert result.new_total_interest < result.current_remaining_interest

    def test_negative_closing_costs(self, mortgage):
        with pytest.raises(ValidationError):
            refinance_comparison(mortgage, 4, closing_costs=-1)


class TestCompareSchedules:
    def test_differences_against_first(self, mortgage):
        shorter = mortgage.replace(term_months=180)
        rows = compare_schedules(
            [
                ("30 years", mortgage, compute_schedule(mortgage)),
                ("15 years", shorter, compute_schedule(shorter)),
            ]
        )
        assert [row["label"] for row in rows] == ["30 years", "15 years"]
        assert all(value == 0 for value in rows[0]["difference"].values())
        assert rows[1]["difference"]["payments_made"] == -180
        assert rows[1]["difference"]["total_interest"] < 0
        assert rows[1]["difference"]["regular_payment"] > 0

    def test_requires_a_scenario(self):
        with pytest.raises(ValidationError):
            compare_schedules([])

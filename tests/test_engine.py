"""Tests for the schedule generator and its preconditions."""

from datetime import date
from decimal import Decimal

import pytest

from loan_schedule.data_models import Checkpoint, GenerationOptions, LoanParameters
from loan_schedule.engine import estimate_percent, iterate_schedule, run_to_completion, validate_parameters
from loan_schedule.errors import (
    AmountOutOfRangeError,
    MaxPaymentsExceededError,
    PaymentTooLowForInterestError,
    RateOutOfRangeError,
    TermOutOfRangeError,
)

CENT = Decimal("0.01")
TINY = Decimal("1e-15")


def generate(params, options=None):
    return run_to_completion(iterate_schedule(params, options))


class TestValidation:
    def _loan(self, **overrides):
        values = dict(principal=100000, interest_rate=5, term_months=120, start_date=date(2024, 1, 1))
        values.update(overrides)
        return LoanParameters(**values)

    def test_valid_loan_passes(self):
        validate_parameters(self._loan())

    def test_nothing_financed(self):
        with pytest.raises(AmountOutOfRangeError):
            validate_parameters(self._loan(down_payment=100000))

    def test_amount_too_large(self):
        with pytest.raises(AmountOutOfRangeError, match="too large"):
            validate_parameters(self._loan(principal=Decimal("100000001")))

    @pytest.mark.parametrize("rate", [-1, 51])
    def test_rate_out_of_range(self, rate):
        with pytest.raises(RateOutOfRangeError):
            validate_parameters(self._loan(interest_rate=rate))

    @pytest.mark.parametrize("term", [0, 601])
    def test_term_out_of_range(self, term):
        with pytest.raises(TermOutOfRangeError):
            validate_parameters(self._loan(term_months=term))

    def test_checks_run_in_order(self):
        # Both amount and rate are invalid; amount is reported first
        with pytest.raises(AmountOutOfRangeError):
            validate_parameters(self._loan(principal=0, interest_rate=80))

    def test_payment_too_low_for_interest(self):
        """Scenario D: a quoted payment below the first period's interest."""
        params = self._loan(payment_amount=Decimal("400"))  # interest is ~416.67
        steps = iterate_schedule(params)
        with pytest.raises(PaymentTooLowForInterestError) as exc_info:
            next(steps)
        assert exc_info.value.kind == "PaymentTooLowForInterest"


class TestScenarios:
    def test_standard_mortgage(self, mortgage):
        """Scenario A."""
        schedule = generate(mortgage)
        assert schedule.number_of_payments > 0
        assert schedule.payments[-1].balance == 0
        assert schedule.total_interest > 0
        assert schedule.number_of_payments == 360
        assert schedule.loan_id == mortgage.loan_id

    def test_zero_rate(self, zero_rate_loan):
        """Scenario B."""
        schedule = generate(zero_rate_loan)
        assert schedule.number_of_payments == 12
        for payment in schedule.payments:
            assert payment.interest == 0
            assert abs(payment.amount - Decimal("8333.33")) < CENT
        assert schedule.payments[-1].balance == 0

    def test_additional_payment_shortens_loan(self, five_year_loan):
        """Scenario C."""
        baseline = generate(five_year_loan)
        enhanced = generate(five_year_loan.replace(additional_payment=Decimal("100")))
        assert enhanced.number_of_payments < baseline.number_of_payments
        assert enhanced.total_interest < baseline.total_interest

    def test_additional_payments_can_be_excluded(self, five_year_loan):
        params = five_year_loan.replace(additional_payment=Decimal("100"))
        without = generate(params, GenerationOptions(include_additional_payments=False))
        assert without.payments == generate(five_year_loan).payments


class TestInvariants:
    @pytest.mark.parametrize("frequency", ["monthly", "bi-weekly", "weekly"])
    def test_conservation(self, mortgage, frequency):
        params = mortgage.replace(payment_frequency=frequency, additional_payment=Decimal("75"))
        schedule = generate(params)
        assert abs(schedule.total_principal - params.loan_amount) <= CENT
        assert abs(schedule.total_payment - schedule.total_principal - schedule.total_interest) < TINY
        for payment in schedule.payments:
            assert abs(payment.amount - payment.principal - payment.interest) < TINY

    def test_balance_never_increases(self, mortgage):
        schedule = generate(mortgage.replace(additional_payment=Decimal("250")))
        previous = mortgage.loan_amount
        for payment in schedule.payments:
            assert payment.balance <= previous
            assert payment.balance >= 0
            assert abs(previous - payment.principal - payment.balance) < TINY
            previous = payment.balance
        assert previous == 0

    def test_numbers_are_consecutive(self, five_year_loan):
        schedule = generate(five_year_loan)
        assert [p.number for p in schedule.payments] == list(range(1, 61))

    def test_params_not_mutated(self, mortgage):
        before = mortgage.replace()
        generate(mortgage)
        assert mortgage == before

    def test_generation_is_deterministic(self, mortgage):
        assert generate(mortgage).payments == generate(mortgage).payments


class TestDates:
    def test_monthly_dates_do_not_drift(self):
        params = LoanParameters(principal=5000, interest_rate=5, term_months=4, start_date=date(2024, 1, 31))
        dates = [p.date for p in generate(params).payments]
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_bi_weekly_dates(self):
        params = LoanParameters(
            principal=5000, interest_rate=5, term_months=2, start_date=date(2024, 1, 1), payment_frequency="bi-weekly"
        )
        schedule = generate(params)
        assert schedule.number_of_payments == 5
        assert schedule.payments[1].date == date(2024, 1, 15)
        assert schedule.payments[4].date == date(2024, 2, 26)

    def test_weekly_dates(self):
        params = LoanParameters(
            principal=5000, interest_rate=5, term_months=1, start_date=date(2024, 1, 1), payment_frequency="weekly"
        )
        schedule = generate(params)
        assert [p.date for p in schedule.payments][:2] == [date(2024, 1, 1), date(2024, 1, 8)]


class TestCheckpoints:
    def test_checkpoint_cadence(self, five_year_loan):
        steps = iterate_schedule(five_year_loan, GenerationOptions(batch_size=25))
        checkpoints = []
        while True:
            try:
                checkpoints.append(next(steps))
            except StopIteration as stop:
                schedule = stop.value
                break
        assert [c.processed for c in checkpoints] == [25, 50]
        assert all(isinstance(c, Checkpoint) for c in checkpoints)
        assert checkpoints[0].percent < checkpoints[1].percent <= 95
        assert schedule.number_of_payments == 60

    def test_estimate_percent_is_capped(self):
        assert estimate_percent(50, 100) == 50
        assert estimate_percent(200, 100) == 95
        assert estimate_percent(1, 0) == 95


class TestLimits:
    def test_max_payments_exceeded(self, mortgage):
        with pytest.raises(MaxPaymentsExceededError):
            generate(mortgage, GenerationOptions(max_payments=100))

    def test_ceiling_applies_to_explicit_limit(self, mortgage):
        options = GenerationOptions(max_payments=500, max_payments_ceiling=200)
        with pytest.raises(MaxPaymentsExceededError, match="200"):
            generate(mortgage, options)

    def test_residual_is_folded_into_final_payment(self):
        # A quoted payment that leaves a sub-cent balance after the 2nd payment
        params = LoanParameters(
            principal=Decimal("1000.005"),
            interest_rate=0,
            term_months=2,
            start_date=date(2024, 1, 1),
            payment_amount=Decimal("500"),
        )
        schedule = generate(params)
        assert schedule.number_of_payments == 2
        last = schedule.payments[-1]
        assert last.principal == Decimal("500.005")
        assert last.amount == last.principal
        assert last.balance == 0

    def test_wider_tolerance_snaps_earlier(self):
        params = LoanParameters(
            principal=Decimal("1000.40"),
            interest_rate=0,
            term_months=2,
            start_date=date(2024, 1, 1),
            payment_amount=Decimal("500"),
        )
        assert generate(params).number_of_payments == 3
        assert generate(params, GenerationOptions(balance_tolerance=Decimal("0.5"))).number_of_payments == 2

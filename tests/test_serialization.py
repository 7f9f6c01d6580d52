"""Tests for the persisted and message forms of engine objects."""

import json
from datetime import date
from decimal import Decimal

import pytest

from loan_schedule.data_models import GenerationOptions
from loan_schedule.errors import InvalidEnumError
from loan_schedule.execution import compute_schedule
from loan_schedule.inflation import adjust_for_inflation
from loan_schedule.serialization import (
    inflation_from_dict,
    inflation_to_dict,
    options_from_dict,
    options_to_dict,
    params_from_dict,
    params_to_dict,
    schedule_from_dict,
    schedule_to_dict,
    summary_to_dict,
)


class TestParams:
    def test_survives_json(self, mortgage):
        quoted = mortgage.replace(payment_amount=Decimal("900.50"), payment_frequency="bi-weekly")
        restored = params_from_dict(json.loads(json.dumps(params_to_dict(quoted))))
        assert restored == quoted
        assert restored.loan_id == quoted.loan_id

    def test_no_clamping(self):
        data = {"principal": "999999999", "interestRate": "80", "termMonths": 900, "startDate": "2024-01-01"}
        params = params_from_dict(data)
        assert params.principal == Decimal("999999999")
        assert params.interest_rate == Decimal("80")

    def test_unknown_frequency(self):
        data = {
            "principal": "1000",
            "interestRate": "5",
            "termMonths": 12,
            "startDate": "2024-01-01",
            "paymentFrequency": "daily",
        }
        with pytest.raises(InvalidEnumError):
            params_from_dict(data)

    def test_missing_field(self):
        with pytest.raises(KeyError):
            params_from_dict({"principal": "1000"})


class TestOptions:
    def test_defaults(self):
        assert options_from_dict(None) == GenerationOptions()

    def test_survives_json(self):
        options = GenerationOptions(batch_size=7, max_payments=99, timeout=1.5, balance_tolerance=Decimal("0.05"))
        assert options_from_dict(json.loads(json.dumps(options_to_dict(options)))) == options


class TestSchedule:
    def test_persisted_form(self, five_year_loan):
        data = schedule_to_dict(compute_schedule(five_year_loan))
        assert data["loanId"] == five_year_loan.loan_id
        assert data["startDate"] == "2024-03-01"
        first = data["payments"][0]
        assert set(first) == {"number", "date", "amount", "principal", "interest", "balance"}
        assert first["date"] == "2024-03-01"
        assert isinstance(first["amount"], str)

    def test_decimals_are_exact(self, mortgage):
        schedule = compute_schedule(mortgage)
        restored = schedule_from_dict(json.loads(json.dumps(schedule_to_dict(schedule))))
        assert restored == schedule

    def test_missing_payments_are_regenerated(self, five_year_loan):
        restored = schedule_from_dict({"loanId": five_year_loan.loan_id}, five_year_loan)
        assert restored.payments == compute_schedule(five_year_loan).payments

    @pytest.mark.parametrize(
        "payments",
        [
            "not a list",
            [{"number": 1, "date": "2024-03-01"}],
            [{"number": 1, "date": "garbage", "amount": "1", "principal": "1", "interest": "0", "balance": "0"}],
        ],
    )
    def test_malformed_payments_are_regenerated(self, five_year_loan, payments):
        restored = schedule_from_dict({"payments": payments}, five_year_loan)
        assert restored.number_of_payments == 60

    def test_no_loan_to_regenerate_from(self):
        with pytest.raises(ValueError):
            schedule_from_dict({"payments": None})
        with pytest.raises(ValueError):
            schedule_from_dict(None)

    def test_start_date_falls_back_to_first_payment(self, five_year_loan):
        data = schedule_to_dict(compute_schedule(five_year_loan))
        del data["startDate"]
        assert schedule_from_dict(data).start_date == date(2024, 3, 1)


class TestInflation:
    def test_survives_json(self, five_year_loan):
        adjusted = adjust_for_inflation(compute_schedule(five_year_loan), Decimal("3"))
        data = json.loads(json.dumps(inflation_to_dict(adjusted)))
        assert data["summary"]["savingsFromInflation"] == str(adjusted.savings_from_inflation)
        assert inflation_from_dict(data) == adjusted


class TestSummary:
    def test_fields(self, mortgage):
        summary = summary_to_dict(mortgage, compute_schedule(mortgage))
        assert summary["loan_amount"] == 160000.0
        assert summary["payments_made"] == summary["scheduled_payments"] == 360
        assert summary["payoff_date"] == "2053-12-15"
        assert summary["payment_frequency"] == "monthly"
        json.dumps(summary)

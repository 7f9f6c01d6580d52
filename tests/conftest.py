"""Shared fixtures for the schedule engine test suite."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from loan_schedule.config import reset_settings
from loan_schedule.data_models import GenerationOptions, LoanParameters


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Run every test against default settings, independent of the host environment."""
    for name in (
        "LOAN_SCHEDULE_BATCH_SIZE",
        "LOAN_SCHEDULE_MAX_PAYMENTS_MULTIPLIER",
        "LOAN_SCHEDULE_MAX_PAYMENTS_CEILING",
        "LOAN_SCHEDULE_BALANCE_TOLERANCE",
        "LOAN_SCHEDULE_ASYNC_TIMEOUT",
        "LOAN_SCHEDULE_WORKER_TIMEOUT",
        "LOAN_SCHEDULE_INLINE_THRESHOLD",
        "LOAN_SCHEDULE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
    # The CLI installs its own handler; hand records back to pytest for the next test
    logger = logging.getLogger("loan_schedule")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def mortgage():
    """Scenario A: 200k purchase, 40k down, 5% over 30 years."""
    return LoanParameters(
        principal=Decimal("200000"),
        down_payment=Decimal("40000"),
        interest_rate=Decimal("5"),
        term_months=360,
        start_date=date(2024, 1, 15),
        name="Mortgage",
    )


@pytest.fixture
def zero_rate_loan():
    """Scenario B: 100k at 0% over 12 months."""
    return LoanParameters(
        principal=Decimal("100000"),
        interest_rate=Decimal("0"),
        term_months=12,
        start_date=date(2024, 1, 1),
        loan_type="personal",
    )


@pytest.fixture
def five_year_loan():
    """Scenario C baseline: 100k at 6% over 60 months."""
    return LoanParameters(
        principal=Decimal("100000"),
        interest_rate=Decimal("6"),
        term_months=60,
        start_date=date(2024, 3, 1),
        loan_type="auto",
    )


@pytest.fixture
def small_batches():
    return GenerationOptions(batch_size=10)

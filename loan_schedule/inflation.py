"""Inflation adjustment of completed schedules.

Payments further in the future are worth less in today's money. The
transform discounts each payment by ``(1 + monthly_inflation) ** -index``,
so the first payment keeps its nominal value. It returns new objects and
never touches the source schedule.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List

from .data_models import ZERO, InflationAdjustedPayment, InflationAdjustedSchedule, Schedule
from .errors import RateOutOfRangeError
from .utils import Number, to_decimal

ONE = Decimal(1)


def _inflation_rate(annual_rate: Number) -> Decimal:
    try:
        rate = to_decimal(annual_rate)
    except ValueError:
        raise RateOutOfRangeError(f"Invalid inflation rate: {annual_rate!r}") from None
    if rate < 0:
        raise RateOutOfRangeError("Inflation rate cannot be negative.")
    return rate


def monthly_inflation_rate(annual_rate: Number) -> Decimal:
    """Convert an annual inflation rate in percent to the equivalent monthly rate."""
    annual = _inflation_rate(annual_rate)
    if annual == 0:
        return ZERO
    return (ONE + annual / Decimal(100)) ** (ONE / Decimal(12)) - ONE


def adjust_for_inflation(schedule: Schedule, annual_rate: Number) -> InflationAdjustedSchedule:
    """Return present-value figures for every payment of ``schedule``.

    Parameters
    ----------
    schedule: Schedule
        A completed schedule.
    annual_rate: Number
        Annual inflation in percent. Zero leaves every figure unchanged;
        negative or non-numeric rates raise ``RateOutOfRangeError``.
    """
    rate = _inflation_rate(annual_rate)
    monthly = monthly_inflation_rate(rate)
    base = ONE + monthly

    adjusted: List[InflationAdjustedPayment] = []
    for index, payment in enumerate(schedule.payments):
        factor = base ** -index if index else ONE
        adjusted.append(
            InflationAdjustedPayment(
                number=payment.number,
                date=payment.date,
                amount=payment.amount,
                principal=payment.principal,
                interest=payment.interest,
                balance=payment.balance,
                inflation_factor=factor,
                adjusted_amount=payment.amount * factor,
                adjusted_principal=payment.principal * factor,
                adjusted_interest=payment.interest * factor,
            )
        )

    return InflationAdjustedSchedule(
        loan_id=schedule.loan_id,
        inflation_rate=rate,
        monthly_inflation_rate=monthly,
        payments=tuple(adjusted),
        total_original_payment=sum((p.amount for p in adjusted), ZERO),
        total_adjusted_payment=sum((p.adjusted_amount for p in adjusted), ZERO),
        total_original_interest=sum((p.interest for p in adjusted), ZERO),
        total_adjusted_interest=sum((p.adjusted_interest for p in adjusted), ZERO),
    )

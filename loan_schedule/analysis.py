"""What-if analysis built on top of the schedule generator.

These helpers compare schedules rather than produce them: the effect of an
extra payment per period, how large a loan a payment can carry, whether
refinancing pays off, and side-by-side scenario metrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_CEILING, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .data_models import ZERO, LoanParameters, PaymentFrequency, Schedule
from .errors import ValidationError
from .execution import compute_schedule
from .serialization import summary_to_dict
from .utils import Number, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdditionalPaymentImpact:
    payments_saved: int
    interest_saved: Decimal
    time_saved_years: int
    time_saved_months: int
    new_payoff_date: date
    original_term: int
    new_term: int
    original_payment: Decimal
    new_payment: Decimal
    original_total_interest: Decimal
    new_total_interest: Decimal


@dataclass(frozen=True)
class AffordableLoan:
    affordable_principal: Decimal
    total_purchase_price: Decimal
    down_payment: Decimal
    regular_payment: Decimal
    total_interest: Decimal
    loan: LoanParameters


@dataclass(frozen=True)
class RefinanceComparison:
    current_payment: Decimal
    current_balance: Decimal
    current_remaining_payments: int
    current_remaining_interest: Decimal
    current_total_cost: Decimal
    new_payment: Decimal
    new_principal: Decimal
    new_term: int
    new_interest_rate: Decimal
    new_total_payments: int
    new_total_interest: Decimal
    new_total_cost: Decimal
    closing_costs: Decimal
    payment_savings: Decimal
    lifetime_savings: Decimal
    break_even_months: Optional[int]

    @property
    def is_worthwhile(self) -> bool:
        return self.lifetime_savings > 0


def _payments_to_months(payments: int, frequency: PaymentFrequency) -> int:
    if frequency is PaymentFrequency.MONTHLY:
        return payments
    return int((Decimal(payments) * 12 / frequency.payments_per_year).to_integral_value())


def additional_payment_impact(
    params: LoanParameters, additional_payment: Optional[Number] = None
) -> AdditionalPaymentImpact:
    """Compare the loan without extra payments against one with them.

    ``additional_payment`` defaults to the loan's own additional payment.
    Time saved is converted from payments to months using the payment
    frequency and split into whole years and remaining months.
    """
    extra = params.additional_payment if additional_payment is None else to_decimal(additional_payment)
    if extra < 0:
        raise ValidationError("Additional payment cannot be negative.")

    baseline_loan = params.replace(additional_payment=ZERO)
    enhanced_loan = params.replace(additional_payment=extra)
    baseline = compute_schedule(baseline_loan)
    enhanced = compute_schedule(enhanced_loan)

    payments_saved = baseline.number_of_payments - enhanced.number_of_payments
    months_saved = _payments_to_months(payments_saved, params.payment_frequency)
    years, months = divmod(months_saved, 12)
    return AdditionalPaymentImpact(
        payments_saved=payments_saved,
        interest_saved=baseline.total_interest - enhanced.total_interest,
        time_saved_years=years,
        time_saved_months=months,
        new_payoff_date=enhanced.payoff_date,
        original_term=params.term_months,
        new_term=params.term_months - months_saved,
        original_payment=baseline_loan.regular_payment,
        new_payment=enhanced_loan.regular_payment + extra,
        original_total_interest=baseline.total_interest,
        new_total_interest=enhanced.total_interest,
    )


def affordable_loan(
    desired_payment: Number,
    interest_rate: Number = Decimal("4.5"),
    term_months: int = 360,
    frequency: Any = PaymentFrequency.MONTHLY,
    down_payment: Number = ZERO,
    start_date: Optional[date] = None,
) -> AffordableLoan:
    """Largest loan a regular payment of ``desired_payment`` can repay.

    Solves the annuity formula for the principal:

        P = payment * ((1 + r)^n - 1) / (r * (1 + r)^n)

    With a zero rate the principal is simply ``payment * n``. The down
    payment is added on top to give the purchase price.
    """
    payment = to_decimal(desired_payment)
    if payment <= 0:
        raise ValidationError("Desired payment must be greater than zero.")
    down = to_decimal(down_payment)
    if down < 0:
        raise ValidationError("Down payment cannot be negative.")

    probe = LoanParameters(
        principal=Decimal(1),
        interest_rate=interest_rate,
        term_months=term_months,
        start_date=start_date or date.today(),
        payment_frequency=frequency,
    )
    r = probe.periodic_rate
    n = probe.number_of_payments
    if n <= 0:
        raise ValidationError("Loan term must be between 1 and 600 months.")
    if r <= 0:
        principal = payment * n
    else:
        factor = (1 + r) ** n
        principal = payment * (factor - 1) / (r * factor)

    loan = probe.replace(principal=principal + down, down_payment=down, name="Affordable Loan")
    return AffordableLoan(
        affordable_principal=principal,
        total_purchase_price=principal + down,
        down_payment=down,
        regular_payment=loan.regular_payment,
        total_interest=loan.estimated_total_interest,
        loan=loan,
    )


def refinance_comparison(
    params: LoanParameters,
    new_rate: Number,
    new_term: Optional[int] = None,
    closing_costs: Number = ZERO,
    new_principal: Optional[Number] = None,
    payment_frequency: Any = None,
    additional_payment: Number = ZERO,
    start_date: Optional[date] = None,
) -> RefinanceComparison:
    """Compare keeping ``params`` against refinancing its balance.

    The new loan defaults to the current financed amount, the current term
    and frequency. ``break_even_months`` is the number of periods of payment
    savings needed to recover ``closing_costs``; it is ``None`` when the new
    payment is not lower.
    """
    costs = to_decimal(closing_costs)
    if costs < 0:
        raise ValidationError("Closing costs cannot be negative.")

    current = compute_schedule(params)
    balance = params.loan_amount
    principal = balance if new_principal is None else to_decimal(new_principal)

    new_loan = LoanParameters(
        principal=principal,
        interest_rate=new_rate,
        term_months=new_term or params.term_months,
        start_date=start_date or params.start_date,
        payment_frequency=payment_frequency or params.payment_frequency,
        additional_payment=additional_payment,
        loan_type=params.loan_type,
        name="Refinance Option",
    )
    refinanced = compute_schedule(new_loan)

    current_total = current.total_interest + balance
    new_total = refinanced.total_interest + principal + costs
    savings = params.regular_payment - new_loan.regular_payment
    break_even = None
    if savings > 0:
        break_even = int((costs / savings).to_integral_value(rounding=ROUND_CEILING))

    result = RefinanceComparison(
        current_payment=params.regular_payment,
        current_balance=balance,
        current_remaining_payments=current.number_of_payments,
        current_remaining_interest=current.total_interest,
        current_total_cost=current_total,
        new_payment=new_loan.regular_payment,
        new_principal=principal,
        new_term=new_loan.term_months,
        new_interest_rate=new_loan.interest_rate,
        new_total_payments=refinanced.number_of_payments,
        new_total_interest=refinanced.total_interest,
        new_total_cost=new_total,
        closing_costs=costs,
        payment_savings=savings,
        lifetime_savings=current_total - new_total,
        break_even_months=break_even,
    )
    logger.info(
        "Refinance from %s%% to %s%%: lifetime savings %s",
        params.interest_rate,
        new_loan.interest_rate,
        result.lifetime_savings,
        extra={"correlation_id": params.loan_id, "action": "refinance"},
    )
    return result


COMPARISON_KEYS = ("total_payment", "total_interest", "regular_payment", "payments_made")


def compare_schedules(scenarios: Sequence[Tuple[str, LoanParameters, Schedule]]) -> List[Dict[str, Any]]:
    """Summaries for each labelled scenario with differences to the first.

    Each row is the summary dict of the scenario plus ``label`` and a
    ``difference`` dict holding ``scenario - baseline`` for the comparison
    keys. The baseline's differences are all zero.
    """
    if not scenarios:
        raise ValidationError("At least one scenario is required for a comparison.")
    rows = []
    baseline: Optional[Dict[str, Any]] = None
    for label, params, schedule in scenarios:
        summary = summary_to_dict(params, schedule)
        if baseline is None:
            baseline = summary
        row = dict(summary, label=label)
        row["difference"] = {key: summary[key] - baseline[key] for key in COMPARISON_KEYS}
        rows.append(row)
    return rows

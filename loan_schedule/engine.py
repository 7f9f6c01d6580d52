"""Core calculation engine for the schedule generator.

This module implements the single amortization algorithm shared by every
execution mode. ``iterate_schedule`` is a generator: it performs the period
arithmetic and yields a ``Checkpoint`` every ``batch_size`` periods, returning
the frozen ``Schedule`` when the balance reaches zero. How checkpoints are
handled (ignored, awaited, relayed across a process boundary) is left to the
driver, so every mode produces the same payment sequence.
"""

from __future__ import annotations

import logging
from decimal import Decimal, getcontext
from typing import Generator, List, Optional

from .data_models import (
    MAX_INTEREST_RATE,
    MAX_TERM_MONTHS,
    ZERO,
    Checkpoint,
    GenerationOptions,
    LoanParameters,
    Payment,
    Schedule,
)
from .errors import (
    AmountOutOfRangeError,
    MaxPaymentsExceededError,
    PaymentTooLowForInterestError,
    RateOutOfRangeError,
    TermOutOfRangeError,
    ValidationError,
)
from .utils import advance_date

getcontext().prec = 28  # increase precision for financial calculations

logger = logging.getLogger(__name__)

MAX_LOAN_AMOUNT = Decimal("100000000")
MAX_PROGRESS_BEFORE_COMPLETION = 95.0


def _reject(error: ValidationError) -> ValidationError:
    logger.info("Rejected loan parameters: %s", error, extra={"action": error.kind})
    return error


def validate_parameters(params: LoanParameters) -> None:
    """Check the numeric preconditions the algorithm needs to terminate.

    Checks run in a fixed order and the first failure raises its own
    ``ValidationError`` subclass.
    """
    loan_amount = params.loan_amount
    if loan_amount <= 0:
        raise _reject(AmountOutOfRangeError("Loan amount must be greater than zero."))
    if loan_amount > MAX_LOAN_AMOUNT:
        raise _reject(
            AmountOutOfRangeError("Loan amount is too large. Please enter a reasonable loan amount.")
        )

    if params.interest_rate < 0 or params.interest_rate > MAX_INTEREST_RATE:
        raise _reject(RateOutOfRangeError("Interest rate must be between 0% and 50%."))

    if params.term_months <= 0 or params.term_months > MAX_TERM_MONTHS:
        raise _reject(TermOutOfRangeError("Loan term must be between 1 and 600 months."))

    if params.regular_payment <= loan_amount * params.periodic_rate:
        raise _reject(
            PaymentTooLowForInterestError(
                "Payment is too low to cover interest. Please increase the payment "
                "amount, choose a longer term or reduce the loan amount."
            )
        )


def estimate_percent(processed: int, estimated_total: int) -> float:
    """Estimated completion in percent, capped below 100 until the run ends."""
    if estimated_total <= 0:
        return MAX_PROGRESS_BEFORE_COMPLETION
    return min(MAX_PROGRESS_BEFORE_COMPLETION, processed / estimated_total * 100)


def iterate_schedule(
    params: LoanParameters, options: Optional[GenerationOptions] = None
) -> Generator[Checkpoint, None, Schedule]:
    """Generate the amortization schedule for ``params``.

    Parameters
    ----------
    params: LoanParameters
        The loan. It is never mutated.
    options: GenerationOptions
        Batch size, payment limit, tolerance and whether to apply the loan's
        additional payment.

    Yields
    ------
    Checkpoint
        After every ``batch_size`` periods. Drivers may suspend, report
        progress or abort here; the balance and payment number are always
        consistent at a checkpoint.

    Returns
    -------
    Schedule
        The frozen schedule, as the generator's return value.

    Raises
    ------
    ValidationError
        When a precondition fails, before any payment is generated.
    MaxPaymentsExceededError
        When the balance is still positive after the payment limit.
    """
    options = options or GenerationOptions()
    validate_parameters(params)

    loan_amount = params.loan_amount
    periodic_rate = params.periodic_rate
    regular_payment = params.regular_payment
    additional_payment = params.additional_payment if options.include_additional_payments else ZERO
    scheduled_payment = regular_payment + additional_payment
    max_payments = options.effective_max_payments(params.number_of_payments)
    estimated_total = min(params.number_of_payments, max_payments)
    interval_days = params.payment_frequency.interval_days
    tolerance = options.balance_tolerance

    payments: List[Payment] = []
    balance = loan_amount
    number = 1

    while balance > 0 and number <= max_payments:
        interest = balance * periodic_rate

        # Cap the final payment so the balance cannot go negative
        if scheduled_payment >= balance + interest:
            principal = balance
            amount = balance + interest
        else:
            amount = scheduled_payment
            principal = amount - interest

        remaining = max(ZERO, balance - principal)
        if 0 < remaining < tolerance:
            # Pay off the sub-cent residual now instead of adding a tail of tiny payments
            principal += remaining
            amount += remaining
            remaining = ZERO

        payments.append(
            Payment(
                number=number,
                date=advance_date(params.start_date, number - 1, interval_days),
                amount=amount,
                principal=principal,
                interest=interest,
                balance=remaining,
            )
        )
        balance = remaining

        if number % options.batch_size == 0:
            percent = estimate_percent(number, estimated_total)
            logger.debug(
                "Checkpoint at payment %d (%.1f%%)", number, percent, extra={"correlation_id": params.loan_id}
            )
            yield Checkpoint(processed=number, percent=percent, message=f"Processing payment {number}...")

        number += 1

    if balance > 0:
        logger.warning(
            "Payment limit of %d reached with %s outstanding",
            max_payments,
            balance,
            extra={"correlation_id": params.loan_id, "action": MaxPaymentsExceededError.kind},
        )
        raise MaxPaymentsExceededError(
            f"Maximum payment limit of {max_payments} reached. Please check your loan parameters."
        )

    schedule = Schedule(loan_id=params.loan_id, start_date=params.start_date, payments=tuple(payments))
    logger.info(
        "Generated schedule with %d payments",
        schedule.number_of_payments,
        extra={"correlation_id": params.loan_id},
    )
    return schedule


def run_to_completion(steps: Generator[Checkpoint, None, Schedule]) -> Schedule:
    """Drain a schedule generator, ignoring its checkpoints."""
    while True:
        try:
            next(steps)
        except StopIteration as stop:
            return stop.value

"""Data models for the schedule engine.

This module defines the dataclasses used throughout the engine: the loan's
financial parameters, generation options, individual payments, completed
schedules and their inflation-adjusted counterparts. Loan parameters and
schedules are frozen so they can be shared between concurrent computations
without locking.
"""

from __future__ import annotations

import dataclasses
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
from uuid import uuid4

from .errors import InvalidEnumError, ValidationError
from .utils import advance_date, add_months, parse_date, to_decimal

ZERO = Decimal("0")


class PaymentFrequency(str, Enum):
    MONTHLY = "monthly"
    BI_WEEKLY = "bi-weekly"
    WEEKLY = "weekly"

    @property
    def payments_per_year(self) -> int:
        return _FREQUENCY_RULES[self.value][0]

    @property
    def interval_days(self) -> Optional[int]:
        """Length of one payment interval in days, ``None`` for calendar months."""
        return _FREQUENCY_RULES[self.value][1]

    @classmethod
    def parse(cls, value: Any) -> "PaymentFrequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(item.value for item in cls)
            raise InvalidEnumError(
                f"Invalid payment frequency: {value}. Valid frequencies are: {valid}"
            ) from None


_FREQUENCY_RULES = {
    "monthly": (12, None),
    "bi-weekly": (26, 14),
    "weekly": (52, 7),
}


LoanTypeDefaults = namedtuple(
    "LoanTypeDefaults", ["default_term", "default_rate", "min_amount", "max_amount", "description"]
)


class LoanType(str, Enum):
    MORTGAGE = "mortgage"
    AUTO = "auto"
    PERSONAL = "personal"
    STUDENT = "student"

    @property
    def defaults(self) -> LoanTypeDefaults:
        return LOAN_TYPE_DEFAULTS[self.value]

    @classmethod
    def parse(cls, value: Any) -> "LoanType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(item.value for item in cls)
            raise InvalidEnumError(f"Invalid loan type: {value}. Valid types are: {valid}") from None


LOAN_TYPE_DEFAULTS = {
    "mortgage": LoanTypeDefaults(360, Decimal("4.5"), Decimal("10000"), Decimal("10000000"), "Home Mortgage"),
    "auto": LoanTypeDefaults(60, Decimal("5.0"), Decimal("1000"), Decimal("200000"), "Auto Loan"),
    "personal": LoanTypeDefaults(36, Decimal("10.0"), Decimal("1000"), Decimal("50000"), "Personal Loan"),
    "student": LoanTypeDefaults(120, Decimal("5.5"), Decimal("1000"), Decimal("500000"), "Student Loan"),
}

MAX_INTEREST_RATE = Decimal("50")
MAX_INFLATION_RATE = Decimal("20")
MAX_TERM_MONTHS = 600


def _new_loan_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class LoanParameters:
    """Financial inputs of a loan.

    The constructor stores values as given (after type normalization) so the
    generator can reject out-of-range combinations with a typed error. Use
    :meth:`from_input` for untrusted form input, which clamps instead.

    Attributes
    ----------
    principal: Decimal
        Purchase amount before the down payment.
    interest_rate: Decimal
        Annual nominal interest rate in percent.
    term_months: int
        Loan term in months.
    payment_amount: Optional[Decimal]
        Fixed regular payment quoted by a lender. When ``None`` the standard
        amortization formula is used.
    """

    principal: Decimal
    interest_rate: Decimal
    term_months: int
    start_date: date
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY
    down_payment: Decimal = ZERO
    additional_payment: Decimal = ZERO
    inflation_rate: Decimal = ZERO
    loan_type: LoanType = LoanType.MORTGAGE
    name: str = "Unnamed Calculation"
    payment_amount: Optional[Decimal] = None
    loan_id: str = field(default_factory=_new_loan_id, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "principal", to_decimal(self.principal))
        object.__setattr__(self, "interest_rate", to_decimal(self.interest_rate))
        object.__setattr__(self, "down_payment", to_decimal(self.down_payment))
        object.__setattr__(self, "additional_payment", to_decimal(self.additional_payment))
        object.__setattr__(self, "inflation_rate", to_decimal(self.inflation_rate))
        if self.payment_amount is not None:
            object.__setattr__(self, "payment_amount", to_decimal(self.payment_amount))
        if isinstance(self.term_months, bool) or not isinstance(self.term_months, int):
            raise ValueError(f"term_months must be an integer, got {self.term_months!r}")
        object.__setattr__(self, "start_date", parse_date(self.start_date))
        object.__setattr__(self, "payment_frequency", PaymentFrequency.parse(self.payment_frequency))
        object.__setattr__(self, "loan_type", LoanType.parse(self.loan_type))

    # Derived values

    @property
    def loan_amount(self) -> Decimal:
        """Financed amount: principal minus down payment, never negative."""
        return max(ZERO, self.principal - self.down_payment)

    @property
    def payments_per_year(self) -> int:
        return self.payment_frequency.payments_per_year

    @property
    def periodic_rate(self) -> Decimal:
        return self.interest_rate / Decimal(100) / Decimal(self.payments_per_year)

    @property
    def number_of_payments(self) -> int:
        # ceil(term * payments_per_year / 12) in integer arithmetic
        return -(-self.term_months * self.payments_per_year // 12)

    @property
    def regular_payment(self) -> Decimal:
        """Return the regular (annuity) payment per period.

        The formula is:

            payment = P * (r * (1 + r)^n) / ((1 + r)^n - 1)

        When the periodic rate is zero the payment simplifies to ``P / n``.
        The payment is zero when nothing is financed.
        """
        if self.payment_amount is not None:
            return self.payment_amount
        principal = self.loan_amount
        n = self.number_of_payments
        if principal <= 0 or n <= 0:
            return ZERO
        r = self.periodic_rate
        if r <= 0:
            return principal / Decimal(n)
        factor = (1 + r) ** n
        return principal * (r * factor) / (factor - 1)

    @property
    def estimated_total_interest(self) -> Decimal:
        """Closed-form total interest, ignoring additional payments."""
        return self.regular_payment * self.number_of_payments - self.loan_amount

    @property
    def estimated_payoff_date(self) -> date:
        if self.payment_frequency.interval_days is None:
            return add_months(self.start_date, self.term_months)
        return advance_date(self.start_date, self.number_of_payments, self.payment_frequency.interval_days)

    def replace(self, **changes: Any) -> "LoanParameters":
        """Return a copy with ``changes`` applied, keeping the same ``loan_id``."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_input(cls, raw: Optional[Mapping[str, Any]] = None) -> "LoanParameters":
        """Build parameters from untrusted input such as a submitted form.

        Numeric fields that cannot be parsed fall back to documented defaults
        and values outside their range are clamped. Unknown payment
        frequencies or loan types raise ``InvalidEnumError``.
        """
        raw = raw or {}
        loan_type = LoanType.parse(raw.get("type") or LoanType.MORTGAGE)
        defaults = loan_type.defaults
        frequency = PaymentFrequency.parse(raw.get("paymentFrequency") or PaymentFrequency.MONTHLY)

        principal = _clamp(raw.get("principal"), defaults.min_amount, defaults.min_amount, defaults.max_amount)
        term = raw.get("termMonths", raw.get("term"))
        payment_amount = _clamp(raw.get("paymentAmount"), None, ZERO)

        start_date = date.today()
        if raw.get("startDate"):
            try:
                start_date = parse_date(raw["startDate"])
            except ValueError:
                pass

        kwargs = {}
        if raw.get("id") or raw.get("loanId"):
            kwargs["loan_id"] = str(raw.get("id") or raw.get("loanId"))
        return cls(
            principal=principal,
            interest_rate=_clamp(raw.get("interestRate"), defaults.default_rate, ZERO, MAX_INTEREST_RATE),
            term_months=int(_clamp(term, Decimal(defaults.default_term), Decimal(1), Decimal(MAX_TERM_MONTHS))),
            start_date=start_date,
            payment_frequency=frequency,
            down_payment=_clamp(raw.get("downPayment"), ZERO, ZERO, principal),
            additional_payment=_clamp(raw.get("additionalPayment"), ZERO, ZERO),
            inflation_rate=_clamp(raw.get("inflationRate"), ZERO, ZERO, MAX_INFLATION_RATE),
            loan_type=loan_type,
            name=str(raw.get("name") or "Unnamed Calculation"),
            payment_amount=payment_amount if payment_amount else None,
            **kwargs,
        )


def _clamp(
    value: Any,
    default: Optional[Decimal],
    minimum: Optional[Decimal] = None,
    maximum: Optional[Decimal] = None,
) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    try:
        number = to_decimal(value)
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return minimum
    if maximum is not None and number > maximum:
        return maximum
    return number


@dataclass(frozen=True)
class GenerationOptions:
    """Options controlling a single schedule generation.

    ``max_payments`` defaults to ``max_payments_multiplier`` times the loan's
    computed payment count and never exceeds ``max_payments_ceiling``.
    ``timeout`` is a wall-clock budget in seconds; ``None`` lets the
    execution adapter pick its own default.
    """

    include_additional_payments: bool = True
    batch_size: int = 50
    max_payments: Optional[int] = None
    timeout: Optional[float] = None
    balance_tolerance: Decimal = Decimal("0.01")
    max_payments_multiplier: int = 2
    max_payments_ceiling: int = 10000

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValidationError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_payments is not None and self.max_payments <= 0:
            raise ValidationError(f"max_payments must be positive, got {self.max_payments}")
        if self.timeout is not None and self.timeout < 0:
            raise ValidationError(f"timeout cannot be negative, got {self.timeout}")
        object.__setattr__(self, "balance_tolerance", to_decimal(self.balance_tolerance))

    def effective_max_payments(self, number_of_payments: int) -> int:
        limit = self.max_payments
        if limit is None:
            limit = number_of_payments * self.max_payments_multiplier
        return min(limit, self.max_payments_ceiling)

    def with_timeout(self, timeout: float) -> "GenerationOptions":
        return dataclasses.replace(self, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "GenerationOptions":
        values = dict(
            batch_size=settings.batch_size,
            balance_tolerance=settings.balance_tolerance,
            max_payments_multiplier=settings.max_payments_multiplier,
            max_payments_ceiling=settings.max_payments_ceiling,
        )
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class Payment:
    """One period of an amortization schedule.

    ``amount`` always equals ``principal + interest`` and ``balance`` is the
    remaining balance after this payment.
    """

    number: int
    date: date
    amount: Decimal
    principal: Decimal
    interest: Decimal
    balance: Decimal


@dataclass(frozen=True)
class Schedule:
    """A completed amortization schedule.

    Payments are in chronological order. A ``Schedule`` only exists once the
    generator has finished; partial results are never wrapped in one.
    """

    loan_id: str
    start_date: date
    payments: Tuple[Payment, ...]

    @property
    def number_of_payments(self) -> int:
        return len(self.payments)

    @property
    def total_interest(self) -> Decimal:
        return sum((p.interest for p in self.payments), ZERO)

    @property
    def total_payment(self) -> Decimal:
        return sum((p.amount for p in self.payments), ZERO)

    @property
    def total_principal(self) -> Decimal:
        return sum((p.principal for p in self.payments), ZERO)

    @property
    def payoff_date(self) -> date:
        if not self.payments:
            return self.start_date
        return self.payments[-1].date


@dataclass(frozen=True)
class Checkpoint:
    """Progress marker yielded by the generator every ``batch_size`` periods."""

    processed: int
    percent: float
    message: str


@dataclass(frozen=True)
class InflationAdjustedPayment(Payment):
    inflation_factor: Decimal
    adjusted_amount: Decimal
    adjusted_principal: Decimal
    adjusted_interest: Decimal


@dataclass(frozen=True)
class InflationAdjustedSchedule:
    loan_id: str
    inflation_rate: Decimal
    monthly_inflation_rate: Decimal
    payments: Tuple[InflationAdjustedPayment, ...]
    total_original_payment: Decimal
    total_adjusted_payment: Decimal
    total_original_interest: Decimal
    total_adjusted_interest: Decimal

    @property
    def savings_from_inflation(self) -> Decimal:
        return self.total_original_payment - self.total_adjusted_payment

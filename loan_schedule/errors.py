"""Error taxonomy for the schedule engine.

Every failure the engine can report carries a ``kind`` string. The kind is
what crosses the worker boundary, so callers on either side can branch on
the same taxonomy instead of parsing messages.
"""

from __future__ import annotations

from typing import Dict, Type


class LoanScheduleError(Exception):
    """Base class for all engine failures."""

    kind = "InternalError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(LoanScheduleError, ValueError):
    """Loan parameters failed a numeric precondition."""

    kind = "ValidationError"


class AmountOutOfRangeError(ValidationError):
    """Loan amount must be greater than zero and at most 100,000,000."""

    kind = "AmountOutOfRange"


class RateOutOfRangeError(ValidationError):
    """Interest rate must be between 0% and 50%."""

    kind = "RateOutOfRange"


class TermOutOfRangeError(ValidationError):
    """Loan term must be between 1 and 600 months."""

    kind = "TermOutOfRange"


class PaymentTooLowForInterestError(ValidationError):
    """Regular payment is too low to cover the interest of the first period."""

    kind = "PaymentTooLowForInterest"


class InvalidEnumError(LoanScheduleError, ValueError):
    """A payment frequency or loan type is not one of the recognized values."""

    kind = "InvalidEnum"


class MaxPaymentsExceededError(LoanScheduleError):
    """Maximum payment limit reached. Please check your loan parameters."""

    kind = "MaxPaymentsExceeded"


class CalculationTimeout(LoanScheduleError):
    """Calculation exceeded its wall-clock budget."""

    kind = "Timeout"


class CalculationCancelled(LoanScheduleError):
    """Calculation was cancelled by the caller."""

    kind = "Cancelled"


class WorkerProtocolError(LoanScheduleError):
    """A malformed or out-of-order message crossed the worker boundary."""

    kind = "WorkerProtocolError"


_ERRORS_BY_KIND: Dict[str, Type[LoanScheduleError]] = {
    cls.kind: cls
    for cls in (
        LoanScheduleError,
        ValidationError,
        AmountOutOfRangeError,
        RateOutOfRangeError,
        TermOutOfRangeError,
        PaymentTooLowForInterestError,
        InvalidEnumError,
        MaxPaymentsExceededError,
        CalculationTimeout,
        CalculationCancelled,
        WorkerProtocolError,
    )
}


def error_from_kind(kind: str, message: str) -> LoanScheduleError:
    """Rebuild an engine error from its serialized ``kind`` and message.

    Unknown kinds indicate a peer speaking a different protocol and are
    reported as ``WorkerProtocolError``.
    """
    cls = _ERRORS_BY_KIND.get(kind)
    if cls is None:
        return WorkerProtocolError(f"Unknown error kind {kind!r}: {message}")
    return cls(message)

"""Execution adapters driving the schedule generator.

``compute_schedule`` runs the generator to completion on the calling thread.
``compute_schedule_async`` runs the same generator as a cooperative task: at
every checkpoint it yields to the event loop, reports progress and checks
its timeout and cancellation token. Both return identical schedules for the
same inputs because neither touches the period arithmetic.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Protocol, Union, runtime_checkable

from .config import EngineSettings, get_settings
from .data_models import GenerationOptions, LoanParameters, Schedule
from .engine import iterate_schedule, run_to_completion
from .errors import CalculationCancelled, CalculationTimeout

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressReporter(Protocol):
    def report(self, percent: float, message: str) -> None:
        """Receive a progress update. Called only at checkpoints."""
        ...


class CallbackProgress:
    """Adapt a plain ``(percent, message)`` callable to ``ProgressReporter``."""

    def __init__(self, callback: Callable[[float, str], None]) -> None:
        self._callback = callback

    def report(self, percent: float, message: str) -> None:
        self._callback(percent, message)


class NullProgress:
    def report(self, percent: float, message: str) -> None:
        pass


class MonotonicProgress:
    """Forward only reports whose percent is strictly greater than the last one."""

    def __init__(self, reporter: ProgressReporter) -> None:
        self._reporter = reporter
        self.last_percent: Optional[float] = None

    def report(self, percent: float, message: str) -> bool:
        if self.last_percent is not None and percent <= self.last_percent:
            return False
        self.last_percent = percent
        self._reporter.report(percent, message)
        return True


ProgressLike = Union[ProgressReporter, Callable[[float, str], None], None]


def as_reporter(progress: ProgressLike) -> ProgressReporter:
    if progress is None:
        return NullProgress()
    if isinstance(progress, ProgressReporter):
        return progress
    if callable(progress):
        return CallbackProgress(progress)
    raise TypeError(f"Expected a ProgressReporter or callable, got {type(progress).__name__}")


class CancellationToken:
    """Thread-safe cancellation flag checked at generator checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CalculationCancelled("Calculation cancelled")


def should_run_inline(params: LoanParameters, settings: Optional[EngineSettings] = None) -> bool:
    """Whether ``params`` is small enough for the blocking adapter."""
    settings = settings or get_settings()
    return params.number_of_payments <= settings.inline_threshold


def compute_schedule(params: LoanParameters, options: Optional[GenerationOptions] = None) -> Schedule:
    """Compute the full schedule on the calling thread, without suspension."""
    if options is None:
        options = GenerationOptions.from_settings(get_settings())
    return run_to_completion(iterate_schedule(params, options))


async def compute_schedule_async(
    params: LoanParameters,
    options: Optional[GenerationOptions] = None,
    progress: ProgressLike = None,
    cancel_token: Optional[CancellationToken] = None,
    *,
    settings: Optional[EngineSettings] = None,
    report_completion: bool = True,
) -> Schedule:
    """Compute the schedule cooperatively.

    At each checkpoint the coroutine yields control to the event loop,
    reports progress, then aborts with ``CalculationTimeout`` when the
    wall-clock budget is spent or ``CalculationCancelled`` when the token
    was cancelled. Partial results are discarded on abort. A final
    ``report(100, "Complete")`` follows success unless ``report_completion``
    is false.
    """
    settings = settings or get_settings()
    if options is None:
        options = GenerationOptions.from_settings(settings)
    timeout = options.timeout if options.timeout is not None else settings.async_timeout
    reporter = MonotonicProgress(as_reporter(progress))
    token = cancel_token or CancellationToken()

    started = time.monotonic()
    steps = iterate_schedule(params, options)
    try:
        while True:
            try:
                checkpoint = next(steps)
            except StopIteration as stop:
                schedule = stop.value
                break

            await asyncio.sleep(0)
            reporter.report(checkpoint.percent, checkpoint.message)

            elapsed = time.monotonic() - started
            if elapsed > timeout:
                logger.warning(
                    "Calculation timed out after %.3fs at payment %d",
                    elapsed,
                    checkpoint.processed,
                    extra={"correlation_id": params.loan_id, "action": CalculationTimeout.kind},
                )
                raise CalculationTimeout(
                    f"Calculation timeout after {timeout:g}s. The loan parameters may be invalid."
                )
            if token.cancelled:
                logger.info(
                    "Calculation cancelled at payment %d",
                    checkpoint.processed,
                    extra={"correlation_id": params.loan_id, "action": CalculationCancelled.kind},
                )
                token.raise_if_cancelled()
    finally:
        steps.close()

    if report_completion:
        reporter.report(100.0, "Complete")
    return schedule

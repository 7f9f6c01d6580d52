"""Tests for the inline and cooperative execution adapters."""

import asyncio
import time
from decimal import Decimal

import pytest

from loan_schedule.config import EngineSettings
from loan_schedule.data_models import GenerationOptions
from loan_schedule.errors import CalculationCancelled, CalculationTimeout, PaymentTooLowForInterestError
from loan_schedule.execution import (
    CallbackProgress,
    CancellationToken,
    MonotonicProgress,
    as_reporter,
    compute_schedule,
    compute_schedule_async,
    should_run_inline,
)


class RecordingProgress:
    def __init__(self):
        self.reports = []

    def report(self, percent, message):
        self.reports.append((percent, message))


class SlowProgress(RecordingProgress):
    """Reporter that blocks for a while on every checkpoint."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def report(self, percent, message):
        super().report(percent, message)
        time.sleep(self.delay)


class TestProgressHelpers:
    def test_monotonic_gate_drops_stale_reports(self):
        inner = RecordingProgress()
        gate = MonotonicProgress(inner)
        assert gate.report(10, "a") is True
        assert gate.report(10, "b") is False
        assert gate.report(5, "c") is False
        assert gate.report(20, "d") is True
        assert inner.reports == [(10, "a"), (20, "d")]

    def test_callable_is_adapted(self):
        seen = []
        reporter = as_reporter(lambda percent, message: seen.append(percent))
        assert isinstance(reporter, CallbackProgress)
        reporter.report(42.0, "x")
        assert seen == [42.0]

    def test_non_callable_is_rejected(self):
        with pytest.raises(TypeError):
            as_reporter(42)

    def test_cancellation_token(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(CalculationCancelled):
            token.raise_if_cancelled()


class TestShouldRunInline:
    def test_threshold(self, mortgage, five_year_loan):
        assert should_run_inline(five_year_loan)
        assert should_run_inline(mortgage)  # 360 payments
        assert not should_run_inline(mortgage.replace(payment_frequency="weekly"))  # 1560 payments

    def test_custom_threshold(self, five_year_loan):
        assert not should_run_inline(five_year_loan, EngineSettings(inline_threshold=30))


class TestComputeSchedule:
    def test_inline_matches_cooperative(self, mortgage, small_batches):
        inline = compute_schedule(mortgage, small_batches)
        cooperative = asyncio.run(compute_schedule_async(mortgage, small_batches))
        assert inline.payments == cooperative.payments

    def test_errors_propagate(self, mortgage):
        with pytest.raises(PaymentTooLowForInterestError):
            compute_schedule(mortgage.replace(payment_amount=Decimal("100")))


class TestComputeScheduleAsync:
    @pytest.mark.asyncio
    async def test_progress_is_strictly_increasing(self, mortgage, small_batches):
        progress = RecordingProgress()
        await compute_schedule_async(mortgage, small_batches, progress)
        percents = [p for p, _ in progress.reports]
        # 36 checkpoints, the repeated 95% cap is dropped, plus completion
        assert len(percents) == 36
        assert all(a < b for a, b in zip(percents, percents[1:]))
        assert progress.reports[-1] == (100.0, "Complete")
        assert max(percents[:-1]) <= 95

    @pytest.mark.asyncio
    async def test_completion_report_can_be_suppressed(self, five_year_loan, small_batches):
        progress = RecordingProgress()
        await compute_schedule_async(five_year_loan, small_batches, progress, report_completion=False)
        assert all(p < 100 for p, _ in progress.reports)

    @pytest.mark.asyncio
    async def test_yields_to_event_loop(self, mortgage, small_batches):
        ticks = []

        async def ticker():
            while True:
                ticks.append(1)
                await asyncio.sleep(0)

        task = asyncio.ensure_future(ticker())
        await compute_schedule_async(mortgage, small_batches)
        task.cancel()
        assert len(ticks) > 1

    @pytest.mark.asyncio
    async def test_timeout(self, mortgage):
        """Scenario E: a slow checkpoint cadence exceeds a 50ms budget."""
        options = GenerationOptions(batch_size=1, timeout=0.05)
        progress = SlowProgress(delay=0.02)
        started = time.monotonic()
        with pytest.raises(CalculationTimeout) as exc_info:
            await compute_schedule_async(mortgage, options, progress)
        assert exc_info.value.kind == "Timeout"
        assert time.monotonic() - started < 2
        assert all(p < 100 for p, _ in progress.reports)

    @pytest.mark.asyncio
    async def test_default_timeout_comes_from_settings(self, mortgage):
        settings = EngineSettings(async_timeout=0.01)
        with pytest.raises(CalculationTimeout):
            await compute_schedule_async(
                mortgage, GenerationOptions(batch_size=1), SlowProgress(0.005), settings=settings
            )

    @pytest.mark.asyncio
    async def test_cancel_before_first_checkpoint(self, mortgage, small_batches):
        token = CancellationToken()
        token.cancel()
        progress = RecordingProgress()
        with pytest.raises(CalculationCancelled):
            await compute_schedule_async(mortgage, small_batches, progress, token)
        # Cancellation is observed at the first checkpoint, never after completion
        assert len(progress.reports) == 1

    @pytest.mark.asyncio
    async def test_cancel_from_progress_callback(self, mortgage, small_batches):
        token = CancellationToken()
        seen = []

        def on_progress(percent, message):
            seen.append(percent)
            if len(seen) == 3:
                token.cancel()

        with pytest.raises(CalculationCancelled):
            await compute_schedule_async(mortgage, small_batches, on_progress, token)
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_cancel_from_another_task(self, mortgage):
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0)
            token.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        with pytest.raises(CalculationCancelled):
            await compute_schedule_async(mortgage, GenerationOptions(batch_size=1), None, token)
        await canceller

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self, mortgage, five_year_loan, small_batches):
        a, b = await asyncio.gather(
            compute_schedule_async(mortgage, small_batches),
            compute_schedule_async(five_year_loan, small_batches),
        )
        assert a.payments == compute_schedule(mortgage).payments
        assert b.payments == compute_schedule(five_year_loan).payments

"""Worker bridge hosting the schedule generator in a separate process.

The worker side (``WorkerBridge``) receives request dicts, runs each one as
an asyncio task using the cooperative adapter, and sends back progress and
exactly one terminal message per correlation id. ``run_worker`` hosts a
bridge inside a ``multiprocessing`` process. The caller side
(``WorkerClient``) owns that process, allocates correlation ids and routes
replies back to the awaiting coroutine.

Message kinds::

    request   {"kind": "calculateAmortization" | "calculatePayment" | "calculateInflation",
               "payload": {...}, "id": id}
    cancel    {"kind": "cancel", "id": id}
    progress  {"kind": "progress", "percent": 0..100, "message": str, "id": id}
    complete  {"kind": "complete", "result": {...}, "id": id}
    error     {"kind": "error", "errorKind": str, "message": str, "id": id}

Only plain data crosses the boundary; see ``serialization``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import multiprocessing
import queue
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .config import EngineSettings, get_settings
from .data_models import GenerationOptions, InflationAdjustedSchedule, LoanParameters, Schedule
from .errors import (
    CalculationCancelled,
    CalculationTimeout,
    LoanScheduleError,
    WorkerProtocolError,
    error_from_kind,
)
from .execution import (
    CancellationToken,
    MonotonicProgress,
    ProgressLike,
    ProgressReporter,
    as_reporter,
    compute_schedule_async,
)
from .inflation import adjust_for_inflation
from .logging_config import log_extra, setup_logging
from .serialization import (
    inflation_from_dict,
    inflation_to_dict,
    options_from_dict,
    options_to_dict,
    params_from_dict,
    params_to_dict,
    schedule_from_dict,
    schedule_to_dict,
)
from .utils import to_decimal

logger = logging.getLogger(__name__)

CALCULATE_AMORTIZATION = "calculateAmortization"
CALCULATE_PAYMENT = "calculatePayment"
CALCULATE_INFLATION = "calculateInflation"
REQUEST_KINDS = (CALCULATE_AMORTIZATION, CALCULATE_PAYMENT, CALCULATE_INFLATION)

CLIENT_TIMEOUT_GRACE = 1.0  # seconds added to the worker's own budget


class QueueChannel:
    """Channel that puts messages on a ``multiprocessing`` queue."""

    def __init__(self, target: Any) -> None:
        self._target = target

    def send(self, message: Dict[str, Any]) -> None:
        self._target.put(message)


class _ChannelProgress:
    def __init__(self, send: Callable[[Dict[str, Any]], None], request_id: Any) -> None:
        self._send = send
        self._request_id = request_id

    def report(self, percent: float, message: str) -> None:
        self._send({"kind": "progress", "percent": float(percent), "message": message, "id": self._request_id})


class WorkerBridge:
    """Worker-side request handler.

    One bridge is constructed per isolated context with the channel used to
    reply. It must be driven from a running event loop.
    """

    def __init__(self, channel: Any, settings: Optional[EngineSettings] = None) -> None:
        self._channel = channel
        self._settings = settings or get_settings()
        self._tasks: Dict[Any, asyncio.Task] = {}
        self._tokens: Dict[Any, CancellationToken] = {}
        self._handlers: Dict[str, Callable[[Mapping[str, Any], ProgressReporter, CancellationToken], Awaitable[Any]]] = {
            CALCULATE_AMORTIZATION: self._calculate_amortization,
            CALCULATE_PAYMENT: self._calculate_payment,
            CALCULATE_INFLATION: self._calculate_inflation,
        }

    @property
    def active_requests(self) -> int:
        return len(self._tasks)

    def dispatch(self, message: Any) -> None:
        """Route one incoming message."""
        if not isinstance(message, Mapping):
            logger.warning("Dropping non-object message of type %s", type(message).__name__)
            return
        kind = message.get("kind")
        request_id = message.get("id")
        if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
            logger.warning("Dropping %r message with invalid correlation id %r", kind, request_id)
            return

        if kind == "cancel":
            token = self._tokens.get(request_id)
            if token is not None:
                token.cancel()
            return

        if request_id in self._tasks:
            logger.warning(
                "Dropping %r request reusing running id", kind, extra=log_extra(request_id, "duplicate")
            )
            return

        token = CancellationToken()
        self._tokens[request_id] = token
        self._tasks[request_id] = asyncio.get_running_loop().create_task(
            self._run(kind, message.get("payload"), request_id, token)
        )

    def cancel_all(self) -> None:
        for token in self._tokens.values():
            token.cancel()

    async def drain(self) -> None:
        """Wait until every running request has sent its terminal message."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()))

    async def _run(self, kind: Any, payload: Any, request_id: Any, token: CancellationToken) -> None:
        progress = MonotonicProgress(_ChannelProgress(self._send, request_id))
        try:
            handler = self._handlers.get(kind)
            if handler is None:
                raise WorkerProtocolError(f"Unknown calculation type: {kind}")
            if not isinstance(payload, Mapping):
                raise WorkerProtocolError(f"{kind} payload must be an object")
            result = await handler(payload, progress, token)
        except LoanScheduleError as exc:
            self._send_error(request_id, exc.kind, str(exc))
        except (KeyError, TypeError, ValueError) as exc:
            self._send_error(request_id, WorkerProtocolError.kind, f"Malformed {kind} payload: {exc!r}")
        except Exception as exc:
            logger.exception("Unexpected failure in %s", kind, extra=log_extra(request_id, kind))
            self._send_error(request_id, LoanScheduleError.kind, str(exc))
        else:
            self._send({"kind": "complete", "result": result, "id": request_id})
        finally:
            self._tasks.pop(request_id, None)
            self._tokens.pop(request_id, None)

    async def _calculate_amortization(
        self, payload: Mapping[str, Any], progress: ProgressReporter, token: CancellationToken
    ) -> Dict[str, Any]:
        params = params_from_dict(payload["loan"])
        options = options_from_dict(payload.get("options"))
        if options.timeout is None:
            options = options.with_timeout(self._settings.worker_timeout)

        progress.report(0.0, "Starting calculation...")
        schedule = await compute_schedule_async(
            params, options, progress, token, settings=self._settings, report_completion=False
        )
        progress.report(98.0, "Finalizing results...")

        inflation_adjusted = None
        if params.inflation_rate > 0:
            inflation_adjusted = inflation_to_dict(adjust_for_inflation(schedule, params.inflation_rate))
        return {"schedule": schedule_to_dict(schedule), "inflationAdjusted": inflation_adjusted}

    async def _calculate_payment(
        self, payload: Mapping[str, Any], progress: ProgressReporter, token: CancellationToken
    ) -> Dict[str, Any]:
        params = params_from_dict(payload["loan"])
        return {
            "payment": str(params.regular_payment),
            "numberOfPayments": params.number_of_payments,
            "periodicRate": str(params.periodic_rate),
        }

    async def _calculate_inflation(
        self, payload: Mapping[str, Any], progress: ProgressReporter, token: CancellationToken
    ) -> Dict[str, Any]:
        schedule = schedule_from_dict(payload["schedule"])
        adjusted = adjust_for_inflation(schedule, payload["inflationRate"])
        return inflation_to_dict(adjusted)

    def _send_error(self, request_id: Any, kind: str, message: str) -> None:
        logger.info("Request failed with %s: %s", kind, message, extra=log_extra(request_id, kind))
        self._send({"kind": "error", "errorKind": kind, "message": message, "id": request_id})

    def _send(self, message: Dict[str, Any]) -> None:
        self._channel.send(message)


def run_worker(inbox: Any, outbox: Any, log_level: Optional[str] = None) -> None:
    """Process entry point: serve requests from ``inbox`` until shutdown."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    asyncio.run(_serve(inbox, outbox, settings))


async def _serve(inbox: Any, outbox: Any, settings: EngineSettings) -> None:
    loop = asyncio.get_running_loop()
    bridge = WorkerBridge(QueueChannel(outbox), settings)
    logger.info("Worker started")
    try:
        while True:
            message = await loop.run_in_executor(None, inbox.get)
            if message is None or (isinstance(message, Mapping) and message.get("kind") == "shutdown"):
                break
            try:
                bridge.dispatch(message)
            except Exception:
                logger.exception("Failed to dispatch worker message")
        bridge.cancel_all()
        await bridge.drain()
    finally:
        outbox.put(None)
        logger.info("Worker stopped")


@dataclass(frozen=True)
class AmortizationResult:
    schedule: Schedule
    inflation_adjusted: Optional[InflationAdjustedSchedule] = None


@dataclass
class _Pending:
    kind: str
    future: asyncio.Future
    reporter: ProgressReporter
    last_percent: Optional[float] = None


class WorkerClient:
    """Caller-side handle on a worker process.

    Usage::

        async with WorkerClient() as client:
            result = await client.calculate_amortization(params, options, progress)
    """

    def __init__(self, settings: Optional[EngineSettings] = None, *, context: Any = None) -> None:
        self._settings = settings or get_settings()
        self._context = context or multiprocessing.get_context("spawn")
        self._process = None
        self._inbox = None
        self._outbox = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[int, _Pending] = {}
        self._ids = itertools.count(1)
        self._total = 0

    async def __aenter__(self) -> "WorkerClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    async def start(self) -> None:
        if self._process is not None:
            return
        self._inbox = self._context.Queue()
        self._outbox = self._context.Queue()
        self._process = self._context.Process(
            target=run_worker,
            args=(self._inbox, self._outbox, self._settings.log_level),
            name="loan-schedule-worker",
            daemon=True,
        )
        self._process.start()
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())
        logger.info("Started worker process %s", self._process.pid)

    async def close(self) -> None:
        if self._process is None:
            return
        process = self._process
        self.cancel_all()
        if process.is_alive():
            self._inbox.put({"kind": "shutdown"})
        if self._reader is not None:
            await self._reader
        await asyncio.get_running_loop().run_in_executor(None, process.join, 5)
        if process.is_alive():
            logger.warning("Worker process did not stop, terminating it")
            process.terminate()
        self._fail_all(WorkerProtocolError("Worker closed"))
        self._process = None
        self._reader = None

    # Requests

    async def submit(self, kind: str, payload: Dict[str, Any], progress: ProgressLike = None) -> int:
        """Send a request and return its correlation id without waiting."""
        await self.start()
        request_id = next(self._ids)
        self._total += 1
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _Pending(kind=kind, future=future, reporter=as_reporter(progress))
        self._inbox.put({"kind": kind, "payload": payload, "id": request_id})
        return request_id

    async def wait(self, request_id: int, timeout: Optional[float] = None) -> Any:
        """Wait for the raw result of ``request_id``.

        Raises the reconstructed error when the worker reports one, and
        ``CalculationTimeout`` when ``timeout`` seconds pass first.
        """
        pending = self._pending.get(request_id)
        if pending is None:
            raise WorkerProtocolError(f"Unknown request id {request_id}")
        try:
            if timeout is None:
                return await pending.future
            return await asyncio.wait_for(pending.future, timeout)
        except asyncio.TimeoutError:
            self._request_cancel(request_id)
            raise CalculationTimeout(f"{pending.kind} timeout after {timeout:g}s") from None
        except asyncio.CancelledError:
            self._request_cancel(request_id)
            raise
        finally:
            self._pending.pop(request_id, None)

    def cancel(self, request_id: int) -> None:
        """Cancel one request and forget it.

        A coroutine already blocked in ``wait`` raises ``CalculationCancelled``;
        later replies from the worker for this id are dropped.
        """
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        if not pending.future.done():
            pending.future.set_exception(CalculationCancelled("Calculation cancelled"))
            # Retrieved here since nobody may be waiting on it
            pending.future.exception()
        self._request_cancel(request_id)

    def cancel_all(self) -> None:
        for request_id in list(self._pending):
            self.cancel(request_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "pendingCalculations": sum(1 for p in self._pending.values() if not p.future.done()),
            "workerAvailable": self.running,
            "totalCalculations": self._total,
        }

    async def calculate_amortization(
        self,
        params: LoanParameters,
        options: Optional[GenerationOptions] = None,
        progress: ProgressLike = None,
    ) -> AmortizationResult:
        options = options or GenerationOptions.from_settings(self._settings)
        budget = options.timeout if options.timeout is not None else self._settings.worker_timeout
        request_id = await self.submit(
            CALCULATE_AMORTIZATION,
            {"loan": params_to_dict(params), "options": options_to_dict(options)},
            progress,
        )
        result = await self.wait(request_id, budget + CLIENT_TIMEOUT_GRACE)
        try:
            schedule = schedule_from_dict(result["schedule"])
            adjusted = result.get("inflationAdjusted")
            return AmortizationResult(
                schedule=schedule,
                inflation_adjusted=inflation_from_dict(adjusted) if adjusted else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise WorkerProtocolError(f"Malformed amortization result: {exc!r}") from exc

    async def calculate_payment(self, params: LoanParameters, timeout: float = 5.0):
        request_id = await self.submit(CALCULATE_PAYMENT, {"loan": params_to_dict(params)})
        result = await self.wait(request_id, timeout)
        try:
            return to_decimal(result["payment"])
        except (KeyError, TypeError, ValueError) as exc:
            raise WorkerProtocolError(f"Malformed payment result: {exc!r}") from exc

    async def calculate_inflation(
        self, schedule: Schedule, inflation_rate: Any, timeout: float = 10.0
    ) -> InflationAdjustedSchedule:
        request_id = await self.submit(
            CALCULATE_INFLATION,
            {"schedule": schedule_to_dict(schedule), "inflationRate": str(to_decimal(inflation_rate))},
        )
        result = await self.wait(request_id, timeout)
        try:
            return inflation_from_dict(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise WorkerProtocolError(f"Malformed inflation result: {exc!r}") from exc

    # Reply routing

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            message = await loop.run_in_executor(None, self._next_message)
            if message is None:
                break
            self.route(message)
        self._fail_all(WorkerProtocolError("Worker process stopped"))

    def _next_message(self) -> Any:
        while True:
            try:
                return self._outbox.get(timeout=0.2)
            except queue.Empty:
                if not self._process.is_alive():
                    return None

    def route(self, message: Any) -> None:
        """Deliver one worker message to its waiting request."""
        if not isinstance(message, Mapping):
            logger.warning("Dropping non-object message from worker")
            return
        request_id = message.get("id")
        pending = self._pending.get(request_id)
        if pending is None or pending.future.done():
            logger.debug("Dropping message for unknown or finished request %r", request_id)
            return

        kind = message.get("kind")
        try:
            if kind == "progress":
                percent = message["percent"]
                if isinstance(percent, bool) or not isinstance(percent, (int, float)) or not 0 <= percent <= 100:
                    raise WorkerProtocolError(f"Invalid progress percent {percent!r}")
                if pending.last_percent is not None and percent <= pending.last_percent:
                    raise WorkerProtocolError(
                        f"Progress went backwards from {pending.last_percent} to {percent}"
                    )
                pending.last_percent = percent
                self._report(request_id, pending, float(percent), str(message.get("message", "")))
            elif kind == "complete":
                pending.future.set_result(message["result"])
            elif kind == "error":
                pending.future.set_exception(
                    error_from_kind(str(message["errorKind"]), str(message.get("message", "")))
                )
            else:
                raise WorkerProtocolError(f"Unknown message kind {kind!r}")
        except KeyError as exc:
            self._protocol_failure(request_id, pending, WorkerProtocolError(f"{kind} message missing {exc}"))
        except WorkerProtocolError as exc:
            self._protocol_failure(request_id, pending, exc)

    def _report(self, request_id: int, pending: _Pending, percent: float, text: str) -> None:
        try:
            pending.reporter.report(percent, text)
        except Exception as exc:
            logger.exception("Progress callback failed", extra=log_extra(request_id, "progress"))
            pending.future.set_exception(exc)
            self._request_cancel(request_id)

    def _protocol_failure(self, request_id: int, pending: _Pending, error: WorkerProtocolError) -> None:
        logger.warning("Protocol error: %s", error, extra=log_extra(request_id, WorkerProtocolError.kind))
        if not pending.future.done():
            pending.future.set_exception(error)
        self._request_cancel(request_id)

    def _request_cancel(self, request_id: int) -> None:
        if self.running:
            self._inbox.put({"kind": "cancel", "id": request_id})

    def _fail_all(self, error: LoanScheduleError) -> None:
        for pending in self._pending.values():
            if not pending.future.done():
                pending.future.set_exception(error)

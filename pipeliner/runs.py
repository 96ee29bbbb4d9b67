"""Concurrent pipeline runs with cancellation, event streaming and status polling."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import tomllib
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from pipeliner.errors import ServiceError, StatusCode
from pipeliner.messages import ValidationResult

logger = logging.getLogger(__name__)

SERVING = 0
"""Value returned by :meth:`PipelineRunServer.health` while the server serves."""

EVENT_CAPACITY = 256
_POLL_INTERVAL = 0.2
_CLOSED = object()


class RunState(Enum):
    """Lifecycle state of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunMetrics:
    """Counters gathered for a run."""

    records_read: int = 0
    records_written: int = 0
    records_dropped: int = 0
    duration_ms: int = 0


@dataclass
class RunStatus:
    """Current status of a run."""

    run_id: str
    state: RunState = RunState.RUNNING
    error_message: str = ""
    metrics: RunMetrics = field(default_factory=RunMetrics)
    watermark: str = ""


@dataclass
class StageTransition:
    """A stage changed status."""

    stage: str
    status: str


@dataclass
class BatchProgress:
    """A stage processed a batch."""

    stage: str
    batch_number: int
    records_in_batch: int


@dataclass
class ErrorEvent:
    """A stage reported an error."""

    stage: str
    message: str


@dataclass
class RunCompleted:
    """The final status of a run, sent last on a watch stream."""

    status: RunStatus


@dataclass
class WatchEvent:
    """One event delivered to a watcher of a run."""

    run_id: str
    event: StageTransition | BatchProgress | ErrorEvent | RunCompleted


@dataclass
class SinkResult:
    """What one sink reported at the end of a run."""

    index: int = 0
    rows_written: int = 0
    rows_errored: int = 0
    error_message: str = ""


@dataclass
class PipelineOutcome:
    """The result of a successful pipeline execution."""

    watermark: str = ""
    records_read: int = 0
    sink_results: list[SinkResult] = field(default_factory=list)


class RunEventSender:
    """Broadcasts run events to every current subscriber.

    A subscriber that falls more than ``capacity`` events behind loses the
    oldest ones. Closing the sender ends every subscription.
    """

    def __init__(self, capacity: int = EVENT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: list[asyncio.Queue[Any]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def emit(self, event: StageTransition | BatchProgress | ErrorEvent) -> int:
        """Send ``event`` to all subscribers and return how many received it."""
        if self._closed:
            return 0
        for queue in self._subscribers:
            if queue.qsize() >= self._capacity:
                queue.get_nowait()
            queue.put_nowait(event)
        return len(self._subscribers)

    def subscribe(self) -> AsyncIterator[StageTransition | BatchProgress | ErrorEvent]:
        """Return an iterator over events emitted from now until the sender closes."""
        queue: asyncio.Queue[Any] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._subscribers.append(queue)
        return self._drain(queue)

    def close(self) -> None:
        """End all subscriptions; later events are discarded."""
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(_CLOSED)
        self._subscribers.clear()

    async def _drain(self, queue: asyncio.Queue[Any]) -> AsyncIterator[Any]:
        try:
            while (item := await queue.get()) is not _CLOSED:
                yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)


class PipelineRunner(Protocol):
    """Executes one pipeline and returns its outcome, raising on failure."""

    def __call__(
        self,
        config: dict[str, Any],
        params: dict[str, str],
        *,
        run_id: str,
        cancel: asyncio.Event,
        events: RunEventSender,
    ) -> Awaitable[PipelineOutcome]: ...


def parse_config_input(config_toml: str | None, config_path: str | None) -> dict[str, Any]:
    """Parse a pipeline config given inline as TOML or as a path to a TOML file.

    Inline TOML wins when both are given.

    Raises:
        ServiceError: with ``INVALID_ARGUMENT`` if neither is set, the file
            cannot be read, or the TOML does not parse.
    """
    if config_toml is not None:
        text = config_toml
    elif config_path is not None:
        try:
            text = Path(config_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ServiceError(
                StatusCode.INVALID_ARGUMENT,
                f"failed to read config file '{config_path}': {exc}",
            ) from exc
    else:
        raise ServiceError(
            StatusCode.INVALID_ARGUMENT, "either config_toml or config_path must be set"
        )
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ServiceError(StatusCode.INVALID_ARGUMENT, f"config parse error: {exc}") from exc


@dataclass
class _Run:
    status: RunStatus
    cancel: asyncio.Event
    events: RunEventSender | None
    started_at: float
    task: asyncio.Task[None] | None = None


class PipelineRunServer:
    """Starts pipeline runs in the background and tracks them by run id."""

    def __init__(
        self,
        runner: PipelineRunner,
        validator: Callable[[dict[str, Any]], list[str]] | None = None,
    ) -> None:
        self._runner = runner
        self._validator = validator
        self._runs: dict[str, _Run] = {}

    async def run_pipeline(
        self,
        config_toml: str | None = None,
        config_path: str | None = None,
        params: Mapping[str, str] | None = None,
    ) -> str:
        """Start a run in the background and return its id."""
        config = parse_config_input(config_toml, config_path)
        run_params = dict(params or {})
        run_id = str(uuid.uuid4())
        run = _Run(
            status=RunStatus(run_id=run_id),
            cancel=asyncio.Event(),
            events=RunEventSender(EVENT_CAPACITY),
            started_at=time.monotonic(),
        )
        self._runs[run_id] = run
        run.task = asyncio.create_task(self._execute(run, config, run_params))
        return run_id

    async def _execute(self, run: _Run, config: dict[str, Any], params: dict[str, str]) -> None:
        events = run.events
        assert events is not None
        work = asyncio.ensure_future(
            self._runner(
                config, params, run_id=run.status.run_id, cancel=run.cancel, events=events
            )
        )
        waiter = asyncio.ensure_future(run.cancel.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        outcome: PipelineOutcome | None = None
        error: str | None = None
        if work in done:
            try:
                outcome = work.result()
            except (Exception, asyncio.CancelledError) as exc:
                error = str(exc) or type(exc).__name__
        else:
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            error = "pipeline cancelled"

        duration_ms = int((time.monotonic() - run.started_at) * 1000)
        status = run.status
        if outcome is not None:
            status.state = RunState.COMPLETED
            status.watermark = outcome.watermark
            status.metrics = RunMetrics(
                records_read=outcome.records_read,
                records_written=sum(s.rows_written for s in outcome.sink_results),
                records_dropped=sum(s.rows_errored for s in outcome.sink_results),
                duration_ms=duration_ms,
            )
            events.emit(StageTransition(stage="pipeline", status="completed"))
        else:
            status.state = RunState.CANCELLED if run.cancel.is_set() else RunState.FAILED
            status.error_message = error or ""
            status.metrics = RunMetrics(duration_ms=duration_ms)
            events.emit(ErrorEvent(stage="pipeline", message=error or ""))
        events.close()
        run.events = None

    def _lookup(self, run_id: str) -> _Run:
        if not run_id:
            raise ServiceError(StatusCode.INVALID_ARGUMENT, "run_id must not be empty")
        try:
            return self._runs[run_id]
        except KeyError:
            raise ServiceError(StatusCode.NOT_FOUND, f"run '{run_id}' not found") from None

    async def watch_run(self, run_id: str) -> AsyncIterator[WatchEvent]:
        """Return a stream of a run's events that ends with its final status."""
        run = self._lookup(run_id)
        if run.status.state is not RunState.RUNNING or run.events is None:
            return self._finished_stream(run)
        return self._live_stream(run, run.events.subscribe())

    async def _finished_stream(self, run: _Run) -> AsyncIterator[WatchEvent]:
        yield WatchEvent(run.status.run_id, RunCompleted(copy.deepcopy(run.status)))

    async def _live_stream(
        self, run: _Run, events: AsyncIterator[StageTransition | BatchProgress | ErrorEvent]
    ) -> AsyncIterator[WatchEvent]:
        run_id = run.status.run_id
        async for event in events:
            yield WatchEvent(run_id, event)
        yield WatchEvent(run_id, RunCompleted(copy.deepcopy(run.status)))

    async def get_run_status(self, run_id: str) -> RunStatus:
        """Return a snapshot of a run's status."""
        return copy.deepcopy(self._lookup(run_id).status)

    async def cancel_run(self, run_id: str) -> bool:
        """Ask a run to stop; return True once the request is acknowledged."""
        self._lookup(run_id).cancel.set()
        return True

    async def validate_pipeline(
        self, config_toml: str | None = None, config_path: str | None = None
    ) -> ValidationResult:
        """Parse a config and report the problems the validator finds in it."""
        config = parse_config_input(config_toml, config_path)
        errors = list(self._validator(config)) if self._validator is not None else []
        return ValidationResult(valid=not errors, errors=errors)

    def health(self) -> int:
        """Report the serving status."""
        return SERVING

    async def drain_runs(self, timeout: float) -> None:
        """Wait for running runs to finish, cancelling those left after ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while True:
            in_flight = [r for r in self._runs.values() if r.status.state is RunState.RUNNING]
            if not in_flight:
                logger.info("all in-flight runs completed")
                return
            if time.monotonic() >= deadline:
                logger.warning(
                    "shutdown timeout reached, cancelling %d remaining runs", len(in_flight)
                )
                for run in in_flight:
                    run.cancel.set()
                return
            logger.info("waiting for %d in-flight runs to complete", len(in_flight))
            await asyncio.sleep(_POLL_INTERVAL)
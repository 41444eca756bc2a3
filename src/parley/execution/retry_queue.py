"""Bounded-concurrency request queue with rate-limit-aware retry.

RetryQueue mediates access to a backend that enforces a global
concurrency ceiling. At most ``max_concurrency`` units of work run at
once; units rejected with RateLimitError are re-inserted at the back of
the queue after an exponential delay with jitter, every other error is
surfaced on first occurrence.

Scheduling is cooperative on one event loop. All mutation of the
pending list and the active counter happens synchronously inside
``_schedule`` or in task completion paths, guarded by a single-flight
flag so two scheduling passes can never both claim the same free slot.

Retried units go to the back of the queue, so retry attempts may be
reordered relative to fresh enqueues. Initial attempts are dispatched
in FIFO order.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from parley.errors import (
    ConfigurationError,
    QueueFullError,
    QueueShutdownError,
    RateLimitError,
    RetriesExhaustedError,
)
from parley.models.config import QueueSettings

ProgressCallback = Callable[[str], None]
ExecuteFn = Callable[[Any, "ProgressCallback | None"], Awaitable[Any]]


def compute_backoff_delay(
    attempt: int,
    settings: QueueSettings,
    rng: random.Random | None = None,
) -> float:
    """Compute the delay in milliseconds before retry number ``attempt``.

    With exponential backoff the delay is
    ``min(base * 1.5**(attempt - 1) * (1 + jitter), max)`` where jitter is
    drawn uniformly from ``[0, settings.jitter_ratio)``. Without it the
    delay is the constant base delay.

    Args:
        attempt: 1-based retry number.
        settings: Queue settings carrying base/max delays and jitter ratio.
        rng: Optional random source (module-level random by default).

    Returns:
        Delay in milliseconds.
    """
    if not settings.use_exponential_backoff:
        return settings.base_delay_ms
    jitter = (rng or random).random() * settings.jitter_ratio  # noqa: S311
    delay = settings.base_delay_ms * (1.5 ** (attempt - 1)) * (1 + jitter)
    return min(delay, settings.max_delay_ms)


@dataclass(eq=False)
class QueuedRequest:
    """One pending unit of work owned by a RetryQueue.

    Settled exactly once through resolve() or reject(); a second
    settlement is an invariant violation.
    """

    request: Any
    future: asyncio.Future
    on_progress: ProgressCallback | None = None
    attempts_made: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)

    def notify(self, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(message)

    def resolve(self, value: Any) -> None:
        if self._check_settle():
            self.future.set_result(value)

    def reject(self, exc: BaseException) -> None:
        if self._check_settle():
            self.future.set_exception(exc)

    def _check_settle(self) -> bool:
        # A caller that stopped waiting cancels the future; nothing to deliver.
        if self.future.cancelled():
            return False
        if self.future.done():
            raise RuntimeError("QueuedRequest settled more than once")
        return True


class RetryQueue:
    """Bounded-concurrency FIFO queue retrying rate-limited work.

    Each instance owns its pending list, counters and retry timers, so
    several independent queues can coexist (one per backend). The queue
    never installs signal handlers; the host application calls
    shutdown() from its own handler.

    Args:
        execute: Unit of work, called as ``await execute(request, on_progress)``.
        settings: Concurrency, queue size and backoff settings.
        name: Label bound into every log event.
        rng: Random source for jitter (tests pass a seeded instance).
    """

    def __init__(
        self,
        execute: ExecuteFn,
        settings: QueueSettings | None = None,
        *,
        name: str = "queue",
        rng: random.Random | None = None,
    ) -> None:
        if not callable(execute):
            raise ConfigurationError("RetryQueue requires a callable unit of work")
        self._execute = execute
        self._settings = settings or QueueSettings()
        self._name = name
        self._rng = rng
        self._log = structlog.get_logger().bind(queue=name)

        self._pending: deque[QueuedRequest] = deque()
        self._active = 0
        self._scheduling = False
        self._closed = False
        self._retry_timers: dict[QueuedRequest, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    # -- public accessors ---------------------------------------------------

    def size(self) -> int:
        """Number of pending units not yet dispatched."""
        return len(self._pending)

    def active_count(self) -> int:
        """Number of units currently in flight."""
        return self._active

    def waiting_count(self) -> int:
        """Number of rate-limited units sleeping before re-insertion."""
        return len(self._retry_timers)

    def is_busy(self) -> bool:
        """True while any unit is in flight, pending, or waiting to retry."""
        return self._active > 0 or bool(self._pending) or bool(self._retry_timers)

    # -- enqueue / scheduling -----------------------------------------------

    async def enqueue(self, request: Any, on_progress: ProgressCallback | None = None) -> Any:
        """Queue a request and wait for its final outcome.

        Args:
            request: Opaque payload handed to the unit of work.
            on_progress: Optional callback receiving progress strings.

        Returns:
            Whatever the unit of work returned on its successful attempt.

        Raises:
            QueueFullError: Immediately, when max_queue_size items are pending.
            QueueShutdownError: If the queue is (or gets) shut down first.
            RetriesExhaustedError: When every retry was rate limited.
            Exception: Any non-rate-limit error raised by the unit of work.
        """
        if self._closed:
            raise QueueShutdownError(
                f"Queue '{self._name}' is shut down", details={"queue": self._name}
            )
        if len(self._pending) >= self._settings.max_queue_size:
            self._log.warning("queue.full", queue_size=len(self._pending))
            raise QueueFullError(
                f"Queue is full ({self._settings.max_queue_size} items). Please try again later.",
                details={"queue_size": len(self._pending)},
            )

        loop = asyncio.get_running_loop()
        item = QueuedRequest(request=request, future=loop.create_future(), on_progress=on_progress)
        self._pending.append(item)
        self._idle.clear()
        self._log.debug("queue.enqueued", queued=len(self._pending), active=self._active)
        self._schedule()
        return await item.future

    def _schedule(self) -> None:
        """Dispatch pending units while free concurrency slots remain."""
        if self._scheduling:
            return
        self._scheduling = True
        try:
            while (
                not self._closed
                and self._active < self._settings.max_concurrency
                and self._pending
            ):
                item = self._pending.popleft()
                if item.future.done():
                    # Caller gave up while the item was queued.
                    continue
                self._active += 1
                task = asyncio.get_running_loop().create_task(self._run_item(item))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            self._scheduling = False
            self._update_idle()

    async def _run_item(self, item: QueuedRequest) -> None:
        """Run one attempt of a unit of work and route its outcome."""
        max_attempts = self._settings.max_attempts
        try:
            item.notify(
                f"Processing ({self._active}/{self._settings.max_concurrency} active, "
                f"{len(self._pending)} queued) "
                f"(attempt {item.attempts_made + 1}/{max_attempts + 1})"
            )
            self._log.debug(
                "queue.dispatch",
                attempt=item.attempts_made + 1,
                active=self._active,
                queued=len(self._pending),
            )
            try:
                result = await self._execute(item.request, item.on_progress)
            except RetriesExhaustedError as exc:
                self._settle(item, error=exc)
            except RateLimitError as exc:
                self._handle_rate_limit(item, exc)
            except asyncio.CancelledError:
                item.future.cancel()
                raise
            except Exception as exc:
                self._log.debug("queue.failed", error_type=type(exc).__name__)
                self._settle(item, error=exc)
            else:
                self._settle(item, result=result)
        finally:
            self._active -= 1
            self._schedule()

    def _settle(
        self,
        item: QueuedRequest,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        if self._closed:
            # Outcome landed after shutdown; it is discarded.
            item.reject(
                QueueShutdownError(
                    "Queue shut down while request was in flight; outcome discarded",
                    details={"queue": self._name},
                )
            )
            return
        if error is not None:
            item.reject(error)
        else:
            item.resolve(result)

    def _handle_rate_limit(self, item: QueuedRequest, exc: RateLimitError) -> None:
        """Schedule a retry for a rate-limited unit or reject it as exhausted."""
        max_attempts = self._settings.max_attempts
        if self._closed:
            self._settle(item, error=exc)
            return
        if item.attempts_made >= max_attempts:
            self._log.warning("queue.retries_exhausted", attempts=item.attempts_made)
            item.reject(
                RetriesExhaustedError(
                    f"Failed after {max_attempts} retry attempts due to concurrency limits",
                    details={"attempts": item.attempts_made, **_limits(exc)},
                    status_code=exc.status_code,
                )
            )
            return

        item.attempts_made += 1
        delay_ms = compute_backoff_delay(item.attempts_made, self._settings, self._rng)
        item.notify(
            f"Concurrency limit reached ({self._active}/{self._settings.max_concurrency} active, "
            f"{len(self._pending)} queued). Waiting {delay_ms / 1000:.1f}s before retry "
            f"{item.attempts_made}/{max_attempts}..."
        )
        self._log.info(
            "queue.retry_scheduled",
            attempt=item.attempts_made,
            delay_ms=round(delay_ms),
            active=self._active,
            queued=len(self._pending),
        )
        loop = asyncio.get_running_loop()
        self._retry_timers[item] = loop.call_later(delay_ms / 1000, self._requeue, item)

    def _requeue(self, item: QueuedRequest) -> None:
        """Re-insert a retried unit at the back of the queue."""
        self._retry_timers.pop(item, None)
        if self._closed:
            item.reject(QueueShutdownError("Queue shut down before retry", details={"queue": self._name}))
            return
        self._pending.append(item)
        self._schedule()

    def _update_idle(self) -> None:
        if self.is_busy():
            self._idle.clear()
        else:
            self._idle.set()

    # -- lifecycle ----------------------------------------------------------

    def shutdown(self, reason: str = "Process terminating - queue shutdown") -> int:
        """Reject every pending and waiting unit and close the queue.

        In-flight units are not cancelled; their outcome is discarded
        when it lands. Safe to call more than once.

        Args:
            reason: Message carried by the QueueShutdownError.

        Returns:
            Number of units rejected by this call.
        """
        if self._closed:
            return 0
        self._closed = True

        rejected = 0
        while self._pending:
            self._pending.popleft().reject(QueueShutdownError(reason, details={"queue": self._name}))
            rejected += 1
        for item, handle in list(self._retry_timers.items()):
            handle.cancel()
            item.reject(QueueShutdownError(reason, details={"queue": self._name}))
            rejected += 1
        self._retry_timers.clear()

        self._log.warning("queue.shutdown", rejected=rejected, in_flight=self._active)
        self._update_idle()
        return rejected

    async def drain(self) -> None:
        """Wait until nothing is in flight, pending or waiting to retry."""
        while self.is_busy():
            self._idle.clear()
            await self._idle.wait()


def _limits(exc: RateLimitError) -> dict[str, Any]:
    """Carry provider limit metadata from the last rejection, if any."""
    limits = exc.details.get("limits")
    return {"limits": limits} if limits is not None else {}

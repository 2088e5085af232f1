"""Request queue: bounded concurrency, priority admission, retry with backoff.

Callers ``submit`` a target with a priority and get back an
``asyncio.Future``.  The queue admits at most ``max_concurrent`` requests at
a time, always draining waiting HIGH requests before LOW ones, and retries
retryable failures with exponential backoff while keeping the request's
slot.  The future is resolved exactly once: with the attempt's result, or
with the most recent underlying exception.

All bookkeeping (waiting deques, active set) is mutated only in synchronous
code between awaits, so no lock is needed on a single event loop.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from never_played.config import get_settings
from never_played.logging import get_logger
from never_played.queue.errors import default_is_retryable
from never_played.queue.models import (
    FailureInfo,
    QueuedRequest,
    QueueStats,
    RequestPriority,
    RequestState,
    RetryPolicy,
)

if TYPE_CHECKING:
    from never_played.config import Settings

log = get_logger("never_played.queue.manager")

AttemptFn = Callable[[Any], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[Any]]


class RequestQueue:
    """Priority queue that bounds in-flight calls and retries failures.

    One instance is built at process start and handed to every collaborator
    that needs bounded access to an external service.  The worst-case
    latency of a single request is ``max_retries`` sequential backoff delays
    (each at most ``policy.max_delay``) plus the attempts themselves; there
    is no end-to-end deadline.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        max_concurrent: int = 3,
        perform: AttemptFn | None = None,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
        low_priority_delay: float = 0.0,
        failure_history_limit: int = 100,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the queue.

        Args:
            policy: Retry/backoff configuration.
            max_concurrent: Hard cap on simultaneously executing requests.
            perform: Callable performing one attempt for a target.  When
                omitted, targets must be zero-argument async callables.
            is_retryable: Classifies an attempt failure as retryable.
            low_priority_delay: Seconds to wait after a LOW request finishes
                before admitting the next request.
            failure_history_limit: Terminal failures kept for inspection.
            sleep: Awaitable sleep used for backoff delays.
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got: {max_concurrent}")
        if low_priority_delay < 0:
            raise ValueError(f"low_priority_delay must not be negative, got: {low_priority_delay}")

        self._policy = policy or RetryPolicy()
        self._max_concurrent = max_concurrent
        self._perform = perform
        self._is_retryable = is_retryable
        self._low_priority_delay = low_priority_delay
        self._sleep = sleep

        self._high: deque[QueuedRequest] = deque()
        self._low: deque[QueuedRequest] = deque()
        self._active: dict[str, QueuedRequest] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._failures: deque[FailureInfo] = deque(maxlen=failure_history_limit)
        self._ids = itertools.count()
        self._low_paused = False
        self._admission_scheduled = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        perform: AttemptFn | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> RequestQueue:
        """Build a queue from application settings."""
        settings = settings or get_settings()
        policy = RetryPolicy(
            max_retries=settings.request_queue_max_retries,
            initial_delay=settings.request_queue_initial_delay_ms / 1000.0,
            max_delay=settings.request_queue_max_delay_ms / 1000.0,
            backoff_multiplier=settings.request_queue_backoff_multiplier,
        )
        return cls(
            policy,
            max_concurrent=settings.request_queue_max_concurrent,
            perform=perform,
            low_priority_delay=settings.request_queue_low_priority_delay_ms / 1000.0,
            failure_history_limit=settings.request_queue_failure_history,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def policy(self) -> RetryPolicy:
        """The retry policy applied to every request."""
        return self._policy

    @property
    def max_concurrent(self) -> int:
        """Configured concurrency cap."""
        return self._max_concurrent

    @property
    def is_paused(self) -> bool:
        """Whether LOW requests are currently held back."""
        return self._low_paused

    def submit(
        self,
        target: Any,
        priority: RequestPriority | str = RequestPriority.LOW,
        *,
        max_retries: int | None = None,
    ) -> asyncio.Future[Any]:
        """Queue a request and return its outcome future.

        Must be called from a running event loop.  Admission runs on the
        next loop iteration, so a burst of submissions made without
        yielding is admitted in priority order.

        Args:
            target: Opaque descriptor passed to the attempt callable.
            priority: HIGH requests are admitted before any waiting LOW ones.
            max_retries: Per-request override of ``policy.max_retries``.

        Returns:
            A future resolving to the attempt's result, or raising the most
            recent underlying error once the request fails terminally.
        """
        loop = asyncio.get_running_loop()
        priority = RequestPriority(priority)
        if max_retries is None:
            max_retries = self._policy.max_retries
        elif max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got: {max_retries}")
        if self._perform is None and not callable(target):
            raise TypeError("target must be callable when the queue has no perform function")

        request = QueuedRequest(
            id=f"req_{next(self._ids)}",
            target=target,
            priority=priority,
            max_retries=max_retries,
            outcome=loop.create_future(),
        )
        if priority is RequestPriority.HIGH:
            self._high.append(request)
        else:
            self._low.append(request)

        log.debug(
            "request_enqueued",
            request_id=request.id,
            priority=priority.value,
            waiting=len(self._high) + len(self._low),
            active=len(self._active),
        )
        self._schedule_admission(loop)
        return request.outcome

    async def run(
        self,
        target: Any,
        priority: RequestPriority | str = RequestPriority.LOW,
        *,
        max_retries: int | None = None,
    ) -> Any:
        """Submit a request and wait for its outcome."""
        return await self.submit(target, priority, max_retries=max_retries)

    def pause_low_priority(self) -> None:
        """Hold back LOW requests; HIGH requests are still admitted."""
        self._low_paused = True
        log.info("low_priority_paused", waiting_low=len(self._low))

    def resume_low_priority(self) -> None:
        """Release held LOW requests into any free slots."""
        self._low_paused = False
        log.info("low_priority_resumed", waiting_low=len(self._low))
        self._admit_waiting()

    def get_stats(self) -> QueueStats:
        """Return a snapshot of waiting and active counts."""
        return QueueStats(
            waiting=len(self._high) + len(self._low),
            active=len(self._active),
            max_concurrent=self._max_concurrent,
            high_priority=len(self._high),
            low_priority=len(self._low),
            paused=self._low_paused,
            failures=len(self._failures),
        )

    def get_failures(self) -> list[FailureInfo]:
        """Return recorded terminal failures, oldest first."""
        return list(self._failures)

    def clear_failures(self) -> None:
        """Forget recorded terminal failures."""
        self._failures.clear()

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until no request is in flight.

        LOW requests held back by :meth:`pause_low_priority` are not waited
        for.

        Returns:
            True once idle, False if ``timeout`` seconds elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks or self._admission_scheduled:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            if self._tasks:
                await asyncio.wait(set(self._tasks), timeout=remaining)
            else:
                # Let the pending admission callback run
                await asyncio.sleep(0)
        return True

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _schedule_admission(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._admission_scheduled:
            return
        self._admission_scheduled = True
        loop.call_soon(self._run_scheduled_admission)

    def _run_scheduled_admission(self) -> None:
        self._admission_scheduled = False
        self._admit_waiting()

    def _admit_waiting(self) -> None:
        """Admit waiting requests until capacity or admissible work runs out."""
        while self._try_admit_next():
            pass

    def _try_admit_next(self) -> bool:
        """Admit the head of the waiting list if a slot is free.

        Returns:
            True if a request was admitted.
        """
        if len(self._active) >= self._max_concurrent:
            return False

        if self._high:
            request = self._high.popleft()
        elif self._low and not self._low_paused:
            request = self._low.popleft()
        else:
            return False

        self._active[request.id] = request
        request.started_at = datetime.now()
        task = asyncio.get_running_loop().create_task(
            self._run_request(request), name=f"request-queue-{request.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        log.debug(
            "request_admitted",
            request_id=request.id,
            priority=request.priority.value,
            active=len(self._active),
        )
        return True

    async def _run_request(self, request: QueuedRequest) -> None:
        """Execute a request, then free its slot and admit the next one."""
        try:
            try:
                await self._execute_with_retry(request)
            finally:
                self._active.pop(request.id, None)

            if request.priority is RequestPriority.LOW and self._low_priority_delay > 0:
                await self._sleep(self._low_priority_delay)
        finally:
            # Waiters must not be stranded when execution or spacing is interrupted
            self._schedule_admission(asyncio.get_running_loop())

    # ------------------------------------------------------------------
    # Execution + retry
    # ------------------------------------------------------------------

    async def _attempt(self, target: Any) -> Any:
        if self._perform is not None:
            return await self._perform(target)
        return await target()

    async def _execute_with_retry(self, request: QueuedRequest) -> None:
        """Attempt a request until it succeeds, fails terminally, or runs out of retries."""
        try:
            while True:
                request.state = RequestState.ATTEMPTING
                try:
                    result = await self._attempt(request.target)
                except Exception as error:
                    request.last_error = error
                    if not self._classify(request, error):
                        self._fail(request, error, reason="non_retryable")
                        return
                    if request.retry_count >= request.max_retries:
                        self._fail(request, error, reason="retries_exhausted")
                        return

                    delay = self._policy.delay_for(request.retry_count)
                    request.retry_count += 1
                    request.state = RequestState.RETRY_SCHEDULED
                    log.info(
                        "request_retry_scheduled",
                        request_id=request.id,
                        retry=request.retry_count,
                        max_retries=request.max_retries,
                        delay_seconds=delay,
                        error=str(error),
                        error_type=type(error).__name__,
                    )
                    await self._sleep(delay)
                    continue

                self._succeed(request, result)
                return
        except asyncio.CancelledError:
            request.state = RequestState.FAILED
            request.completed_at = datetime.now()
            request.outcome.cancel()
            log.warning("request_cancelled", request_id=request.id, attempts=request.attempts)
            raise
        except Exception as error:
            # Failure outside the attempt itself (backoff sleep, delay computation)
            log.exception("request_execution_failed", request_id=request.id)
            request.last_error = error
            self._fail(request, error, reason="internal_error")

    def _classify(self, request: QueuedRequest, error: Exception) -> bool:
        try:
            return self._is_retryable(error)
        except Exception:
            log.exception("request_classification_failed", request_id=request.id)
            return False

    def _succeed(self, request: QueuedRequest, result: Any) -> None:
        request.state = RequestState.SUCCEEDED
        request.completed_at = datetime.now()
        if not request.outcome.done():
            request.outcome.set_result(result)
        if request.retry_count:
            log.info("request_succeeded", request_id=request.id, attempts=request.attempts)
        else:
            log.debug("request_succeeded", request_id=request.id, attempts=request.attempts)

    def _fail(self, request: QueuedRequest, error: Exception, *, reason: str) -> None:
        request.state = RequestState.FAILED
        request.completed_at = datetime.now()
        self._failures.append(
            FailureInfo(request_id=request.id, error=error, attempts=request.attempts)
        )
        if not request.outcome.done():
            request.outcome.set_exception(error)
        log.warning(
            "request_failed",
            request_id=request.id,
            reason=reason,
            attempts=request.attempts,
            error=str(error),
            error_type=type(error).__name__,
        )

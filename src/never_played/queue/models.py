"""Queue models: priority and state enums, retry policy, request records.

A request flows through states:
QUEUED -> ATTEMPTING -> SUCCEEDED | RETRY_SCHEDULED | FAILED,
with RETRY_SCHEDULED -> ATTEMPTING after the backoff delay.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RequestPriority(str, Enum):
    """Waiting-list priority. Never preempts in-flight work."""

    HIGH = "high"  # User-triggered: profile lookups, showcase data
    LOW = "low"  # Background: friend verification, store enrichment


class RequestState(str, Enum):
    """Lifecycle states for a queued request."""

    QUEUED = "queued"
    ATTEMPTING = "attempting"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.SUCCEEDED, RequestState.FAILED)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff configuration.

    Attributes:
        max_retries: Attempts allowed beyond the first.
        initial_delay: Base backoff delay in seconds.
        max_delay: Backoff ceiling in seconds.
        backoff_multiplier: Growth factor per retry.
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got: {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got: {self.backoff_multiplier}"
            )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the zero-based ``attempt`` failed.

        Never exceeds ``max_delay``, however large ``attempt`` grows.
        """
        try:
            delay = self.initial_delay * self.backoff_multiplier**attempt
        except OverflowError:
            return self.max_delay if self.initial_delay > 0 else 0.0
        return min(self.max_delay, delay)


@dataclass
class QueuedRequest:
    """A single request held by :class:`RequestQueue`.

    Attributes:
        id: Queue-local identifier (``req_<n>``).
        target: Opaque descriptor handed to the attempt callable.
        priority: Waiting-list priority.
        max_retries: Retries allowed for this request.
        outcome: Future completed exactly once on a terminal state.
        state: Current lifecycle state.
        retry_count: Retryable failures consumed so far.
        last_error: Most recent failure, if any.
        created_at: Timestamp when the request was submitted.
        started_at: Timestamp of the first attempt.
        completed_at: Timestamp of the terminal transition.
    """

    id: str
    target: Any
    priority: RequestPriority
    max_retries: int
    outcome: asyncio.Future[Any]
    state: RequestState = RequestState.QUEUED
    retry_count: int = 0
    last_error: BaseException | None = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def attempts(self) -> int:
        """Attempts made so far."""
        if self.started_at is None:
            return 0
        return self.retry_count + 1


@dataclass(frozen=True)
class FailureInfo:
    """Record of a request that reached the FAILED state."""

    request_id: str
    error: BaseException
    attempts: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "request_id": self.request_id,
            "error": str(self.error),
            "error_type": type(self.error).__name__,
            "attempts": self.attempts,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time snapshot of queue occupancy."""

    waiting: int
    active: int
    max_concurrent: int
    high_priority: int
    low_priority: int
    paused: bool
    failures: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "waiting": self.waiting,
            "active": self.active,
            "max_concurrent": self.max_concurrent,
            "high_priority": self.high_priority,
            "low_priority": self.low_priority,
            "paused": self.paused,
            "failures": self.failures,
        }

"""Bounded concurrent retry queue for outbound calls.

Admits at most ``max_concurrent`` requests at once, orders waiters by
priority (HIGH before LOW), and retries transient failures with
exponential backoff.
"""

from never_played.queue.errors import (
    ClientRequestError,
    DegradedResponseError,
    NonRetryableError,
    NotFoundError,
    RateLimitedError,
    RequestQueueError,
    RetryableError,
    UpstreamServerError,
    default_is_retryable,
)
from never_played.queue.manager import RequestQueue
from never_played.queue.models import (
    FailureInfo,
    QueuedRequest,
    QueueStats,
    RequestPriority,
    RequestState,
    RetryPolicy,
)

__all__ = [
    "ClientRequestError",
    "DegradedResponseError",
    "FailureInfo",
    "NonRetryableError",
    "NotFoundError",
    "QueueStats",
    "QueuedRequest",
    "RateLimitedError",
    "RequestPriority",
    "RequestQueue",
    "RequestQueueError",
    "RequestState",
    "RetryPolicy",
    "RetryableError",
    "UpstreamServerError",
    "default_is_retryable",
]

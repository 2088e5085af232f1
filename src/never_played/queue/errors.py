"""Error taxonomy for the request queue.

Attempt callables signal how a failure should be handled by the exception
type they raise. :class:`RetryableError` subclasses (and any exception that
is not a :class:`NonRetryableError`) are retried with backoff;
:class:`NonRetryableError` subclasses fail the request on the spot.
"""

from __future__ import annotations

import asyncio


class RequestQueueError(Exception):
    """Base exception for failures classified by the queue layer."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RetryableError(RequestQueueError):
    """Transient failure that may succeed on a later attempt."""

    pass


class RateLimitedError(RetryableError):
    """Upstream signalled throttling (HTTP 429)."""

    pass


class DegradedResponseError(RetryableError):
    """Success-coded response whose content is not the expected data.

    Raised when a JSON endpoint answers with an HTML page, which Steam does
    when it throttles a caller, or with a redirect the client does not follow.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        content_type: str | None = None,
    ):
        super().__init__(message, status_code=status_code, url=url)
        self.content_type = content_type


class UpstreamServerError(RetryableError):
    """Upstream 5xx response."""

    pass


class NonRetryableError(RequestQueueError):
    """Failure known not to change on retry."""

    pass


class ClientRequestError(NonRetryableError):
    """Upstream rejected the request (4xx other than 429)."""

    pass


class NotFoundError(ClientRequestError):
    """Upstream resource does not exist (HTTP 404)."""

    pass


def default_is_retryable(error: BaseException) -> bool:
    """Classify an attempt failure.

    Returns:
        False for :class:`NonRetryableError` and cancellation, True otherwise.
    """
    if isinstance(error, NonRetryableError | asyncio.CancelledError):
        return False
    return True

"""Fetch with automatic retry and exponential backoff, without a queue.

For one-off calls that do not need shared concurrency limits.  Unlike the
queue, a final failed HTTP response is returned rather than raised so the
caller can inspect the status code; only transport errors are raised.
Redirects and 5xx are retried like 429; other 4xx responses are final.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from never_played.logging import get_logger
from never_played.queue.models import RetryPolicy

log = get_logger("never_played.http.retry")


def is_retryable_status(status_code: int) -> bool:
    """Any non-2xx status is retried except client errors other than 429.

    Redirects count as failures here: the client does not follow them, and
    Steam answers with one while throttling.
    """
    if 200 <= status_code < 300:
        return False
    return status_code == 429 or not 400 <= status_code < 500


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **request_kwargs: Any,
) -> httpx.Response:
    """Issue a request, retrying transient failures.

    Args:
        client: HTTP client to send the request with.
        url: Request URL.
        method: HTTP method.
        policy: Retry/backoff configuration.
        sleep: Awaitable sleep used between attempts.
        **request_kwargs: Forwarded to ``client.request``.

    Returns:
        The first successful or non-retryable response, or the last failed
        response once retries are exhausted.

    Raises:
        httpx.TransportError: The last transport error once retries are
            exhausted.
    """
    policy = policy or RetryPolicy()

    for attempt in range(policy.max_retries + 1):
        if attempt > 0:
            log.info(
                "fetch_retry_attempt",
                url=url,
                attempt=attempt,
                max_retries=policy.max_retries,
            )

        try:
            response = await client.request(method, url, **request_kwargs)
        except httpx.TransportError as e:
            log.warning("fetch_attempt_failed", url=url, attempt=attempt + 1, error=str(e))
            if attempt == policy.max_retries:
                log.error("fetch_retries_exhausted", url=url)
                raise
        else:
            if response.is_success:
                if attempt > 0:
                    log.info("fetch_succeeded_on_retry", url=url, attempt=attempt)
                return response

            if not is_retryable_status(response.status_code):
                log.info("fetch_non_retryable_status", url=url, status=response.status_code)
                return response

            if attempt == policy.max_retries:
                log.error("fetch_retries_exhausted", url=url, status=response.status_code)
                return response

        delay = policy.delay_for(attempt)
        log.debug("fetch_backoff", url=url, delay_seconds=delay)
        await sleep(delay)

    # max_retries >= 0 guarantees the loop returns or raises
    raise AssertionError("unreachable")

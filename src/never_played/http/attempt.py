"""Single HTTP attempt for the request queue, with response classification.

:class:`HttpAttempt` is the perform-one-attempt callable a
:class:`~never_played.queue.RequestQueue` is built with.  It issues one
request for an :class:`HttpTarget` and turns the response into either a
returned ``httpx.Response`` or one of the queue's classified errors, so the
queue can decide whether to retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from never_played.logging import get_logger
from never_played.queue.errors import (
    ClientRequestError,
    DegradedResponseError,
    NotFoundError,
    RateLimitedError,
    UpstreamServerError,
)

log = get_logger("never_played.http.attempt")

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class HttpTarget:
    """Descriptor of one idempotent HTTP call.

    Attributes:
        url: Absolute URL.
        method: HTTP method.
        params: Query parameters.
        headers: Extra request headers.
        json: JSON body.
        expect_json: Treat a success-coded HTML response as degraded.
    """

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    json: Any = None
    expect_json: bool = True


def is_html_response(response: httpx.Response) -> bool:
    """Whether the response declares an HTML body."""
    return "text/html" in response.headers.get("content-type", "").lower()


def _request_url(response: httpx.Response) -> str | None:
    try:
        return str(response.request.url)
    except RuntimeError:
        # Response built without a request (e.g. in tests)
        return None


def classify_response(response: httpx.Response, *, expect_json: bool = True) -> None:
    """Raise a queue error for any response that is not usable data.

    Args:
        response: The upstream response.
        expect_json: Whether the caller expects structured data.

    Raises:
        DegradedResponseError: 2xx response with an HTML body where JSON was
            expected (Steam serves an HTML page when throttling).
            Also raised for redirects and other non-error statuses that
            carry no data.
        RateLimitedError: HTTP 429.
        UpstreamServerError: HTTP 5xx.
        NotFoundError: HTTP 404.
        ClientRequestError: Any other 4xx.
    """
    status = response.status_code
    url = _request_url(response)
    reason = response.reason_phrase

    if 200 <= status < 300:
        if expect_json and is_html_response(response):
            raise DegradedResponseError(
                "Received an HTML page where JSON was expected (likely rate limited)",
                status_code=status,
                url=url,
                content_type=response.headers.get("content-type"),
            )
        return

    if status == 429:
        raise RateLimitedError(f"HTTP 429: {reason}", status_code=status, url=url)
    if status >= 500:
        raise UpstreamServerError(f"HTTP {status}: {reason}", status_code=status, url=url)
    if status == 404:
        raise NotFoundError(f"HTTP 404: {reason}", status_code=status, url=url)
    if status >= 400:
        raise ClientRequestError(f"HTTP {status}: {reason}", status_code=status, url=url)
    raise DegradedResponseError(
        f"HTTP {status}: {reason}",
        status_code=status,
        url=url,
        content_type=response.headers.get("content-type"),
    )


class HttpAttempt:
    """Perform one HTTP request for an :class:`HttpTarget`.

    Transport failures (connection errors, timeouts) propagate unchanged as
    ``httpx`` exceptions; the queue treats them as retryable.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the attempt callable.

        Args:
            client: Shared HTTP client.  When omitted one is created lazily
                and closed by :meth:`close`.
            timeout: Request timeout in seconds for the owned client.
        """
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __call__(self, target: HttpTarget) -> httpx.Response:
        client = self._get_client()
        response = await client.request(
            target.method,
            target.url,
            params=target.params,
            headers=target.headers,
            json=target.json,
        )
        log.debug(
            "http_attempt_completed",
            method=target.method,
            url=target.url,
            status=response.status_code,
        )
        classify_response(response, expect_json=target.expect_json)
        return response

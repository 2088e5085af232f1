"""HTTP plumbing for the request queue: single attempts and standalone retry."""

from never_played.http.attempt import HttpAttempt, HttpTarget, classify_response
from never_played.http.retry import fetch_with_retry

__all__ = [
    "HttpAttempt",
    "HttpTarget",
    "classify_response",
    "fetch_with_retry",
]

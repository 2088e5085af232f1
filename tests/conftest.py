"""Pytest fixtures for never-played tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear settings cache before each test."""
    from never_played.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Backoff sleep that returns immediately and remembers each delay."""
    return RecordingSleep()


@pytest.fixture
def mock_http_client():
    """Factory for an ``httpx.AsyncClient`` served by a request handler."""

    def _create(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _create

"""Tests for the bounded concurrent retry queue.

Covers admission control, priority ordering, the retry state machine,
pause/resume, failure history, and stats.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from never_played.config import Settings
from never_played.queue.errors import ClientRequestError, UpstreamServerError
from never_played.queue.manager import RequestQueue
from never_played.queue.models import QueueStats, RequestPriority, RetryPolicy

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _job(
    name: str,
    started: list[str],
    *,
    gate: asyncio.Event | None = None,
) -> Any:
    """Build an attempt that records its start and optionally waits on ``gate``."""

    async def _run() -> str:
        started.append(name)
        if gate is not None:
            await gate.wait()
        return name

    return _run


def _failing(errors: list[Exception], result: Any = "ok") -> tuple[Any, list[int]]:
    """Build an attempt that raises ``errors`` in turn, then returns ``result``."""
    calls: list[int] = []

    async def _run() -> Any:
        calls.append(len(calls) + 1)
        if len(calls) <= len(errors):
            raise errors[len(calls) - 1]
        return result

    return _run, calls


# ===========================================================================
# Admission control
# ===========================================================================


class TestCapacity:
    """Active request count never exceeds max_concurrent."""

    @pytest.mark.asyncio
    async def test_never_exceeds_max_concurrent(self) -> None:
        queue = RequestQueue(max_concurrent=3)
        in_flight = 0
        peak = 0

        async def attempt() -> bool:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return True

        futures = [
            queue.submit(attempt, RequestPriority.HIGH if i % 3 == 0 else RequestPriority.LOW)
            for i in range(12)
        ]
        results = await asyncio.gather(*futures)

        assert all(results)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_stats_reflect_waiting_and_active(self) -> None:
        queue = RequestQueue(max_concurrent=2)
        gate = asyncio.Event()
        started: list[str] = []

        futures = [queue.submit(_job(f"low{i}", started, gate=gate)) for i in range(4)]
        futures.append(queue.submit(_job("high", started, gate=gate), RequestPriority.HIGH))
        await asyncio.sleep(0)

        stats = queue.get_stats()
        assert stats.active == 2
        assert stats.waiting == 3
        assert stats.high_priority == 0
        assert stats.low_priority == 3
        assert stats.max_concurrent == 2

        gate.set()
        await asyncio.gather(*futures)
        assert queue.get_stats().active == 0
        assert queue.get_stats().waiting == 0

    def test_idle_stats(self) -> None:
        queue = RequestQueue()
        assert queue.get_stats() == QueueStats(
            waiting=0,
            active=0,
            max_concurrent=3,
            high_priority=0,
            low_priority=0,
            paused=False,
            failures=0,
        )

    @pytest.mark.asyncio
    async def test_completion_admits_next_waiter(self) -> None:
        queue = RequestQueue(max_concurrent=1)
        started: list[str] = []
        gate = asyncio.Event()

        first = queue.submit(_job("first", started, gate=gate))
        second = queue.submit(_job("second", started))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert started == ["first"]

        gate.set()
        assert await first == "first"
        assert await second == "second"
        assert started == ["first", "second"]


# ===========================================================================
# Priority ordering
# ===========================================================================


class TestPriority:
    """HIGH requests are admitted before waiting LOW requests."""

    @pytest.mark.asyncio
    async def test_high_overtakes_waiting_low(self) -> None:
        queue = RequestQueue(max_concurrent=1)
        started: list[str] = []
        gate = asyncio.Event()

        low1 = queue.submit(_job("low1", started, gate=gate))
        await asyncio.sleep(0)
        low2 = queue.submit(_job("low2", started))
        high1 = queue.submit(_job("high1", started), RequestPriority.HIGH)
        await asyncio.sleep(0)

        gate.set()
        await asyncio.gather(low1, low2, high1)

        assert started == ["low1", "high1", "low2"]

    @pytest.mark.asyncio
    async def test_burst_is_admitted_in_priority_order(self) -> None:
        queue = RequestQueue(max_concurrent=2)
        started: list[str] = []

        futures = [queue.submit(_job(f"low{i}", started)) for i in range(5)]
        futures.append(queue.submit(_job("high", started), RequestPriority.HIGH))
        await asyncio.gather(*futures)

        assert started.index("high") < 2
        assert len(started) == 6

    @pytest.mark.asyncio
    async def test_high_submitted_while_slots_busy_runs_next(self) -> None:
        queue = RequestQueue(max_concurrent=2)
        started: list[str] = []
        gate = asyncio.Event()

        futures = [queue.submit(_job(f"low{i}", started, gate=gate)) for i in range(5)]
        await asyncio.sleep(0)
        futures.append(queue.submit(_job("high", started), RequestPriority.HIGH))
        await asyncio.sleep(0)

        gate.set()
        await asyncio.gather(*futures)

        assert started[:2] == ["low0", "low1"]
        assert started[2] == "high"

    @pytest.mark.asyncio
    async def test_fifo_within_each_priority(self) -> None:
        queue = RequestQueue(max_concurrent=1)
        started: list[str] = []

        futures = [
            queue.submit(_job("a", started)),
            queue.submit(_job("x", started), RequestPriority.HIGH),
            queue.submit(_job("b", started)),
            queue.submit(_job("y", started), "high"),
            queue.submit(_job("c", started)),
        ]
        await asyncio.gather(*futures)

        assert started == ["x", "y", "a", "b", "c"]


# ===========================================================================
# Retry state machine
# ===========================================================================


class TestRetry:
    """Retry with exponential backoff and terminal classification."""

    @pytest.mark.asyncio
    async def test_retry_exhaustion_attempts_max_retries_plus_one(
        self, recording_sleep
    ) -> None:
        queue = RequestQueue(RetryPolicy(max_retries=3), sleep=recording_sleep)
        calls = 0

        async def always_fails() -> None:
            nonlocal calls
            calls += 1
            raise ConnectionError(f"attempt {calls}")

        with pytest.raises(ConnectionError, match="attempt 4"):
            await queue.submit(always_fails)

        assert calls == 4
        assert len(recording_sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially_up_to_ceiling(self, recording_sleep) -> None:
        policy = RetryPolicy(max_retries=5, initial_delay=0.5, max_delay=3.0, backoff_multiplier=2)
        queue = RequestQueue(policy, sleep=recording_sleep)
        attempt, _ = _failing([UpstreamServerError("HTTP 503")] * 6)

        with pytest.raises(UpstreamServerError):
            await queue.submit(attempt)

        assert recording_sleep.delays == pytest.approx([0.5, 1.0, 2.0, 3.0, 3.0])

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_after_one_attempt(self, recording_sleep) -> None:
        queue = RequestQueue(sleep=recording_sleep)
        attempt, calls = _failing([ClientRequestError("HTTP 400: Bad Request", status_code=400)])

        with pytest.raises(ClientRequestError) as exc_info:
            await queue.submit(attempt)

        assert exc_info.value.status_code == 400
        assert calls == [1]
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_then_success(self, recording_sleep) -> None:
        queue = RequestQueue(sleep=recording_sleep)
        attempt, calls = _failing(
            [UpstreamServerError("HTTP 502"), TimeoutError("timed out")],
            result={"players": []},
        )

        result = await queue.submit(attempt)

        assert result == {"players": []}
        assert calls == [1, 2, 3]
        assert recording_sleep.delays == pytest.approx([0.5, 1.0])
        assert queue.get_failures() == []

    @pytest.mark.asyncio
    async def test_terminal_error_is_the_underlying_exception(self, recording_sleep) -> None:
        queue = RequestQueue(RetryPolicy(max_retries=1), sleep=recording_sleep)
        first = ConnectionError("network down")
        last = UpstreamServerError("HTTP 500", status_code=500)
        attempt, _ = _failing([first, last])

        with pytest.raises(UpstreamServerError) as exc_info:
            await queue.submit(attempt)

        assert exc_info.value is last

    @pytest.mark.asyncio
    async def test_per_request_max_retries_override(self, recording_sleep) -> None:
        queue = RequestQueue(RetryPolicy(max_retries=5), sleep=recording_sleep)
        attempt, calls = _failing([ConnectionError("down")] * 3)

        with pytest.raises(ConnectionError):
            await queue.submit(attempt, max_retries=0)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_slot_is_held_during_backoff(self, recording_sleep) -> None:
        queue = RequestQueue(max_concurrent=1, sleep=recording_sleep)
        started: list[str] = []
        failed_once = False

        async def flaky() -> str:
            nonlocal failed_once
            started.append("flaky")
            if not failed_once:
                failed_once = True
                raise ConnectionError("reset")
            return "flaky"

        futures = [queue.submit(flaky), queue.submit(_job("next", started))]
        await asyncio.gather(*futures)

        assert started == ["flaky", "flaky", "next"]

    @pytest.mark.asyncio
    async def test_custom_classifier(self, recording_sleep) -> None:
        queue = RequestQueue(
            is_retryable=lambda e: not isinstance(e, KeyError),
            sleep=recording_sleep,
        )
        attempt, calls = _failing([KeyError("players")])

        with pytest.raises(KeyError):
            await queue.submit(attempt)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_classifier_error_fails_with_attempt_error(self, recording_sleep) -> None:
        def broken(error: BaseException) -> bool:
            raise RuntimeError("classifier bug")

        queue = RequestQueue(is_retryable=broken, sleep=recording_sleep)
        attempt, calls = _failing([ConnectionError("down")])

        with pytest.raises(ConnectionError):
            await queue.submit(attempt)

        assert calls == [1]


class TestSingleResolution:
    """Each outcome future is completed exactly once."""

    @pytest.mark.asyncio
    async def test_outcome_completed_once_across_retries(self, recording_sleep) -> None:
        queue = RequestQueue(sleep=recording_sleep)
        attempt, _ = _failing([ConnectionError("a"), ConnectionError("b")])
        completions: list[asyncio.Future[Any]] = []

        future = queue.submit(attempt)
        future.add_done_callback(completions.append)
        await queue.drain()
        await asyncio.sleep(0)

        assert completions == [future]
        assert future.result() == "ok"

    @pytest.mark.asyncio
    async def test_every_request_resolves(self, recording_sleep) -> None:
        queue = RequestQueue(RetryPolicy(max_retries=1), max_concurrent=2, sleep=recording_sleep)
        ok_attempt, _ = _failing([])
        flaky_attempt, _ = _failing([ConnectionError("once")])
        bad_attempt, _ = _failing([ClientRequestError("nope")])
        dead_attempt, _ = _failing([ConnectionError("1"), ConnectionError("2")])

        futures = [
            queue.submit(ok_attempt),
            queue.submit(flaky_attempt),
            queue.submit(bad_attempt),
            queue.submit(dead_attempt),
        ]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert results[0] == "ok"
        assert results[1] == "ok"
        assert isinstance(results[2], ClientRequestError)
        assert isinstance(results[3], ConnectionError)
        assert all(f.done() for f in futures)
        assert queue.get_stats().failures == 2


class TestAbnormalExecution:
    """Failures outside a normal attempt still resolve and free the queue."""

    @pytest.mark.asyncio
    async def test_very_long_retry_run_keeps_backoff_capped(self, recording_sleep) -> None:
        policy = RetryPolicy(max_retries=1100, initial_delay=0.5, max_delay=5.0)
        queue = RequestQueue(policy, max_concurrent=1, sleep=recording_sleep)
        attempt, calls = _failing([ConnectionError("down")] * 1101)
        waiter, _ = _failing([])

        failing = queue.submit(attempt)
        after = queue.submit(waiter)

        with pytest.raises(ConnectionError):
            await failing
        assert await after == "ok"

        assert len(calls) == 1101
        assert len(recording_sleep.delays) == 1100
        assert recording_sleep.delays[-1] == 5.0
        assert max(recording_sleep.delays) == 5.0

    @pytest.mark.asyncio
    async def test_cancelled_attempt_does_not_strand_waiters(self) -> None:
        queue = RequestQueue(max_concurrent=1)

        async def cancelled() -> None:
            raise asyncio.CancelledError()

        waiter, _ = _failing([])
        first = queue.submit(cancelled)
        second = queue.submit(waiter)

        assert await asyncio.wait_for(second, timeout=1) == "ok"
        assert first.cancelled()
        assert queue.get_stats().waiting == 0

    @pytest.mark.asyncio
    async def test_failing_backoff_sleep_rejects_and_admits_next(self) -> None:
        async def broken_sleep(delay: float) -> None:
            raise RuntimeError("timer unavailable")

        queue = RequestQueue(max_concurrent=1, sleep=broken_sleep)
        attempt, calls = _failing([ConnectionError("down")])
        waiter, _ = _failing([])

        first = queue.submit(attempt)
        second = queue.submit(waiter)

        with pytest.raises(RuntimeError, match="timer unavailable"):
            await first
        assert await asyncio.wait_for(second, timeout=1) == "ok"
        assert calls == [1]
        assert isinstance(queue.get_failures()[0].error, RuntimeError)

    @pytest.mark.asyncio
    async def test_failing_spacing_sleep_admits_next(self) -> None:
        async def broken_sleep(delay: float) -> None:
            raise RuntimeError("timer unavailable")

        queue = RequestQueue(max_concurrent=1, low_priority_delay=0.6, sleep=broken_sleep)
        started: list[str] = []

        first = queue.submit(_job("first", started))
        second = queue.submit(_job("second", started))

        assert await first == "first"
        assert await asyncio.wait_for(second, timeout=1) == "second"
        assert started == ["first", "second"]


# ===========================================================================
# Pause / resume, spacing, failure history
# ===========================================================================


class TestPauseResume:
    """LOW requests can be held back while HIGH requests proceed."""

    @pytest.mark.asyncio
    async def test_paused_low_waits_until_resumed(self) -> None:
        queue = RequestQueue(max_concurrent=2)
        queue.pause_low_priority()
        started: list[str] = []

        low = queue.submit(_job("low", started))
        high = queue.submit(_job("high", started), RequestPriority.HIGH)

        assert await high == "high"
        assert await queue.drain() is True
        assert started == ["high"]
        stats = queue.get_stats()
        assert stats.paused is True
        assert stats.low_priority == 1
        assert queue.is_paused

        queue.resume_low_priority()
        assert await low == "low"
        assert started == ["high", "low"]
        assert not queue.is_paused


class TestLowPrioritySpacing:
    """A finished LOW request delays the next admission."""

    @pytest.mark.asyncio
    async def test_spacing_applies_to_low_only(self, recording_sleep) -> None:
        queue = RequestQueue(low_priority_delay=0.6, sleep=recording_sleep)
        started: list[str] = []

        await queue.submit(_job("low", started))
        await queue.submit(_job("high", started), RequestPriority.HIGH)
        await queue.drain()

        assert recording_sleep.delays == [0.6]


class TestFailureHistory:
    """Terminal failures are recorded for inspection."""

    @pytest.mark.asyncio
    async def test_history_is_bounded_and_clearable(self) -> None:
        queue = RequestQueue(failure_history_limit=2)

        for i in range(3):
            attempt, _ = _failing([ClientRequestError(f"bad {i}")])
            with pytest.raises(ClientRequestError):
                await queue.submit(attempt)

        failures = queue.get_failures()
        assert [f.request_id for f in failures] == ["req_1", "req_2"]
        assert all(f.attempts == 1 for f in failures)
        assert str(failures[-1].error) == "bad 2"
        assert failures[-1].to_dict()["error_type"] == "ClientRequestError"

        queue.clear_failures()
        assert queue.get_failures() == []

    @pytest.mark.asyncio
    async def test_attempts_counted_on_exhaustion(self, recording_sleep) -> None:
        queue = RequestQueue(RetryPolicy(max_retries=2), sleep=recording_sleep)
        attempt, _ = _failing([ConnectionError("x")] * 3)

        with pytest.raises(ConnectionError):
            await queue.submit(attempt)

        assert queue.get_failures()[0].attempts == 3


# ===========================================================================
# Construction, perform callable, drain
# ===========================================================================


class TestConstruction:
    """Constructor validation and alternative wiring."""

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            RequestQueue(max_concurrent=0)

    def test_rejects_negative_spacing(self) -> None:
        with pytest.raises(ValueError):
            RequestQueue(low_priority_delay=-1)

    @pytest.mark.asyncio
    async def test_non_callable_target_without_perform(self) -> None:
        queue = RequestQueue()
        with pytest.raises(TypeError):
            queue.submit("https://api.steampowered.com")

    @pytest.mark.asyncio
    async def test_negative_max_retries_rejected(self) -> None:
        queue = RequestQueue()
        with pytest.raises(ValueError):
            queue.submit(_job("x", []), max_retries=-1)

    @pytest.mark.asyncio
    async def test_perform_receives_opaque_target(self) -> None:
        seen: list[Any] = []

        async def perform(target: Any) -> Any:
            seen.append(target)
            return target["n"] * 2

        queue = RequestQueue(perform=perform)
        assert await queue.run({"n": 21}) == 42
        assert seen == [{"n": 21}]

    def test_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            request_queue_max_concurrent=5,
            request_queue_max_retries=2,
            request_queue_initial_delay_ms=250,
            request_queue_max_delay_ms=4000,
            request_queue_backoff_multiplier=3.0,
        )
        queue = RequestQueue.from_settings(settings)

        assert queue.max_concurrent == 5
        assert queue.policy == RetryPolicy(
            max_retries=2, initial_delay=0.25, max_delay=4.0, backoff_multiplier=3.0
        )


class TestDrain:
    """drain() waits for in-flight work."""

    @pytest.mark.asyncio
    async def test_drain_times_out_then_completes(self) -> None:
        queue = RequestQueue()
        gate = asyncio.Event()
        future = queue.submit(_job("slow", [], gate=gate))

        assert await queue.drain(timeout=0.05) is False

        gate.set()
        assert await queue.drain() is True
        assert future.result() == "slow"

    @pytest.mark.asyncio
    async def test_drain_right_after_submit_waits_for_admission(self) -> None:
        queue = RequestQueue()
        future = queue.submit(_job("quick", []))

        assert await queue.drain() is True
        assert future.done()

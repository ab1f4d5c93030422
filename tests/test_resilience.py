"""Tests for switchsync.devices.resilience.

Covers: RetryPolicy, retry, PeriodicTimer, Debouncer, spawn.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from switchsync.devices.resilience import (
    Debouncer,
    PeriodicTimer,
    RetryPolicy,
    retry,
    spawn,
)


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    def test_defaults(self):
        p = RetryPolicy()
        assert p.max_retries == 5
        assert p.delay == 1.0
        assert p.attempts == 6

    def test_zero_retries_is_one_attempt(self):
        assert RetryPolicy(max_retries=0).attempts == 1


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------

class TestRetry:
    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        fn = AsyncMock(return_value="done")
        result = await retry(fn, policy=RetryPolicy(max_retries=2, delay=0.01))
        assert result == "done"
        assert fn.call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_retry(self):
        fn = AsyncMock(side_effect=[OSError("radio"), OSError("radio"), "ok"])
        result = await retry(fn, policy=RetryPolicy(max_retries=3, delay=0.01))
        assert result == "ok"
        assert fn.call_count == 3

    @pytest.mark.asyncio
    async def test_no_retries_propagates_after_one_attempt(self):
        fn = AsyncMock(side_effect=OSError("down"))
        with pytest.raises(OSError, match="down"):
            await retry(fn, policy=RetryPolicy(max_retries=0, delay=0.01))
        assert fn.call_count == 1

    @pytest.mark.asyncio
    async def test_exhaustion_makes_max_retries_plus_one_attempts(self):
        fn = AsyncMock(side_effect=OSError("down"))
        with patch("switchsync.devices.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(OSError):
                await retry(fn, policy=RetryPolicy(max_retries=2, delay=1.0))
        assert fn.call_count == 3
        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert call.args == (1.0,)

    @pytest.mark.asyncio
    async def test_delay_is_constant(self):
        fn = AsyncMock(side_effect=[OSError(), OSError(), OSError(), "ok"])
        with patch("switchsync.devices.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry(fn, policy=RetryPolicy(max_retries=5, delay=0.25))
        assert [c.args[0] for c in sleep.await_args_list] == [0.25, 0.25, 0.25]

    @pytest.mark.asyncio
    async def test_last_error_is_raised(self):
        fn = AsyncMock(side_effect=[OSError("first"), ValueError("last")])
        with pytest.raises(ValueError, match="last"):
            await retry(fn, policy=RetryPolicy(max_retries=1, delay=0.0))


# ---------------------------------------------------------------------------
# PeriodicTimer
# ---------------------------------------------------------------------------

class TestPeriodicTimer:
    @pytest.mark.asyncio
    async def test_first_tick_waits_one_interval(self):
        fired = []
        timer = PeriodicTimer("delay", lambda: fired.append(1), interval=0.1)
        timer.start()
        await asyncio.sleep(0.03)
        assert fired == []
        timer.stop()

    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        seen = []

        async def async_tick():
            seen.append("async")

        t1 = PeriodicTimer("sync", lambda: seen.append("sync"), interval=0.03)
        t2 = PeriodicTimer("async", async_tick, interval=0.03)
        t1.start()
        t2.start()
        await asyncio.sleep(0.1)
        t1.stop()
        t2.stop()
        assert "sync" in seen and "async" in seen
        assert t1.ticks >= 2

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_timer_alive(self):
        def tick():
            raise RuntimeError("refresh failed")

        timer = PeriodicTimer("failing", tick, interval=0.03)
        timer.start()
        await asyncio.sleep(0.11)
        assert timer.running
        assert timer.ticks >= 2
        timer.stop()

    @pytest.mark.asyncio
    async def test_stop_before_start_and_twice(self):
        timer = PeriodicTimer("idle", lambda: None, interval=60)
        timer.stop()
        timer.start()
        assert timer.running
        timer.stop()
        timer.stop()
        assert not timer.running


# ---------------------------------------------------------------------------
# Debouncer
# ---------------------------------------------------------------------------

class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_flush(self):
        flush = AsyncMock()
        d = Debouncer("burst", flush, delay=0.05)
        d.start()
        for _ in range(5):
            d.signal()
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.15)
        d.stop()
        assert flush.await_count == 1
        assert d.flush_count == 1

    @pytest.mark.asyncio
    async def test_spaced_signals_flush_each(self):
        flush = AsyncMock()
        d = Debouncer("spaced", flush, delay=0.03)
        d.start()
        for _ in range(3):
            d.signal()
            await asyncio.sleep(0.1)
        d.stop()
        assert flush.await_count == 3

    @pytest.mark.asyncio
    async def test_no_flush_without_signal(self):
        flush = AsyncMock()
        d = Debouncer("idle", flush, delay=0.01)
        d.start()
        await asyncio.sleep(0.05)
        d.stop()
        flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flushes_never_overlap(self):
        active = {"now": 0, "max": 0}

        async def slow_flush():
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.05)
            active["now"] -= 1

        d = Debouncer("serial", slow_flush, delay=0.01)
        d.start()
        d.signal()
        await asyncio.sleep(0.03)   # first flush running
        d.signal()
        await asyncio.sleep(0.15)
        d.stop()
        assert d.flush_count == 2
        assert active["max"] == 1

    @pytest.mark.asyncio
    async def test_flush_error_does_not_stop_loop(self):
        flush = AsyncMock(side_effect=[RuntimeError("boom"), None])
        d = Debouncer("errors", flush, delay=0.01)
        d.start()
        d.signal()
        await asyncio.sleep(0.05)
        d.signal()
        await asyncio.sleep(0.05)
        d.stop()
        assert flush.await_count == 2

    @pytest.mark.asyncio
    async def test_stop_lets_running_flush_finish(self):
        finished = asyncio.Event()

        async def slow_flush():
            await asyncio.sleep(0.05)
            finished.set()

        d = Debouncer("drain", slow_flush, delay=0.0)
        d.start()
        d.signal()
        await asyncio.sleep(0.02)
        d.stop()
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_restart_during_flush_keeps_one_flusher(self):
        active = {"now": 0, "max": 0}

        async def slow_flush():
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.05)
            active["now"] -= 1

        d = Debouncer("restart", slow_flush, delay=0.01)
        d.start()
        d.signal()
        await asyncio.sleep(0.03)   # first flush running
        d.stop()
        d.start()
        d.signal()
        await asyncio.sleep(0.15)
        d.stop()
        assert d.flush_count == 2
        assert active["max"] == 1


# ---------------------------------------------------------------------------
# spawn
# ---------------------------------------------------------------------------

class TestSpawn:
    @pytest.mark.asyncio
    async def test_result_is_returned(self):
        async def work():
            return "refreshed"

        assert await spawn(work(), name="ok") == "refreshed"

    @pytest.mark.asyncio
    async def test_failure_is_logged(self):
        from loguru import logger

        messages = []
        sink_id = logger.add(lambda m: messages.append(str(m)), level="ERROR")

        async def work():
            raise RuntimeError("radio gone")

        task = spawn(work(), name="doomed")
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)
        logger.remove(sink_id)
        assert any("doomed" in m for m in messages)

    @pytest.mark.asyncio
    async def test_cancellation_is_silent(self):
        task = spawn(asyncio.sleep(60), name="sleeper")
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

"""Timing and failure primitives shared by the device loops.

Provides:
- ``RetryPolicy``   — fixed-delay retry parameters for BLE actuation
- ``retry``         — run an async action until it succeeds or retries run out
- ``PeriodicTimer`` — refresh tick and secondary scan scheduling
- ``Debouncer``     — coalesces bursts of write signals into one flush
- ``spawn``         — background task whose failure is logged, never lost
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for constant-delay retries.

    The delay is constant between attempts: no growth, no jitter.

    Parameters
    ----------
    max_retries:
        Retries after the first attempt (0 = a single attempt).
    delay:
        Seconds to wait between attempts.
    """

    max_retries: int = 5
    delay: float = 1.0

    @property
    def attempts(self) -> int:
        return 1 + self.max_retries


DEFAULT_RETRY = RetryPolicy()


async def retry(
    action: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy = DEFAULT_RETRY,
    label: str = "action",
) -> T:
    """Await *action* until it succeeds, at most ``policy.attempts`` times.

    The last exception is re-raised once no retries are left.
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            result = await action()
        except Exception as exc:
            if attempt == policy.attempts:
                logger.warning(
                    "[Retry] {} gave up after {} attempts: {}",
                    label, policy.attempts, exc,
                )
                raise
            logger.info(
                "[Retry] {} attempt {}/{} failed ({}), next in {:.1f}s",
                label, attempt, policy.attempts, exc, policy.delay,
            )
            await asyncio.sleep(policy.delay)
        else:
            if attempt > 1:
                logger.info("[Retry] {} went through on attempt {}", label, attempt)
            return result
    raise RuntimeError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Periodic timer
# ---------------------------------------------------------------------------

class PeriodicTimer:
    """Fires *callback* every *interval* seconds until stopped.

    The first tick happens one full interval after ``start()``. A tick that
    raises is logged and the timer keeps going. *callback* may be sync or
    async.
    """

    def __init__(
        self,
        label: str,
        callback: Callable[[], Any],
        interval: float,
    ) -> None:
        self.label = label
        self.interval = interval
        self.ticks = 0
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        logger.debug("[Timer/{}] armed every {:.0f}s", self.label, self.interval)
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                outcome = self._callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning("[Timer/{}] tick #{} failed: {}", self.label, self.ticks, exc)

    def start(self) -> None:
        if not self.running:
            self._task = spawn(self._run(), name=f"timer-{self.label}")

    def stop(self) -> None:
        if self.running:
            self._task.cancel()
            logger.debug("[Timer/{}] disarmed after {} ticks", self.label, self.ticks)
        self._task = None


# ---------------------------------------------------------------------------
# Debouncer — write coalescing
# ---------------------------------------------------------------------------

class Debouncer:
    """Collapses bursts of ``signal()`` calls into a single flush.

    A flush runs once no new signal has arrived for ``delay`` seconds.
    Flushes run one at a time in a single task, so they never overlap; a
    signal that arrives while a flush is running schedules another flush
    after it. Signals are never dropped, only delayed.

    Parameters
    ----------
    label:
        Name used in log lines.
    callback:
        Async callable run on every flush. Exceptions are logged, not
        propagated.
    delay:
        Quiet period in seconds.
    """

    def __init__(
        self,
        label: str,
        callback: Callable[[], Awaitable[Any]],
        delay: float = 0.1,
    ) -> None:
        self.label = label
        self.flush_count = 0
        self._callback = callback
        self._delay = delay
        self._wanted = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._flushing = False
        self._closed = False

    def signal(self) -> None:
        """Record that a flush is wanted. Returns immediately."""
        self._wanted.set()

    async def _quiet_period(self) -> None:
        # Every signal inside the window restarts it.
        while True:
            self._wanted.clear()
            try:
                await asyncio.wait_for(self._wanted.wait(), timeout=self._delay)
            except asyncio.TimeoutError:
                return

    async def _run(self) -> None:
        while not self._closed:
            await self._wanted.wait()
            await self._quiet_period()
            self.flush_count += 1
            logger.debug("[Debouncer/{}] flush #{}", self.label, self.flush_count)
            self._flushing = True
            try:
                await self._callback()
            except Exception as exc:
                logger.error("[Debouncer/{}] flush failed: {}", self.label, exc)
            finally:
                self._flushing = False

    def start(self) -> None:
        """Start consuming signals.

        Restarting while a stopped flusher is still finishing its last flush
        revives that task instead of spawning a second one.
        """
        self._closed = False
        if self._task is None or self._task.done():
            self._task = spawn(self._run(), name=f"debounce-{self.label}")

    def stop(self) -> None:
        """Stop consuming signals. A flush already running is left to finish."""
        self._closed = True
        if self._task is None or self._task.done():
            self._task = None
        elif not self._flushing:
            self._task.cancel()
            self._task = None


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------

def spawn(coro: Awaitable[Any], *, name: str = "") -> asyncio.Task:
    """Schedule *coro* on the running loop and log it if it dies.

    Cancellation is silent. Any other exception is logged once at error
    level so a failing loop never disappears unnoticed.
    """
    task = asyncio.create_task(coro, name=name or None)
    task.add_done_callback(_log_failure)
    return task


def _log_failure(task: asyncio.Task) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error("[Task] {} died: {!r}", task.get_name(), task.exception())

"""
Retry supervisor: runs an async operation with per-attempt timeouts and
exponential backoff, publishing connecting / reconnecting / connected /
failed as it goes.

Delay before attempt n+1 is initial_delay * backoff_multiplier ** (n - 1).

Every pending backoff wait is a loop.call_later handle tagged with the
generation it was scheduled in.  cancel() and reset() bump the generation,
cancel the handles and wake the waiters, so an execute() that was sleeping
returns a cancelled result instead of starting another attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pairline.client.state import ConnectionState, StateObservable

logger = logging.getLogger(__name__)


class RetryCancelled(Exception):
    """execute() was interrupted by cancel() or reset()."""


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 1.5
    per_attempt_timeout: float = 15.0
    heartbeat_interval: float = 25.0


@dataclass(frozen=True)
class RetryResult:
    ok: bool
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, RetryCancelled)


class RetrySupervisor:
    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()
        self.state = StateObservable(ConnectionState.IDLE)
        self._generation = 0
        self._waits: set[tuple[asyncio.TimerHandle, asyncio.Future]] = set()
        self._heartbeats: set[asyncio.Task] = set()

    @property
    def connection_state(self) -> ConnectionState:
        return self.state.value

    def subscribe(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        return self.state.subscribe(listener)

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt."""
        return self.config.initial_delay * self.config.backoff_multiplier ** (attempt - 1)

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_retry: Callable[[int], None] | None = None,
        should_retry: Callable[[BaseException], bool] | None = None,
    ) -> RetryResult:
        """
        Run operation until it succeeds or attempts run out.

        on_retry(n) is called after failed attempt n when another attempt will
        follow.  should_retry(exc) may veto further attempts for errors that
        retrying cannot fix.
        """
        generation = self._generation
        last_error: BaseException | None = None
        max_attempts = max(1, self.config.max_attempts)

        for attempt in range(1, max_attempts + 1):
            if generation != self._generation:
                return RetryResult(ok=False, error=RetryCancelled(), attempts=attempt - 1)

            self.state.set(ConnectionState.CONNECTING if attempt == 1 else ConnectionState.RECONNECTING)
            try:
                value = await asyncio.wait_for(operation(), timeout=self.config.per_attempt_timeout)
            except Exception as exc:
                last_error = exc
                logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc or type(exc).__name__)
            else:
                if generation != self._generation:
                    return RetryResult(ok=False, error=RetryCancelled(), attempts=attempt)
                self.state.set(ConnectionState.CONNECTED)
                return RetryResult(ok=True, value=value, attempts=attempt)

            if should_retry is not None and not should_retry(last_error):
                self.state.set(ConnectionState.FAILED)
                return RetryResult(ok=False, error=last_error, attempts=attempt)

            if attempt < max_attempts:
                if on_retry is not None:
                    on_retry(attempt)
                if not await self._wait(self.delay_for(attempt), generation):
                    return RetryResult(ok=False, error=RetryCancelled(), attempts=attempt)

        self.state.set(ConnectionState.FAILED)
        return RetryResult(ok=False, error=last_error, attempts=max_attempts)

    async def _wait(self, delay: float, generation: int) -> bool:
        """Sleep for delay.  False if cancel()/reset() happened meanwhile."""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        handle = loop.call_later(delay, _wake, waiter)
        entry = (handle, waiter)
        self._waits.add(entry)
        try:
            await waiter
        finally:
            handle.cancel()
            self._waits.discard(entry)
        return generation == self._generation

    def heartbeat(
        self,
        fn: Callable[[], Awaitable[Any]],
        interval: float | None = None,
    ) -> asyncio.Task:
        """
        Call fn every interval seconds until cancelled.  A failed call moves
        the state to reconnecting and the next successful one back to connected;
        the loop keeps going regardless.
        """
        interval = interval if interval is not None else self.config.heartbeat_interval

        async def beat() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await fn()
                except Exception as exc:
                    logger.warning("Heartbeat failed: %s", exc)
                    self.state.set(ConnectionState.RECONNECTING)
                else:
                    self.state.set(ConnectionState.CONNECTED)

        task = asyncio.create_task(beat())
        self._heartbeats.add(task)
        task.add_done_callback(self._heartbeats.discard)
        return task

    @property
    def pending_timers(self) -> int:
        return len(self._waits) + len(self._heartbeats)

    def cancel(self) -> None:
        """Release every pending backoff wait and heartbeat."""
        self._generation += 1
        for handle, waiter in list(self._waits):
            handle.cancel()
            _wake(waiter)
        self._waits.clear()
        for task in list(self._heartbeats):
            task.cancel()
        self._heartbeats.clear()

    def reset(self) -> None:
        self.cancel()
        self.state.set(ConnectionState.IDLE)


def _wake(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)

"""
Background writer for session side effects.

Persistence and progress notifications run as asyncio tasks so that grading
never waits on I/O. Each write is retried with exponential backoff and
reports its final WriteStatus through a callback.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from kioku.domain import constants as c
from kioku.domain.models import WriteStatus

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[object]]
DoneCallback = Callable[[WriteStatus], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule for a background write.

    Attributes:
        max_attempts: Total attempts including the first (1 disables retries).
        base_delay: Delay in seconds before the second attempt.
        multiplier: Growth factor applied to the delay after each failure.
        max_delay: Upper bound on any single delay.
    """

    max_attempts: int = c.WRITE_MAX_ATTEMPTS
    base_delay: float = c.WRITE_BASE_DELAY
    multiplier: float = c.WRITE_BACKOFF_MULTIPLIER
    max_delay: float = c.WRITE_MAX_DELAY

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))


class BackgroundWriter:
    """
    Runs fire-and-forget writes on the current event loop.

    Tasks are tracked so tests and orderly shutdowns can `drain()` them.
    Nothing forces a caller to drain: unawaited writes finish or fail on their own.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        label: str,
        operation: Operation,
        on_done: DoneCallback | None = None,
    ) -> asyncio.Task:
        """
        Schedule `operation` (a zero-argument coroutine factory).

        Must be called while an event loop is running.
        """
        task = asyncio.get_running_loop().create_task(self._run(label, operation, on_done))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every submitted write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(
        self, label: str, operation: Operation, on_done: DoneCallback | None
    ) -> WriteStatus:
        status = WriteStatus.FAILED
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                await operation()
                status = WriteStatus.SAVED
                break
            except Exception as e:
                if attempt >= self.policy.max_attempts:
                    logger.error(f"{label} failed after {attempt} attempt(s): {e}")
                    break
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{self.policy.max_attempts}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        if on_done is not None:
            on_done(status)
        return status

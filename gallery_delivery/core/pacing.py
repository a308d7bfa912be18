import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class BatchPacer:
    """
    Yields control between download batches.

    The pause starts at ``base_delay``. Each batch that ended with failures
    multiplies it by ``backoff_factor`` (capped at ``max_delay``); a clean batch
    resets it.

    Example:
        ```python
        pacer = BatchPacer(base_delay=0.15, backoff_factor=2.0, max_delay=5.0)

        for batch in batches:
            failures = await run(batch)
            await pacer.pause(failures=failures)
        ```
    """

    def __init__(
        self,
        base_delay: float,
        *,
        backoff_factor: float = 1.0,
        max_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            base_delay: Pause after a clean batch in seconds.
            backoff_factor: Multiplier applied per consecutive failing batch.
            max_delay: Upper bound for the pause; defaults to ``base_delay``.
            sleep: Sleep coroutine, injectable for tests.

        Raises:
            ValueError: If a delay is negative or backoff_factor is below 1.
        """
        if base_delay < 0:
            msg = "'base_delay' must be non-negative."
            raise ValueError(msg)
        if backoff_factor < 1:
            msg = "'backoff_factor' must be at least 1."
            raise ValueError(msg)
        self._base_delay = base_delay
        self._backoff_factor = backoff_factor
        self._max_delay = max(base_delay, max_delay if max_delay is not None else base_delay)
        self._sleep = sleep
        self._failing_streak = 0

    @property
    def next_delay(self) -> float:
        """Pause the next call to ``pause`` would take if the batch was clean."""
        delay = self._base_delay * (self._backoff_factor**self._failing_streak)
        return min(delay, self._max_delay)

    async def pause(self, *, failures: int = 0) -> float:
        """
        Sleep between two batches.

        Args:
            failures: Number of failed items in the batch that just finished.

        Returns:
            The delay slept, in seconds.
        """
        if failures > 0:
            self._failing_streak += 1
        else:
            self._failing_streak = 0
        delay = self.next_delay
        if failures > 0:
            logger.debug("Backing off between batches", delay=delay, failures=failures)
        await self._sleep(delay)
        return delay

    def reset(self) -> None:
        self._failing_streak = 0

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Collapses concurrent calls for the same key into one execution, based on Go's
    golang.org/x/sync/singleflight.

    The first caller for a key starts the work; callers arriving while it is in
    flight await the same result (or exception). Once it settles the key is
    released and the next call starts fresh work.

    Example:
        ```python
        flight = SingleFlight[str]()

        async def refresh() -> str:
            ...

        # Both coroutines share one refresh() call.
        a, b = await asyncio.gather(
            flight.do("principal-1", refresh),
            flight.do("principal-1", refresh),
        )
        ```
    """

    def __init__(self) -> None:
        self._calls: dict[str, asyncio.Task[T]] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` unless a call for ``key`` is already in flight.

        Cancelling one waiter does not cancel the shared work.

        Args:
            key: Deduplication key.
            fn: Zero-argument coroutine factory.

        Returns:
            The result of the single shared execution.
        """
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._calls[key] = task
            task.add_done_callback(lambda t: self._release(key, t))
        return await asyncio.shield(task)

    def in_flight(self, key: str) -> bool:
        """Check whether work for ``key`` is currently running."""
        return key in self._calls

    def _release(self, key: str, task: asyncio.Task[T]) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        if not task.cancelled():
            # Retrieve so an exception nobody awaited is not reported as unhandled.
            task.exception()

    def __len__(self) -> int:
        return len(self._calls)

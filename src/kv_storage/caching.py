"""Shared in-flight memoization for async computations.

Lets concurrent callers share a single outstanding attempt instead of
racing duplicate calls, and keeps the completed result until reset.
"""

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class SharedTask(Generic[T]):
    """Memoizes one async computation, including while it is in flight.

    The first caller starts the computation as a task; callers that arrive
    before it finishes await that same task. A successful result is kept
    until ``reset()``. Failures and ``None`` results are not kept, so the
    next caller starts a fresh attempt.

    Example:
        namespace = SharedTask[Namespace | None]()

        async def ensure() -> Namespace | None:
            return await namespace.get(lambda: resolver.resolve("sessions"))
    """

    def __init__(self) -> None:
        """Initialize an empty memo."""
        self._task: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        """Whether an attempt is currently running."""
        return self._task is not None and not self._task.done()

    def peek(self) -> T | None:
        """Return the memoized result without waiting, or None."""
        task = self._task
        if task is None or not task.done() or task.cancelled():
            return None
        if task.exception() is not None:
            return None
        return task.result()

    async def get(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the memoized result, starting ``factory`` if needed.

        Args:
            factory: Async function computing the value

        Returns:
            Result of the shared attempt (may be from another caller)
        """
        if self._task is None:
            self._task = asyncio.ensure_future(factory())
        task = self._task

        try:
            # Shielded so one waiter being cancelled doesn't cancel the others
            result = await asyncio.shield(task)
        except BaseException:
            if task.done():
                self._discard(task)
            raise

        if result is None:
            self._discard(task)
        return result

    def reset(self) -> None:
        """Forget the memoized result."""
        self._task = None

    def _discard(self, task: "asyncio.Task[T]") -> None:
        """Drop ``task`` unless a newer attempt already replaced it."""
        if self._task is task:
            self._task = None

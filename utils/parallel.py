"""
Parallel Processing Utilities

Provides utilities for running deferred work in the background and for
gathering batches of awaitables with a concurrency limit, so that independent
per-layer fetches never block one another.
"""

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def parallel_execute(
    tasks: List[Awaitable[T]],
    max_concurrency: int = 10,
    return_exceptions: bool = True
) -> List[T]:
    """
    Execute multiple async tasks in parallel with concurrency limit.

    Args:
        tasks: List of awaitable tasks
        max_concurrency: Maximum number of concurrent tasks
        return_exceptions: If True, return exceptions in results instead of raising

    Returns:
        List of results (or exceptions if return_exceptions=True)
    """
    if not tasks:
        return []

    if len(tasks) <= max_concurrency:
        # Small batch - run all at once
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)

    # Large batch - use semaphore for concurrency control
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_with_semaphore(task: Awaitable[T]) -> T:
        async with semaphore:
            return await task

    wrapped_tasks = [run_with_semaphore(task) for task in tasks]
    return await asyncio.gather(*wrapped_tasks, return_exceptions=return_exceptions)


class DeferredTasks:
    """
    Tracks fire-and-forget coroutines.

    Each scheduled coroutine runs as its own task. Failures are logged and
    swallowed so one failed fetch never affects its siblings; nothing is
    ever cancelled.

    Usage:
        deferred = DeferredTasks("my-layer")
        deferred.schedule(fetch_count(), label="feature count 3")
        await deferred.drain()
    """

    def __init__(self, owner: str = ""):
        self.owner = owner
        self._tasks: Set[asyncio.Task] = set()
        self.failures: List[BaseException] = []

    def schedule(self, coro: Awaitable[Any], label: str = "") -> asyncio.Task:
        """Start a coroutine in the background and keep a handle on it."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, label))
        return task

    def _on_done(self, task: asyncio.Task, label: str):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.failures.append(error)
            logger.warning(f"Deferred task '{label}' for {self.owner} failed: {error}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None):
        """
        Wait until every scheduled task (including ones scheduled while
        waiting) has finished.
        """
        while self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
            if timeout is not None:
                break


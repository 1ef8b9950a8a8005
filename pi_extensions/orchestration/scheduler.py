"""
Fleet Scheduler - bounded fan-out over a list of tasks.

``min(max_concurrency, len(items))`` workers share one iterator over the task
indices. Each worker claims the next index, runs it to completion and claims
again until the iterator is exhausted. Claiming is a plain ``next()`` on the
shared iterator, which cannot interleave on a single event loop, so every
index is run exactly once.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from pi_extensions.orchestration.resolver import OrchestrationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class FleetSizeError(OrchestrationError):
    """Raised when a fleet has more tasks than the scheduler accepts."""

    def __init__(self, size: int, max_tasks: int):
        self.size = size
        self.max_tasks = max_tasks
        super().__init__(f"Too many parallel tasks ({size}). Max is {max_tasks}.")


class FleetScheduler:
    """Runs up to ``max_tasks`` jobs, at most ``max_concurrency`` at a time."""

    def __init__(self, max_tasks: int = 8, max_concurrency: int = 4):
        self.max_tasks = max(1, max_tasks)
        self.max_concurrency = max(1, max_concurrency)

    def check_size(self, count: int) -> None:
        if count > self.max_tasks:
            logger.warning("subagent.scheduler.rejected", size=count, max_tasks=self.max_tasks)
            raise FleetSizeError(count, self.max_tasks)

    async def run(
        self,
        items: Sequence[T],
        fn: Callable[[T, int], Awaitable[R]],
    ) -> list[Optional[R]]:
        """Run ``fn(item, index)`` for every item; results come back in input order.

        Returns only once every worker has drained the queue. ``fn`` is
        expected to capture per-task failures in its return value; if it
        raises anyway, the worker logs it, leaves that slot as ``None`` and
        moves on to the next index. Nothing is re-raised.
        """
        self.check_size(len(items))
        if not items:
            return []

        results: list[Optional[R]] = [None] * len(items)
        indices = iter(range(len(items)))

        async def worker() -> None:
            for index in indices:
                try:
                    results[index] = await fn(items[index], index)
                except Exception as exc:
                    logger.error("subagent.scheduler.task_raised", index=index, error=str(exc), exc_info=True)

        workers = min(self.max_concurrency, len(items))
        logger.debug("subagent.scheduler.start", tasks=len(items), workers=workers)
        await asyncio.gather(*(worker() for _ in range(workers)))
        return results

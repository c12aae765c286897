"""
Rate-limited task scheduler.

A fixed pool of ``max_concurrent`` workers drains a FIFO queue of zero-argument
async callables. Successive dispatches are spaced at least ``min_interval``
seconds apart; tasks that are already running may overlap freely. Every task
resolves to a ``TaskOutcome`` carrying its value or its error, so one failing
task never affects its siblings or the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

from tao_fanout.exceptions import SchedulerClosed

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class TaskOutcome:
    """Value or error of one scheduled task."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RateLimitedScheduler:
    """
    Bounded-concurrency, dispatch-spaced scheduler.

    Parameters:
        max_concurrent: Number of workers, i.e. the most tasks running at once.
        min_interval: Minimum seconds between two task dispatches.
        clock: Monotonic clock used for spacing (seconds).
        sleep: Coroutine used to wait out the spacing.

    ``schedule()`` only enqueues and returns a future; workers start on first
    use inside the running event loop.
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        min_interval: float = 0.1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._admission: Optional[asyncio.Lock] = None
        self._last_dispatch: Optional[float] = None
        self._closed = False
        self.dispatched = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, task: Task) -> asyncio.Future:
        """Enqueue a task. The returned future resolves to a TaskOutcome."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        if self._closed:
            future.set_result(TaskOutcome(error=SchedulerClosed("scheduler is closed")))
            return future
        self._ensure_started()
        self._queue.put_nowait((task, future))
        return future

    async def run_all(self, tasks: Iterable[Task]) -> list[TaskOutcome]:
        """Schedule every task and wait for all outcomes, in submission order."""
        futures = [self.schedule(t) for t in tasks]
        if not futures:
            return []
        return list(await asyncio.gather(*futures))

    def stop_dispatching(self) -> None:
        """
        Cooperative cancellation: no new task starts after this call.

        Tasks already running finish normally. Queued tasks resolve with a
        ``SchedulerClosed`` error.
        """
        if self._closed:
            return
        self._closed = True
        dropped = 0
        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                self._queue.task_done()
                _resolve(future, TaskOutcome(error=SchedulerClosed("batch stopped before dispatch")))
                dropped += 1
        if dropped:
            logger.warning("Scheduler stopped, %d queued task(s) not dispatched", dropped)

    async def shutdown(self) -> None:
        """Stop dispatching, let running tasks finish, then stop the workers."""
        self.stop_dispatching()
        if self._queue is not None:
            await self._queue.join()
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    def _ensure_started(self) -> None:
        if self._queue is not None:
            return
        self._queue = asyncio.Queue()
        self._admission = asyncio.Lock()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"fanout-worker-{i}")
            for i in range(self.max_concurrent)
        ]

    async def _admit(self) -> None:
        # Held across the wait so dispatches are serialized and evenly spaced.
        async with self._admission:
            if self._last_dispatch is not None:
                while True:
                    wait = self._last_dispatch + self.min_interval - self._clock()
                    if wait <= 0:
                        break
                    await self._sleep(wait)
            self._last_dispatch = self._clock()
            self.dispatched += 1

    async def _worker(self, index: int) -> None:
        while True:
            task, future = await self._queue.get()
            try:
                if future.done():
                    continue
                if not self._closed:
                    await self._admit()
                if self._closed:
                    _resolve(future, TaskOutcome(error=SchedulerClosed("batch stopped before dispatch")))
                    continue
                _resolve(future, await self._run(task))
            finally:
                self._queue.task_done()

    @staticmethod
    async def _run(task: Task) -> TaskOutcome:
        try:
            # task() inside the try: a synchronous raise is handled like an async one
            return TaskOutcome(value=await task())
        except Exception as e:
            logger.debug("Scheduled task failed: %r", e)
            return TaskOutcome(error=e)


def _resolve(future: asyncio.Future, outcome: TaskOutcome) -> None:
    # The caller may have cancelled the future while the task ran.
    if not future.done():
        future.set_result(outcome)

"""
Bounded-concurrency task execution.

A fixed pool of worker tasks drains a FIFO queue of submitted jobs, so at
most ``max_concurrency`` jobs run at once and jobs start in submission
order. Completion order is whatever the jobs make it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


class ConcurrencyLimiter:
    """
    Worker pool limiting the number of in-flight async tasks.

    Workers are started lazily on the running event loop by the first
    ``execute`` call. A failing task resolves its own future with the
    exception; the worker moves on to the next queued job.

    Example:
        limiter = ConcurrencyLimiter(3)
        text = await limiter.execute(lambda: fetch(url))
        await limiter.close()
    """

    def __init__(self, max_concurrency: int = 3):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = 0
        self._peak = 0

    @property
    def running(self) -> int:
        """Number of jobs currently executing."""
        return self._running

    @property
    def peak(self) -> int:
        """Highest number of jobs that ever executed at the same time."""
        return self._peak

    def _ensure_workers(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._workers = [
                loop.create_task(self._worker(self._queue), name=f"perch-limiter-{i}")
                for i in range(self.max_concurrency)
            ]
        return self._queue

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            factory, future = await queue.get()
            try:
                if future.cancelled():
                    continue
                self._running += 1
                self._peak = max(self._peak, self._running)
                try:
                    result = await factory()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    if not future.cancelled():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)
                finally:
                    self._running -= 1
            finally:
                queue.task_done()

    async def execute(self, task: TaskFactory[T]) -> T:
        """
        Run ``task()`` once a worker slot is free.

        Args:
            task: Zero-argument callable returning an awaitable

        Returns:
            Whatever the awaitable returns. Exceptions propagate to the
            caller only, never to other queued tasks.
        """
        queue = self._ensure_workers()
        future = asyncio.get_running_loop().create_future()
        queue.put_nowait((task, future))
        return await future

    async def map(self, tasks: Iterable[TaskFactory[Any]], *, return_exceptions: bool = False) -> list:
        """Execute every task under the limit, results in submission order."""
        return await asyncio.gather(
            *(self.execute(t) for t in tasks),
            return_exceptions=return_exceptions,
        )

    async def close(self) -> None:
        """Stop the workers. Queued jobs that never started are cancelled."""
        workers, self._workers = self._workers, []
        queue, self._queue = self._queue, None
        self._loop = None
        for w in workers:
            w.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        if queue is not None:
            while not queue.empty():
                _, future = queue.get_nowait()
                future.cancel()

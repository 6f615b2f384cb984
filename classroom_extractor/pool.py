import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


class DownloadPool:
    """Run deferred coroutines with at most ``limit`` of them in flight.

    Operations start in submission order as slots free up. Each ``submit`` returns a
    future carrying that operation's own result or exception; a failing operation never
    affects its siblings.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"pool limit must be at least 1, got {limit}")
        self.limit = limit
        self.running = 0
        self.peak = 0
        self._queue: Deque[Tuple[Operation, asyncio.Future]] = deque()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def submit(self, operation: Operation) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._queue.append((operation, future))
        self._start_next()
        return future

    def _start_next(self) -> None:
        while self._queue and self.running < self.limit:
            operation, future = self._queue.popleft()
            if future.cancelled():
                continue
            self.running += 1
            self.peak = max(self.peak, self.running)
            task = asyncio.ensure_future(self._run(operation, future))
            self._tasks.add(task)
            task.add_done_callback(lambda t, f=future: self._finished(t, f))

    def _finished(self, task: asyncio.Task, future: asyncio.Future) -> None:
        # runs even when the task was cancelled before its first step
        self._tasks.discard(task)
        self.running -= 1
        if not future.done():
            future.cancel()
        self._start_next()

    async def _run(self, operation: Operation, future: asyncio.Future) -> None:
        try:
            result = await operation()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)

    async def cancel(self) -> None:
        """Drop queued operations and cancel the ones in flight."""
        while self._queue:
            _, future = self._queue.popleft()
            future.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

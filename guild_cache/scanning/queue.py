"""
Single-worker, rate-limited task queue for outbound Hypixel calls.

Every remote call in the service goes through one ``RateLimitedQueue``:

  - **FIFO, concurrency 1** — one asyncio worker task drains the queue, so no
    two scans ever run at the same time and the reconciliation sequence needs
    no locking.
  - **Sliding-window cap** — at most ``interval_cap`` tasks *start* within any
    rolling ``interval_seconds`` window. The worker keeps the start times of
    the last ``interval_cap`` tasks and, when the window is full, sleeps until
    the oldest one ages out.
  - **Key coalescing** — ``submit()`` is a no-op while a task with the same key
    is pending or executing, so repeated requests for one player spend the
    budget once.
  - **Failure isolation** — an exception raised by a task is logged and
    discarded; the worker moves on to the next task.

``submit()`` is fire-and-forget. ``run()`` goes through the same FIFO and
budget but returns the task's result (or raises its exception) to the caller;
the level sweeper uses it to pace itself against player scans.

Nothing is persisted: pending tasks are lost on shutdown, which is fine because
re-submitting a scan is idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


@dataclass
class QueuedTask:
    """One unit of queued work.

    Attributes:
        key: Dedup key (e.g. ``"scan:<uuid>"``).
        factory: Zero-argument callable returning the coroutine to await.
        future: Set for ``run()`` callers; receives the result or exception.
    """

    key: str
    factory: TaskFactory
    future: Optional[asyncio.Future] = field(default=None, repr=False)


class RateLimitedQueue:
    """FIFO task queue with one worker and a rolling call budget.

    Args:
        interval_cap: Maximum task starts per window.
        interval_seconds: Window length in seconds.
        coalesce: Drop submissions whose key is already pending or executing.
        clock: Monotonic time source (seconds).
        sleep: Coroutine used to wait for budget; injectable for tests.
    """

    def __init__(
        self,
        interval_cap: int = 60,
        interval_seconds: float = 60.0,
        coalesce: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_cap < 1:
            raise ValueError(f"interval_cap must be >= 1, got {interval_cap}.")
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}.")
        self.interval_cap = interval_cap
        self.interval_seconds = interval_seconds
        self.coalesce = coalesce
        self._clock = clock
        self._sleep = sleep
        self._queue: Optional[asyncio.Queue[QueuedTask]] = None
        self._worker: Optional[asyncio.Task] = None
        self._starts: deque[float] = deque(maxlen=interval_cap)
        self._keys: dict[str, int] = {}
        self._current: Optional[QueuedTask] = None
        self.completed = 0
        self.failed = 0

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the worker on the running event loop (idempotent)."""
        if self._worker is not None and not self._worker.done():
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(
            self._work(), name="rate-limited-queue"
        )
        logger.info(
            "Scan queue started (cap=%d per %.0fs, coalesce=%s)",
            self.interval_cap, self.interval_seconds, self.coalesce,
        )

    async def stop(self) -> None:
        """Cancel the worker and drop pending tasks."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        dropped = 0
        if self._queue is not None:
            while not self._queue.empty():
                task = self._queue.get_nowait()
                self._queue.task_done()
                if task.future is not None and not task.future.done():
                    task.future.cancel()
                dropped += 1
        self._keys.clear()
        self._current = None
        if dropped:
            logger.warning("Scan queue stopped with %d pending task(s) dropped", dropped)
        else:
            logger.info("Scan queue stopped")

    async def join(self) -> None:
        """Wait until every queued task has been executed."""
        if self._queue is not None:
            await self._queue.join()

    # ── Submission ────────────────────────────────────────────────────────────

    def submit(self, key: str, factory: TaskFactory) -> bool:
        """Enqueue ``factory`` under ``key`` and return immediately.

        Must be called from a coroutine running on the service's event loop.

        Returns:
            ``False`` if coalescing dropped the submission, ``True`` otherwise.
        """
        if self.coalesce and key in self._keys:
            logger.debug("Task %s already pending; not queued again", key)
            return False
        self._enqueue(QueuedTask(key=key, factory=factory))
        return True

    async def run(self, key: str, factory: TaskFactory) -> Any:
        """Enqueue ``factory`` and wait for its result.

        Unlike ``submit()`` this never coalesces: the caller needs its own
        result. The task's exception, if any, is raised here.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._enqueue(QueuedTask(key=key, factory=factory, future=future))
        return await future

    def is_pending(self, key: str) -> bool:
        """Return ``True`` if a task with ``key`` is queued or executing."""
        return key in self._keys

    @property
    def pending(self) -> int:
        """Number of tasks queued or executing."""
        return sum(self._keys.values())

    def _enqueue(self, task: QueuedTask) -> None:
        self.start()
        assert self._queue is not None
        self._keys[task.key] = self._keys.get(task.key, 0) + 1
        self._queue.put_nowait(task)
        logger.debug("Queued %s (pending=%d)", task.key, self.pending)

    # ── Worker ────────────────────────────────────────────────────────────────

    async def _work(self) -> None:
        assert self._queue is not None
        while True:
            task = await self._queue.get()
            try:
                if task.future is not None and task.future.cancelled():
                    continue
                await self._acquire_slot()
                self._current = task
                await self._execute(task)
            finally:
                self._current = None
                self._release_key(task.key)
                self._queue.task_done()

    async def _acquire_slot(self) -> None:
        """Block until starting another task keeps the window under the cap."""
        while len(self._starts) >= self.interval_cap:
            wait = self._starts[0] + self.interval_seconds - self._clock()
            if wait <= 0:
                break
            logger.debug("Rate limit reached; waiting %.2fs", wait)
            await self._sleep(wait)
        self._starts.append(self._clock())

    async def _execute(self, task: QueuedTask) -> None:
        try:
            result = await task.factory()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failed += 1
            if task.future is not None:
                if not task.future.done():
                    task.future.set_exception(exc)
            else:
                logger.error("Queued task %s failed: %s", task.key, exc, exc_info=True)
            return
        self.completed += 1
        if task.future is not None and not task.future.done():
            task.future.set_result(result)

    def _release_key(self, key: str) -> None:
        remaining = self._keys.get(key, 0) - 1
        if remaining > 0:
            self._keys[key] = remaining
        else:
            self._keys.pop(key, None)

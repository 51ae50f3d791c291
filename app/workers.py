from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[None]]


class TaskHandle:
    """Cancellable reference to one-shot or recurring work in a WorkerPool."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: asyncio.Task | None = None
        self._cancelled = False
        self._running = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._running

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        """Stop future runs. A run that is already executing is left to finish."""
        self._cancelled = True
        if self._task is not None and not self._running:
            self._task.cancel()


class WorkerPool:
    """Bounded pool for timers, recurring tasks and fire-and-forget work.

    Every run acquires one of ``capacity`` slots; work scheduled beyond
    capacity waits for a slot instead of running concurrently. Waiting on a
    timer does not hold a slot.
    """

    def __init__(self, capacity: int = 10) -> None:
        self._capacity = capacity
        self._slots = asyncio.Semaphore(capacity)
        self._handles: set[TaskHandle] = set()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.done())

    def submit(self, work: Work, *, name: str = "task") -> TaskHandle:
        return self.schedule_once(work, 0.0, name=name)

    def schedule_once(
        self, work: Work, delay: float, *, name: str = "timer", handle: TaskHandle | None = None,
    ) -> TaskHandle:
        handle = handle or TaskHandle(name)

        async def _once() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            if not handle.cancelled:
                await self._run(handle, work)

        self._start(handle, _once())
        return handle

    def schedule_at_fixed_rate(
        self,
        work: Work,
        interval: float,
        *,
        initial_delay: float = 0.0,
        name: str = "recurring",
        handle: TaskHandle | None = None,
    ) -> TaskHandle:
        handle = handle or TaskHandle(name)
        self._start(handle, self._fixed_rate(handle, work, interval, initial_delay))
        return handle

    async def shutdown(self) -> None:
        self._closed = True
        handles = list(self._handles)
        for handle in handles:
            handle._cancelled = True
            if handle._task is not None:
                handle._task.cancel()
        tasks = [h._task for h in handles if h._task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Worker pool shut down (%d tasks cancelled)", len(tasks))

    def _start(self, handle: TaskHandle, coro) -> None:
        if self._closed:
            coro.close()
            raise RuntimeError("Worker pool is shut down")
        handle._task = asyncio.create_task(coro, name=handle.name)
        self._handles.add(handle)
        handle._task.add_done_callback(lambda _t: self._handles.discard(handle))

    async def _fixed_rate(
        self, handle: TaskHandle, work: Work, interval: float, initial_delay: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + initial_delay
        while not handle.cancelled:
            delay = next_run - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if handle.cancelled:
                break
            await self._run(handle, work)
            # A late run is not followed by a burst of catch-up runs
            next_run = max(next_run + interval, loop.time())

    async def _run(self, handle: TaskHandle, work: Work) -> None:
        async with self._slots:
            if handle.cancelled:
                return
            handle._running = True
            try:
                await work()
            except Exception:
                logger.exception("Task %s failed", handle.name)
            finally:
                handle._running = False

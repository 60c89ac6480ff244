"""
Bounded-concurrency background executor.

Jobs are coroutine factories queued with `add_work`; at most `limit` run at once
on the event loop. Callers that need the queue drained await `join()`.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from ...shared import get_logger

logger = get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


class BackgroundTasks:
    def __init__(self, limit: int = 20, name: str = "background"):
        self._limit = max(1, int(limit))
        self._name = name
        self._queue: deque[Job] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self.completed = 0
        self.failed = 0
        self.added = 0

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        self._limit = max(1, int(value))
        self._start_ready()

    @property
    def running(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def add_work(self, job: Job) -> None:
        """Queue `job` without blocking; it starts as soon as a slot frees up."""
        self.added += 1
        self._queue.append(job)
        self._idle.clear()
        self._start_ready()

    def _start_ready(self) -> None:
        while self._queue and len(self._tasks) < self._limit:
            job = self._queue.popleft()
            task = asyncio.ensure_future(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    async def _run(self, job: Job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failed += 1
            logger.warning("%s job failed: %s", self._name, exc, exc_info=logger.isEnabledFor(logging.DEBUG))

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.completed += 1
        self._start_ready()
        if not self._queue and not self._tasks:
            self._idle.set()

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Drop queued jobs and cancel the running ones (shutdown only)."""
        self._queue.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._idle.set()

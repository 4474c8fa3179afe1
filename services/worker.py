"""
In-process background queue for pipeline jobs.

Handlers are registered per job class; consumers drain an asyncio.Queue and
log (never propagate) handler failures so one bad job cannot stop the loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessApplication:
    application_id: str


@dataclass(frozen=True)
class ResumeDelivery:
    application_id: str


Job = object
Handler = Callable[[Job], Awaitable[None]]


class PipelineWorker:
    def __init__(self, concurrency: int = 1):
        self._concurrency = max(1, concurrency)
        self._registry: dict[type, Handler] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def register(self, job_class: type, handler: Handler) -> None:
        if job_class in self._registry:
            raise ValueError(f"[{job_class.__name__}] is already registered")
        self._registry[job_class] = handler

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def enqueue(self, job: Job) -> None:
        if type(job) not in self._registry:
            raise ValueError(f"No handler registered for {type(job).__name__}")
        self.queue.put_nowait(job)
        logger.debug("Enqueued %s", job)

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self._main_loop(i)) for i in range(self._concurrency)]
        logger.info("Pipeline worker started with %d consumer(s)", self._concurrency)

    async def _main_loop(self, index: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self._registry[type(job)](job)
                logger.info("Worker %d finished %s", index, job)
            except Exception:
                logger.exception("Worker %d failed on %s", index, job)
            finally:
                self.queue.task_done()

    async def join(self) -> None:
        """Wait until every enqueued job has been handled."""
        await self.queue.join()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Pipeline worker stopped")

"""
In-process hand-off between the orchestrator and the renderer.

The orchestrator enqueues one GenerationTask per slot once concepts exist.
A renderer takes tasks with next_task() and reports each outcome through
the `report` callable (VariationService.report_result in production).
"""

import os
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from .models import GenerationTask, RenderOutcome

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

RENDER_MAX_CONCURRENCY = int(os.getenv("RENDER_MAX_CONCURRENCY", "4"))

RenderFn = Callable[[GenerationTask], Awaitable[str]]
ReportFn = Callable[[str, RenderOutcome], Awaitable[bool]]


class RenderQueue:
    def __init__(self):
        self._queue: asyncio.Queue[GenerationTask] = asyncio.Queue()

    def enqueue_many(self, tasks: Iterable[GenerationTask]) -> int:
        count = 0
        for task in tasks:
            self._queue.put_nowait(task)
            count += 1
        return count

    async def next_task(self) -> GenerationTask:
        return await self._queue.get()

    def next_task_nowait(self) -> Optional[GenerationTask]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(
        self,
        render: RenderFn,
        report: ReportFn,
        max_concurrency: int = RENDER_MAX_CONCURRENCY,
    ) -> int:
        """
        Reference consumer: render every queued task, at most
        `max_concurrency` at a time, and report each outcome.

        A render exception becomes a failed outcome for that slot only.
        Returns the number of tasks processed.
        """
        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def run_one(task: GenerationTask) -> None:
            async with semaphore:
                try:
                    final_src = await render(task)
                    outcome = RenderOutcome(final_src=final_src)
                except Exception as e:
                    logger.warning(f"Render failed for {task.slot_id}: {e}")
                    outcome = RenderOutcome(error=str(e) or type(e).__name__)
            await report(task.slot_id, outcome)

        jobs = []
        while (task := self.next_task_nowait()) is not None:
            jobs.append(asyncio.create_task(run_one(task)))
        if jobs:
            await asyncio.gather(*jobs)
        return len(jobs)

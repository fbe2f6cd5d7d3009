"""Batch Scheduler - remux every eligible item of a group with bounded concurrency.

Items are launched in group order. Before each launch the batch announces
``[k/N] Remuxing <file>`` where k counts launches, not completions; a new
item is launched only when a slot frees up. All items share the batch's
channel.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field

from mergebox.config import settings
from mergebox.models.job import Job, JobKind, JobStatus, channel_token
from mergebox.models.media import RemuxGroup, RemuxItem
from mergebox.services.event_broadcaster import EventBroadcaster
from mergebox.services.job_runner import CompletionCallback, JobRunner

logger = logging.getLogger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 16
BATCH_COMPLETED = "Batch remux completed"


def clamp_concurrency(requested: int | None, eligible: int) -> int:
    """Clamp a requested worker count to [1, 16] and to the number of items."""
    if requested is None:
        requested = settings.remux_concurrency
    bound = max(MIN_CONCURRENCY, min(int(requested), MAX_CONCURRENCY))
    return max(MIN_CONCURRENCY, min(bound, eligible))


@dataclass
class BatchResult:
    """Outcome of one batch run."""

    group_id: str
    channel: str
    total: int
    concurrency: int
    jobs: list[Job] = field(default_factory=list)
    max_active: int = 0

    @property
    def failed(self) -> int:
        return sum(1 for job in self.jobs if job.status == JobStatus.FAILED)


class BatchScheduler:
    """Runs remux batches on top of a JobRunner."""

    def __init__(self, runner: JobRunner, broadcaster: EventBroadcaster) -> None:
        self._runner = runner
        self._broadcaster = broadcaster

    def submit_batch(
        self,
        group: RemuxGroup,
        concurrency: int | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> str:
        """Start a batch in the background and return its channel immediately."""
        channel = channel_token(JobKind.REMUX_BATCH, group.id)
        self._runner.spawn(self.run_batch(group, channel, concurrency), channel, on_complete)
        return channel

    async def run_batch(
        self, group: RemuxGroup, channel: str, concurrency: int | None = None
    ) -> BatchResult:
        items = list(group.remuxable_items)
        total = len(items)
        limit = clamp_concurrency(concurrency, total)
        result = BatchResult(group.id, channel, total, limit)

        if total == 0:
            logger.info(f"Batch remux for {group.name}: nothing to do")
            self._broadcaster.broadcast_job_status(channel, BATCH_COMPLETED)
            return result

        logger.info(f"Starting batch remux for {group.name}: {total} items, {limit} at a time")
        slots = asyncio.Semaphore(limit)
        active = 0

        async def run_item(item: RemuxItem) -> Job:
            nonlocal active
            try:
                return await self._runner.run_remux(item, channel)
            finally:
                active -= 1
                slots.release()

        tasks = []
        for launched, item in enumerate(items, start=1):
            await slots.acquire()
            self._broadcaster.broadcast_job_status(
                channel, f"[{launched}/{total}] Remuxing {os.path.basename(item.video_file)}"
            )
            active += 1
            result.max_active = max(result.max_active, active)
            tasks.append(asyncio.create_task(run_item(item)))

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Remux of {item.video_file} crashed: {outcome}", exc_info=outcome)
            else:
                result.jobs.append(outcome)

        logger.info(
            f"Batch remux for {group.name} finished: "
            f"{total - result.failed}/{total} succeeded (peak concurrency {result.max_active})"
        )
        self._broadcaster.broadcast_job_status(channel, BATCH_COMPLETED)
        return result

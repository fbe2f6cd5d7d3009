"""Job Manager - validates submissions and wires the services together.

Coordinates between the qBittorrent client, the Category Store, the Job
Runner and the Batch Scheduler. Submissions are checked against the latest
snapshot of their category; nothing is spawned for a rejected request.
"""

import logging
from enum import Enum

from mergebox.config import settings
from mergebox.core.errors import SubmissionError
from mergebox.models.job import Job
from mergebox.services.batch_scheduler import BatchResult, BatchScheduler
from mergebox.services.category_store import CategoryRefresher, CategoryStore
from mergebox.services.event_broadcaster import EventBroadcaster
from mergebox.services.event_bus import EventBus, event_bus
from mergebox.services.job_runner import JobRunner
from mergebox.services.qbittorrent import QbittorrentClient

logger = logging.getLogger(__name__)

MISSING_ID = "missing-id"
UNKNOWN_ID = "unknown-id"
NOT_MERGEABLE = "not-mergeable"
NOT_REMUXABLE = "not-remuxable"


class RemuxMode(str, Enum):
    SINGLE = "single"
    ALL = "all"


class JobManager:
    """Owns the long-lived services and accepts job submissions."""

    def __init__(
        self,
        bus: EventBus | None = None,
        client: QbittorrentClient | None = None,
        ffmpeg_path: str | None = None,
        scan_interval: float | None = None,
    ) -> None:
        self.bus = bus or event_bus
        self.broadcaster = EventBroadcaster(self.bus)
        self.client = client or QbittorrentClient()
        self.store = CategoryStore(self.client, self.broadcaster)
        self.runner = JobRunner(self.broadcaster, ffmpeg_path)
        self.batches = BatchScheduler(self.runner, self.broadcaster)
        self.refresher = CategoryRefresher(
            self.store,
            self.client,
            settings.scan_interval if scan_interval is None else scan_interval,
        )

    async def start(self) -> None:
        """Start background services."""
        self.refresher.start()
        logger.info("Job manager started")

    async def stop(self) -> None:
        """Stop background services. Running jobs are left to finish on their own."""
        await self.refresher.stop()
        await self.client.close()
        if self.runner.active_tasks:
            logger.warning(f"Stopping with {self.runner.active_tasks} job(s) still running")
        logger.info("Job manager stopped")

    # --- Submission ---

    def submit_merge(self, category_id: str | None, group_id: str | None) -> str:
        """Validate and start a merge.

        Returns:
            Channel token to follow on the event stream

        Raises:
            SubmissionError: missing-id, unknown-id or not-mergeable
        """
        if not category_id or not group_id:
            logger.warning(f"Merge requested without category or id (id={group_id!r}, category={category_id!r})")
            raise SubmissionError(MISSING_ID, "Missing category or id")

        group = self.store.lookup_merge(category_id, group_id)
        if group is None:
            logger.warning(f"Merge requested with invalid media id: {group_id}")
            raise SubmissionError(UNKNOWN_ID, "Invalid media id")
        if not group.available or not group.mergeable:
            logger.warning(f"Merge requested for unmergeable media: {group_id}")
            raise SubmissionError(NOT_MERGEABLE, "Media not available for merge")

        logger.info(f"Starting merge job: {group.name} ({group.id})")

        async def refresh_after(job: Job) -> None:
            await self.store.refresh(category_id)

        return self.runner.submit_merge(group, on_complete=refresh_after)

    def submit_remux(
        self,
        category_id: str | None,
        subject_id: str | None,
        mode: RemuxMode | str = RemuxMode.SINGLE,
        concurrency: int | None = None,
    ) -> str:
        """Validate and start a single remux or a whole-group batch.

        In ``all`` mode ``subject_id`` names a remux group; in ``single`` mode
        it names an item (a video path).

        Raises:
            SubmissionError: missing-id, unknown-id or not-remuxable
        """
        mode = RemuxMode(mode)
        if not category_id or not subject_id:
            logger.warning(f"Remux requested without category or id (id={subject_id!r}, category={category_id!r})")
            raise SubmissionError(MISSING_ID, "Missing category or id")

        async def refresh_after(_result: Job | BatchResult) -> None:
            await self.store.refresh(category_id)

        if mode == RemuxMode.ALL:
            group = self.store.lookup_remux_group(category_id, subject_id)
            if group is None:
                logger.warning(f"Batch remux requested with invalid media id: {subject_id}")
                raise SubmissionError(UNKNOWN_ID, "Invalid media id")
            if not group.available or not group.remuxable_items:
                logger.warning(f"Batch remux requested for unremuxable media: {subject_id}")
                raise SubmissionError(NOT_REMUXABLE, "Media not available for remux")
            logger.info(f"Starting batch remux job: {group.name} ({group.id})")
            return self.batches.submit_batch(group, concurrency, on_complete=refresh_after)

        item = self.store.lookup_remux_item(category_id, subject_id)
        if item is None:
            logger.warning(f"Remux requested with invalid media id: {subject_id}")
            raise SubmissionError(UNKNOWN_ID, "Invalid media id")
        if not item.available or not item.remuxable:
            logger.warning(f"Remux requested for unremuxable media: {subject_id}")
            raise SubmissionError(NOT_REMUXABLE, "Media not available for remux")
        logger.info(f"Starting remux job: {item.name}")
        return self.runner.submit_remux(item, on_complete=refresh_after)


# Global job manager instance
job_manager = JobManager()

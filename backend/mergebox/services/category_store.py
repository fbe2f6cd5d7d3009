"""Category store - last scan result per qBittorrent category.

A scan lists the category's completed torrents, classifies every torrent
twice (merge view and remux view) and swaps in a new immutable snapshot.
Readers grab the current snapshot reference and never see a half-built
one; jobs that already hold groups from an older snapshot keep them.
"""

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

from mergebox.core.classifier import build_merge_group, build_remux_group
from mergebox.core.resolver import resolve_listing
from mergebox.models.media import MergeGroup, RemuxGroup, RemuxItem
from mergebox.services.event_broadcaster import EventBroadcaster
from mergebox.services.keyed_lock import KeyedLock
from mergebox.services.qbittorrent import QbittorrentClient, ScanError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategorySnapshot:
    """Classification of one category at one point in time."""

    category_id: str
    merge: Mapping[str, MergeGroup] = field(default_factory=lambda: MappingProxyType({}))
    remux: Mapping[str, RemuxGroup] = field(default_factory=lambda: MappingProxyType({}))
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ScanResult:
    snapshot: CategorySnapshot | None = None
    error: ScanError | None = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None


class CategoryStore:
    """Owns the per-category snapshots and the scans that replace them."""

    def __init__(
        self,
        client: QbittorrentClient,
        broadcaster: EventBroadcaster | None = None,
        check_outputs: bool = True,
    ) -> None:
        self._client = client
        self._broadcaster = broadcaster
        self._check_outputs = check_outputs
        self._snapshots: dict[str, CategorySnapshot] = {}
        self._scan_locks = KeyedLock()

    def snapshot(self, category_id: str) -> CategorySnapshot | None:
        return self._snapshots.get(category_id)

    async def scan(self, category_id: str) -> ScanResult:
        """Rebuild a category from qBittorrent.

        On failure the previous snapshot stays in place and the error kind
        is returned instead of raised.
        """
        async with self._scan_locks.hold(category_id):
            torrents, error = await self._client.fetch_completed_torrents_with_files(category_id)
            if torrents is None:
                logger.warning(f"Scan of category '{category_id}' failed: {error.value}")
                return ScanResult(error=error)

            exists = os.path.exists if self._check_outputs else None
            merge: dict[str, MergeGroup] = {}
            remux: dict[str, RemuxGroup] = {}
            for torrent, files in torrents:
                listing = resolve_listing(torrent, files)
                merge_group = build_merge_group(torrent, listing, exists)
                merge[merge_group.id] = merge_group
                remux_group = build_remux_group(torrent, listing, exists)
                remux[remux_group.id] = remux_group

            snapshot = CategorySnapshot(
                category_id=category_id,
                merge=MappingProxyType(merge),
                remux=MappingProxyType(remux),
            )
            self._snapshots[category_id] = snapshot

        logger.info(
            f"Scan of category '{category_id}' completed: "
            f"torrents={len(torrents)} merge={len(merge)} remux={len(remux)}"
        )
        if self._broadcaster:
            self._broadcaster.broadcast_category_updated(category_id, len(merge), len(remux))
        return ScanResult(snapshot=snapshot)

    async def refresh(self, category_id: str) -> None:
        """Rescan after a job; failures are logged, never raised."""
        try:
            await self.scan(category_id)
        except Exception as e:
            logger.exception(f"Refresh failed for category '{category_id}': {e}")

    # --- Lookups ---

    def lookup_merge(self, category_id: str, group_id: str) -> MergeGroup | None:
        snapshot = self._snapshots.get(category_id)
        if snapshot is None:
            return None
        return snapshot.merge.get(group_id)

    def lookup_remux_group(self, category_id: str, group_id: str) -> RemuxGroup | None:
        snapshot = self._snapshots.get(category_id)
        if snapshot is None:
            return None
        return snapshot.remux.get(group_id)

    def lookup_remux_item(self, category_id: str, item_id: str) -> RemuxItem | None:
        snapshot = self._snapshots.get(category_id)
        if snapshot is None:
            return None
        for group in snapshot.remux.values():
            for item in group.items:
                if item.id == item_id:
                    return item
        return None


class CategoryRefresher:
    """Periodically rescans every category qBittorrent knows about."""

    def __init__(self, store: CategoryStore, client: QbittorrentClient, interval: float) -> None:
        self._store = store
        self._client = client
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Category refresher started (every {self._interval:g}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Category refresher stopped")

    async def refresh_all(self) -> int:
        """Scan every category once. Returns how many scans succeeded."""
        categories = await self._client.get_categories()
        if categories is None:
            logger.warning("Periodic refresh skipped: qBittorrent unavailable")
            return 0
        succeeded = 0
        for category in categories:
            result = await self._store.scan(category["id"])
            if result.ok:
                succeeded += 1
        return succeeded

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh_all()
            except Exception as e:
                logger.exception(f"Periodic refresh failed: {e}")
            await asyncio.sleep(self._interval)

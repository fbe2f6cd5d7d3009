"""Unit tests for JobManager submission validation and wiring."""

import os
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from mergebox.core.errors import SubmissionError
from mergebox.services.job_manager import JobManager
from mergebox.services.qbittorrent import QbittorrentClient

SHOW_DIR = os.path.join("/data", "Show")
SINGLE_DIR = "/data"
EP1 = os.path.join(SHOW_DIR, "ep1.mkv")
EP2 = os.path.join(SHOW_DIR, "ep2.mkv")


@pytest.fixture
def client(torrent_factory):
    client = MagicMock(spec=QbittorrentClient)
    client.fetch_completed_torrents_with_files = AsyncMock(
        return_value=(
            [
                (
                    torrent_factory(name="Show", hash="h1", save_path="/data"),
                    [{"name": "Show/ep1.mkv"}, {"name": "Show/ep2.mkv"}, {"name": "Show/ep1.ac3"}],
                ),
                (
                    torrent_factory(name="Movie.mkv", hash="h2", save_path="/data"),
                    [{"name": "Movie.mkv"}],
                ),
            ],
            None,
        )
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
async def manager(bus, client):
    manager = JobManager(bus=bus, client=client, ffmpeg_path="ffmpeg", scan_interval=0)
    manager.runner.submit_merge = MagicMock(return_value="merge-channel")
    manager.runner.submit_remux = MagicMock(return_value="remux-channel")
    manager.batches.submit_batch = MagicMock(return_value="batch-channel")
    await manager.store.scan("movies")
    return manager


@contextmanager
def rejected(reason: str):
    with pytest.raises(SubmissionError) as exc_info:
        yield
    assert exc_info.value.reason == reason


@pytest.mark.asyncio
class TestSubmitMerge:
    async def test_starts_mergeable_group(self, manager):
        assert manager.submit_merge("movies", SHOW_DIR) == "merge-channel"
        group = manager.runner.submit_merge.call_args.args[0]
        assert group.id == SHOW_DIR

    @pytest.mark.parametrize("category, group_id", [(None, SHOW_DIR), ("movies", None), ("", "")])
    async def test_missing_id(self, manager, category, group_id):
        with rejected("missing-id"):
            manager.submit_merge(category, group_id)
        manager.runner.submit_merge.assert_not_called()

    async def test_unknown_id(self, manager):
        with rejected("unknown-id"):
            manager.submit_merge("movies", "/elsewhere")
        with rejected("unknown-id"):
            manager.submit_merge("tv", SHOW_DIR)
        manager.runner.submit_merge.assert_not_called()

    async def test_single_file_is_not_mergeable(self, manager):
        with rejected("not-mergeable"):
            manager.submit_merge("movies", SINGLE_DIR)
        manager.runner.submit_merge.assert_not_called()

    async def test_completion_refreshes_category(self, manager, client):
        manager.submit_merge("movies", SHOW_DIR)
        on_complete = manager.runner.submit_merge.call_args.kwargs["on_complete"]

        await on_complete(MagicMock())
        assert client.fetch_completed_torrents_with_files.await_count == 2


@pytest.mark.asyncio
class TestSubmitRemux:
    async def test_single_item(self, manager):
        assert manager.submit_remux("movies", EP1, "single") == "remux-channel"
        assert manager.runner.submit_remux.call_args.args[0].id == EP1

    async def test_single_item_without_audio(self, manager):
        with rejected("not-remuxable"):
            manager.submit_remux("movies", EP2, "single")

    async def test_single_item_unknown(self, manager):
        with rejected("unknown-id"):
            manager.submit_remux("movies", "h1", "single")

    async def test_whole_group(self, manager):
        assert manager.submit_remux("movies", "h1", "all", 3) == "batch-channel"
        group, concurrency = manager.batches.submit_batch.call_args.args
        assert group.id == "h1"
        assert concurrency == 3

    async def test_group_without_remuxable_items(self, manager):
        with rejected("not-remuxable"):
            manager.submit_remux("movies", "h2", "all")
        manager.batches.submit_batch.assert_not_called()

    async def test_group_unknown(self, manager):
        with rejected("unknown-id"):
            manager.submit_remux("movies", EP1, "all")

    async def test_missing_id(self, manager):
        with rejected("missing-id"):
            manager.submit_remux(None, "h1", "all")


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_and_stop(self, manager, client):
        await manager.start()
        assert not manager.refresher.running
        await manager.stop()
        client.close.assert_awaited_once()

"""Unit tests for JobRunner: merge and remux jobs against a fake ffmpeg."""

import asyncio
import os

import pytest

from mergebox.models.job import JobKind, JobStatus, channel_token
from mergebox.models.media import AudioTrack, MergeGroup, RemuxItem
from mergebox.services.event_broadcaster import EventBroadcaster
from mergebox.services.job_runner import MERGE_COMPLETED, REMUX_COMPLETED, JobRunner
from tests.conftest import FFMPEG_CONCAT, FFMPEG_FAIL, FFMPEG_OK, drain, log_messages


def manifests(directory):
    return [name for name in os.listdir(directory) if name.startswith("concat-list-")]


@pytest.fixture
def runner(bus):
    return JobRunner(EventBroadcaster(bus), ffmpeg_path="ffmpeg")


@pytest.fixture
def merge_group(tmp_path):
    show = tmp_path / "Show"
    show.mkdir()
    parts = []
    for n in (1, 2):
        part = show / f"ep{n}.mkv"
        part.write_bytes(f"part{n};".encode())
        parts.append(str(part))
    return MergeGroup(
        id=str(show),
        name="Show",
        video_files=tuple(parts),
        all_files=tuple(parts),
        mergeable=True,
        output_path=str(show / "Show.mp4"),
    )


@pytest.fixture
def remux_item(tmp_path):
    video = tmp_path / "ep1.mkv"
    audio = tmp_path / "ep1.eng.ac3"
    video.touch()
    audio.touch()
    return RemuxItem(
        id=str(video),
        name="ep1.mkv",
        video_file=str(video),
        audio_tracks=(AudioTrack(str(audio), "eng"),),
        remuxable=True,
    )


@pytest.mark.asyncio
class TestMerge:
    async def test_merge_concatenates_and_cleans_up(
        self, runner, merge_group, fake_ffmpeg, subscriber
    ):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_CONCAT)
        channel = channel_token(JobKind.MERGE, merge_group.id)

        job = await runner.run_merge(merge_group, channel)

        assert job.status == JobStatus.COMPLETED
        assert job.exit_code == 0
        output = os.path.join(merge_group.id, "Show.mp4")
        with open(output, "rb") as fh:
            assert fh.read() == b"part1;part2;"
        assert manifests(merge_group.id) == []
        assert runner.jobs == []

        messages = log_messages(await drain(subscriber), channel)
        assert messages[-1] == f"\n{MERGE_COMPLETED}\n"
        assert messages[0].startswith("Opening '") and messages[0].endswith("ep1.mkv' for reading\n")

    async def test_existing_output_is_removed_first(
        self, runner, merge_group, fake_ffmpeg, subscriber
    ):
        output = os.path.join(merge_group.id, "Show.mp4")
        with open(output, "w") as fh:
            fh.write("stale")
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_FAIL)

        job = await runner.run_merge(merge_group, "chan")

        assert not os.path.exists(output)
        assert job.status == JobStatus.FAILED
        assert job.exit_code == 3
        assert log_messages(await drain(subscriber))[-1] == "\nffmpeg exited with code 3\n"

    async def test_missing_ffmpeg_reports_on_channel(
        self, runner, merge_group, tmp_path, subscriber
    ):
        runner._ffmpeg_path = str(tmp_path / "missing" / "ffmpeg")

        job = await runner.run_merge(merge_group, "chan")

        assert job.status == JobStatus.FAILED
        assert job.exit_code is None
        (message,) = log_messages(await drain(subscriber))
        assert message.startswith("\nFailed to start ffmpeg: ")
        assert manifests(merge_group.id) == []

    async def test_same_group_merges_run_one_after_another(
        self, runner, merge_group, fake_ffmpeg, subscriber
    ):
        runner._ffmpeg_path = fake_ffmpeg("sleep 0.2\n" + FFMPEG_CONCAT)

        first = runner.submit_merge(merge_group)
        await asyncio.sleep(0.05)
        second = runner.submit_merge(merge_group)
        await runner.wait_idle()

        assert first == second
        output = os.path.join(merge_group.id, "Show.mp4")
        with open(output, "rb") as fh:
            assert fh.read() == b"part1;part2;"
        assert manifests(merge_group.id) == []

        messages = log_messages(await drain(subscriber), first)
        completed = f"\n{MERGE_COMPLETED}\n"
        assert messages.count(completed) == 2
        # the second run only opens its parts after the first has finished
        assert messages.index(completed) == 2
        assert messages[-1] == completed

    async def test_unwritable_directory(self, runner, tmp_path, subscriber):
        group = MergeGroup(
            id=str(tmp_path / "gone"),
            name="Gone",
            video_files=("a.mkv", "b.mkv"),
            mergeable=True,
        )
        job = await runner.run_merge(group, "chan")

        assert job.status == JobStatus.FAILED
        (message,) = log_messages(await drain(subscriber))
        assert message.startswith("\nFailed to prepare merge: ")


@pytest.mark.asyncio
class TestRemux:
    async def test_remux_success(self, runner, remux_item, fake_ffmpeg, subscriber, tmp_path):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_OK)

        job = await runner.run_remux(remux_item, "chan")

        assert job.status == JobStatus.COMPLETED
        assert job.output_path == str(tmp_path / "ep1.remux.mkv")
        assert os.path.exists(job.output_path)
        messages = log_messages(await drain(subscriber))
        assert "frame=  10\n" in messages
        assert "frame=  20\n" in messages
        assert messages[-1] == f"\n{REMUX_COMPLETED}\n"

    async def test_never_overwrites_previous_output(self, runner, remux_item, fake_ffmpeg, tmp_path):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_OK)
        (tmp_path / "ep1.remux.mkv").write_text("keep me")

        first = await runner.run_remux(remux_item, "chan")
        second = await runner.run_remux(remux_item, "chan")

        assert first.output_path == str(tmp_path / "ep1.remux-1.mkv")
        assert second.output_path == str(tmp_path / "ep1.remux-2.mkv")
        assert (tmp_path / "ep1.remux.mkv").read_text() == "keep me"

    async def test_concurrent_jobs_get_distinct_outputs(
        self, runner, remux_item, fake_ffmpeg
    ):
        runner._ffmpeg_path = fake_ffmpeg("sleep 0.2\n" + FFMPEG_OK)

        jobs = await asyncio.gather(*(runner.run_remux(remux_item, "chan") for _ in range(3)))

        outputs = [job.output_path for job in jobs]
        assert len(set(outputs)) == 3
        assert all(job.status == JobStatus.COMPLETED for job in jobs)

    async def test_failure_exit_code(self, runner, remux_item, fake_ffmpeg, subscriber):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_FAIL)
        job = await runner.run_remux(remux_item, "chan")

        assert job.exit_code == 3
        assert log_messages(await drain(subscriber)) == [
            "Invalid data found when processing input\n",
            "\nffmpeg exited with code 3\n",
        ]


@pytest.mark.asyncio
class TestSubmission:
    async def test_submit_returns_channel_before_completion(
        self, runner, remux_item, fake_ffmpeg
    ):
        runner._ffmpeg_path = fake_ffmpeg("sleep 0.1\n" + FFMPEG_OK)
        completed = []

        async def on_complete(job):
            completed.append(job)

        channel = runner.submit_remux(remux_item, on_complete=on_complete)

        assert channel == channel_token(JobKind.REMUX, remux_item.id)
        assert completed == []
        assert runner.active_tasks == 1

        await runner.wait_idle()
        assert runner.active_tasks == 0
        assert [job.status for job in completed] == [JobStatus.COMPLETED]

    async def test_running_jobs_are_tracked_by_channel(self, runner, remux_item, fake_ffmpeg):
        runner._ffmpeg_path = fake_ffmpeg("sleep 0.2\n" + FFMPEG_OK)
        channel = runner.submit_remux(remux_item)

        await asyncio.sleep(0.05)
        (job,) = runner.jobs_for(channel)
        assert job.is_running

        await runner.wait_idle()
        assert runner.jobs_for(channel) == []

    async def test_merge_channel(self, runner, merge_group, fake_ffmpeg):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_CONCAT)
        channel = runner.submit_merge(merge_group)
        await runner.wait_idle()
        assert channel == channel_token(JobKind.MERGE, merge_group.id)

    async def test_callback_crash_is_contained(self, runner, remux_item, fake_ffmpeg):
        runner._ffmpeg_path = fake_ffmpeg(FFMPEG_OK)

        async def explode(job):
            raise RuntimeError("callback failed")

        runner.submit_remux(remux_item, on_complete=explode)
        await runner.wait_idle()
        assert runner.active_tasks == 0

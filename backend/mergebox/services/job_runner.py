"""Job Runner - supervised ffmpeg invocations.

Each merge or remux runs as an asyncio task. Output is forwarded to the
job's channel line by line as ffmpeg produces it, followed by one status
line. A failing or unstartable ffmpeg is reported on the channel and
never raised to the submitter.
"""

import asyncio
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from mergebox.config import settings
from mergebox.core.errors import TransformError
from mergebox.core.transform import (
    CONCAT_LIST_PREFIX,
    LogLine,
    ProcessExit,
    build_merge_args,
    build_remux_args,
    concat_manifest,
    merge_output_path,
    remux_output_for_job,
    stream_process,
)
from mergebox.models.job import Job, JobKind, JobStatus, channel_token
from mergebox.models.media import MergeGroup, RemuxItem
from mergebox.services.event_broadcaster import EventBroadcaster
from mergebox.services.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

MERGE_COMPLETED = "Merge completed"
REMUX_COMPLETED = "Remux completed"

CompletionCallback = Callable[[Any], Awaitable[None]]


def exit_message(returncode: int) -> str:
    return f"ffmpeg exited with code {returncode}"


class JobRunner:
    """Runs merge and remux jobs and publishes their output."""

    def __init__(self, broadcaster: EventBroadcaster, ffmpeg_path: str | None = None) -> None:
        self._broadcaster = broadcaster
        self._ffmpeg_path = ffmpeg_path
        self.jobs: list[Job] = []
        self._tasks: set[asyncio.Task] = set()
        # Remux targets handed out to jobs whose ffmpeg has not created them yet
        self._reserved_outputs: set[str] = set()
        # Merges writing the same output run one after another
        self._merge_outputs = KeyedLock()

    @property
    def ffmpeg(self) -> str:
        return self._ffmpeg_path or settings.ffmpeg_path

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    # --- Submission ---

    def submit_merge(self, group: MergeGroup, on_complete: CompletionCallback | None = None) -> str:
        """Start a merge in the background and return its channel immediately."""
        channel = channel_token(JobKind.MERGE, group.id)
        self.spawn(self.run_merge(group, channel), channel, on_complete)
        return channel

    def submit_remux(
        self,
        item: RemuxItem,
        channel: str | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> str:
        """Start a single remux in the background and return its channel immediately."""
        channel = channel or channel_token(JobKind.REMUX, item.id)
        self.spawn(self.run_remux(item, channel), channel, on_complete)
        return channel

    def spawn(
        self,
        job_coro: Coroutine[Any, Any, Any],
        channel: str,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        """Run a job coroutine as a tracked task, then hand its result to ``on_complete``."""

        async def run() -> None:
            result = await job_coro
            if on_complete is not None:
                await on_complete(result)

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, channel))

    def _on_task_done(self, task: asyncio.Task, channel: str) -> None:
        """Drop a finished task and log any unexpected crash."""
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Job task for channel {channel} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Job task for channel {channel} crashed: {exc}", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait until every submitted job (and its callback) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Execution ---

    async def run_merge(self, group: MergeGroup, channel: str) -> Job:
        """Concatenate a group's video parts into ``{name}.mp4`` in its directory."""
        directory = group.id
        output_path = merge_output_path(directory, group.name)
        job = self._register(Job(channel, JobKind.MERGE, group.id, output_path))

        if self._merge_outputs.locked(output_path):
            logger.info(f"Merge into {output_path} already running; waiting for it to finish")
        async with self._merge_outputs.hold(output_path):
            logger.info(
                f"Preparing merge: {group.name} ({len(group.video_files)} parts) -> {output_path}"
            )
            try:
                if os.path.exists(output_path):
                    os.unlink(output_path)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=directory,
                    prefix=CONCAT_LIST_PREFIX,
                    suffix=".txt",
                    delete=False,
                ) as fh:
                    manifest_path = fh.name
                    fh.write(concat_manifest(group.video_files))
            except OSError as e:
                logger.error(f"Could not prepare merge for {group.name}: {e}")
                self._broadcaster.broadcast_job_status(channel, f"Failed to prepare merge: {e}")
                return self._finish(job, None)

            args = build_merge_args(self.ffmpeg, manifest_path, output_path)
            try:
                returncode = await self._execute(job, args, MERGE_COMPLETED)
            finally:
                try:
                    os.unlink(manifest_path)
                except OSError as e:
                    logger.warning(f"Failed to remove concat list {manifest_path}: {e}")
        return self._finish(job, returncode)

    async def run_remux(self, item: RemuxItem, channel: str) -> Job:
        """Remux a video with its external audio tracks into a fresh ``.mkv``."""
        # Path choice and reservation happen before the first await
        output_path = remux_output_for_job(item.video_file, exists=self._output_taken)
        self._reserved_outputs.add(output_path)
        job = self._register(Job(channel, JobKind.REMUX, item.id, output_path))
        try:
            logger.info(
                f"Preparing remux: {item.name} ({len(item.audio_tracks)} audio tracks) "
                f"-> {output_path}"
            )
            args = build_remux_args(self.ffmpeg, item.video_file, item.audio_tracks, output_path)
            returncode = await self._execute(job, args, REMUX_COMPLETED)
        finally:
            self._reserved_outputs.discard(output_path)
        return self._finish(job, returncode)

    def _output_taken(self, path: str) -> bool:
        return path in self._reserved_outputs or os.path.exists(path)

    def _register(self, job: Job) -> Job:
        self.jobs.append(job)
        return job

    def jobs_for(self, channel: str) -> list[Job]:
        """Running jobs publishing on a channel."""
        return [job for job in self.jobs if job.channel == channel]

    async def _execute(self, job: Job, args: list[str], success_message: str) -> int | None:
        """Stream ffmpeg output to the job's channel and publish the status line.

        Returns:
            ffmpeg's exit code, or None if it could not be started
        """
        returncode = None
        try:
            async for record in stream_process(args):
                if isinstance(record, LogLine):
                    self._broadcaster.broadcast_job_line(job.channel, record.text)
                elif isinstance(record, ProcessExit):
                    returncode = record.returncode
        except TransformError as e:
            logger.error(f"{job.kind.value} job for {job.subject_id} failed to start: {e}")
            self._broadcaster.broadcast_job_status(job.channel, str(e))
            return None

        if returncode == 0:
            logger.info(f"ffmpeg {job.kind.value} finished: {job.output_path}")
            self._broadcaster.broadcast_job_status(job.channel, success_message)
        else:
            logger.error(f"ffmpeg {job.kind.value} process finished with code {returncode}")
            self._broadcaster.broadcast_job_status(job.channel, exit_message(returncode))
        return returncode

    def _finish(self, job: Job, returncode: int | None) -> Job:
        job.exit_code = returncode
        job.status = JobStatus.COMPLETED if returncode == 0 else JobStatus.FAILED
        self.jobs = [running for running in self.jobs if running is not job]
        return job

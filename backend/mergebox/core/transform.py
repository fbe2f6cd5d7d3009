"""Transform - ffmpeg CLI wrapper.

Builds ffmpeg argument vectors for stream-copy concatenation and remuxing,
picks non-clobbering output paths, and runs ffmpeg as an async generator of
output lines terminated by a single exit record.
"""

import asyncio
import codecs
import logging
import os
import re
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass

from mergebox.core.errors import TransformError
from mergebox.models.media import AudioTrack

logger = logging.getLogger(__name__)

CONCAT_LIST_PREFIX = "concat-list-"
READ_CHUNK_SIZE = 4096

_LINE_END = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class LogLine:
    """One line of ffmpeg output, without its terminator."""

    text: str
    stream: str  # "stdout" or "stderr"


@dataclass(frozen=True)
class ProcessExit:
    """Terminal record of a process run."""

    returncode: int


# --- Output paths ---


def remux_output_preview(video_path: str) -> str:
    """Preferred remux target: ``x.remux.mkv`` for mkv sources, ``x.mkv`` otherwise."""
    directory, file_name = os.path.split(video_path)
    stem, ext = os.path.splitext(file_name)
    if ext.lower() == ".mkv":
        return os.path.join(directory, f"{stem}.remux.mkv")
    return os.path.join(directory, f"{stem}.mkv")


def remux_output_for_job(
    video_path: str, exists: Callable[[str], bool] = os.path.exists
) -> str:
    """First free remux target: the preferred path, then ``-1``, ``-2``, ..."""
    preferred = remux_output_preview(video_path)
    if not exists(preferred):
        return preferred

    stem = preferred[: -len(".mkv")]
    counter = 1
    candidate = f"{stem}-{counter}.mkv"
    while exists(candidate):
        counter += 1
        candidate = f"{stem}-{counter}.mkv"
    return candidate


def merge_output_path(directory: str, name: str) -> str:
    return os.path.join(directory, f"{name}.mp4")


# --- Arguments ---


def _quote_concat_path(path: str) -> str:
    # Close the quote, emit an escaped quote, reopen
    return "'" + path.replace("'", "'\\''") + "'"


def concat_manifest(paths: Iterable[str]) -> str:
    """Concat demuxer input list, one ``file '...'`` line per part, in order."""
    return "\n".join(f"file {_quote_concat_path(path)}" for path in paths)


def build_merge_args(ffmpeg: str, manifest_path: str, output_path: str) -> list[str]:
    return [
        ffmpeg,
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        manifest_path,
        "-c",
        "copy",
        output_path,
    ]


def build_remux_args(
    ffmpeg: str,
    video_path: str,
    tracks: Sequence[AudioTrack],
    output_path: str,
) -> list[str]:
    """Video stream of input 0, first audio stream of every external track,
    then whatever audio the video already carries, all stream-copied."""
    args = [ffmpeg, "-i", video_path]
    for track in tracks:
        args += ["-i", track.path]

    args += ["-map", "0:v:0"]
    for index, track in enumerate(tracks):
        args += ["-map", f"{index + 1}:a:0"]
        if track.label:
            args += [f"-metadata:s:a:{index}", f"title={track.label}"]
    args += ["-map", "0:a?"]
    args += ["-c", "copy", output_path]
    return args


# --- Process streaming ---


class LineSplitter:
    """Incrementally splits text on ``\\n``, ``\\r\\n`` and bare ``\\r``.

    ffmpeg redraws its progress line with ``\\r``, so a bare carriage return
    ends a line too. A ``\\r`` at the very end of the buffer is held back in
    case the next chunk starts with ``\\n``.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        self._buffer += text
        lines = []
        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            lines.append(self._buffer[: match.start()])
            self._buffer = self._buffer[match.end() :]
        return lines

    def flush(self) -> list[str]:
        rest, self._buffer = self._buffer, ""
        if rest.endswith("\r"):
            rest = rest[:-1]
        return [rest] if rest else []


async def _pump(
    reader: asyncio.StreamReader | None,
    stream: str,
    queue: "asyncio.Queue[LogLine | None]",
) -> None:
    """Forward one pipe to the queue line by line; ``None`` marks EOF."""
    try:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        splitter = LineSplitter()
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in splitter.feed(decoder.decode(chunk)):
                await queue.put(LogLine(line, stream))
        for line in splitter.feed(decoder.decode(b"", final=True)) + splitter.flush():
            await queue.put(LogLine(line, stream))
    finally:
        await queue.put(None)


async def stream_process(argv: Sequence[str]) -> AsyncIterator[LogLine | ProcessExit]:
    """Run a process and yield its output as it arrives, then its exit status.

    stdout and stderr are read concurrently; lines from each pipe keep their
    order, lines from different pipes interleave as the OS delivers them.
    Each call starts a new process. There is no timeout.

    Raises:
        TransformError: the process could not be started
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TransformError(f"Failed to start {os.path.basename(argv[0])}: {e}") from e

    logger.info(f"Started {os.path.basename(argv[0])} (pid {proc.pid}): {' '.join(argv)}")

    queue: asyncio.Queue[LogLine | None] = asyncio.Queue()
    readers = [
        asyncio.create_task(_pump(proc.stdout, "stdout", queue)),
        asyncio.create_task(_pump(proc.stderr, "stderr", queue)),
    ]
    try:
        open_streams = len(readers)
        while open_streams:
            item = await queue.get()
            if item is None:
                open_streams -= 1
                continue
            yield item

        returncode = await proc.wait()
        logger.info(f"Process {proc.pid} exited with code {returncode}")
        yield ProcessExit(returncode)
    finally:
        for reader_task in readers:
            if not reader_task.done():
                reader_task.cancel()

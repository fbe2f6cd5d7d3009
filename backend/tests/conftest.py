"""Core pytest fixtures for Mergebox tests."""

import stat
import sys
import textwrap

import pytest

from mergebox.services.event_bus import EventBus, Subscriber

# Fake ffmpeg bodies. Every script finds the output path as its last argument.
FFMPEG_OK = """\
for last; do :; done
echo "ffmpeg version 6.1-fake" >&2
printf 'frame=  10\\rframe=  20\\r' >&2
echo "muxing done"
: > "$last"
exit 0
"""

FFMPEG_FAIL = """\
echo "Invalid data found when processing input" >&2
exit 3
"""

# Concatenates the files named in the concat list ($6) into the output
FFMPEG_CONCAT = """\
for last; do :; done
: > "$last"
sed -n "s/^file '\\(.*\\)'$/\\1/p" "$6" | while IFS= read -r part || [ -n "$part" ]; do
  echo "Opening '$part' for reading" >&2
  cat "$part" >> "$last"
done
exit 0
"""


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Factory writing an executable shell script named ``ffmpeg``."""
    if sys.platform == "win32":
        pytest.skip("fake ffmpeg is a POSIX shell script")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def make(body: str = FFMPEG_OK) -> str:
        script = bin_dir / "ffmpeg"
        script.write_text("#!/bin/sh\n" + textwrap.dedent(body))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return make


@pytest.fixture
def bus():
    """Fresh event bus, isolated from the application singleton."""
    return EventBus()


@pytest.fixture
def subscriber(bus) -> Subscriber:
    """A subscriber registered on the test bus."""
    return bus.subscribe()


async def drain(subscriber: Subscriber) -> list:
    """Every event currently queued for a subscriber, in delivery order."""
    return [await subscriber.get() for _ in range(subscriber.pending())]


def log_messages(events, channel: str | None = None) -> list[str]:
    """Messages of ``log`` events, optionally restricted to one channel."""
    return [
        event.data["message"]
        for event in events
        if event.kind == "log" and (channel is None or event.data["channel"] == channel)
    ]


@pytest.fixture
def torrent_factory():
    """Build qBittorrent torrent records with sensible defaults."""

    def make(name="Show.S01", hash="abc123", save_path="/data", content_path=None, **extra):
        record = {
            "name": name,
            "hash": hash,
            "save_path": save_path,
            "content_path": content_path if content_path is not None else f"{save_path}/{name}",
        }
        record.update(extra)
        return record

    return make

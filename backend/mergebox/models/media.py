"""Classified media groups produced by a category scan.

Instances are immutable: a rescan builds new ones and swaps the whole
category snapshot, it never edits a group in place.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MergeGroup:
    """Video parts of one torrent that can be concatenated into a single file."""

    id: str  # logical directory of the torrent
    name: str
    video_files: tuple[str, ...] = ()
    all_files: tuple[str, ...] = ()
    available: bool = True
    mergeable: bool = False
    warning: str | None = None
    output_path: str = ""
    output_exists: bool = False  # advisory only


@dataclass(frozen=True)
class AudioTrack:
    """An external audio file matched to a video, with an optional display label."""

    path: str
    label: str = ""


@dataclass(frozen=True)
class RemuxItem:
    """One video file plus the external audio tracks that belong to it."""

    id: str  # full path of the video file
    name: str
    video_file: str
    audio_tracks: tuple[AudioTrack, ...] = ()
    output_path: str = ""
    available: bool = True
    remuxable: bool = False
    warning: str | None = None
    output_exists: bool = False  # advisory only

    @property
    def audio_files(self) -> tuple[str, ...]:
        return tuple(track.path for track in self.audio_tracks)


@dataclass(frozen=True)
class RemuxGroup:
    """All remux candidates of one torrent."""

    id: str  # torrent hash
    name: str
    path: str
    items: tuple[RemuxItem, ...] = field(default_factory=tuple)
    available: bool = True
    warning: str | None = None

    @property
    def remuxable_items(self) -> tuple[RemuxItem, ...]:
        return tuple(item for item in self.items if item.remuxable)

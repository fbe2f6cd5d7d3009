"""Classifier - Merge and Remux candidate detection.

Derives two independent views from a resolved torrent listing:

* a MergeGroup: the top-level video parts that can be concatenated;
* a RemuxGroup: each top-level video paired with the external audio files
  whose names start with the video's name.

Both derivations are pure. Only the optional ``exists`` predicate touches
the filesystem, and only to fill the advisory ``output_exists`` flags.
"""

import logging
import os
import re
from collections.abc import Callable, Mapping
from typing import Any

from mergebox.core.resolver import (
    ResolvedListing,
    TorrentFile,
    base_name,
    is_audio_file,
    is_video_file,
    normalize_stem,
)
from mergebox.core.transform import remux_output_preview
from mergebox.models.media import AudioTrack, MergeGroup, RemuxGroup, RemuxItem

logger = logging.getLogger(__name__)

WARNING_NO_FILES = "qBittorrent returned no files"
WARNING_NO_VIDEOS = "No video files found"
WARNING_SINGLE_FILE = "Single-file torrent; merge not needed"
WARNING_NO_VIDEO = "No video file found"
WARNING_NO_AUDIO = "No matching external audio tracks found"

ExistsPredicate = Callable[[str], bool]

_DIGITS = re.compile(r"(\d+)")
_LABEL_STRIP = ".-_ "


def natural_sort_key(file_name: str) -> tuple:
    """Case-insensitive, numeric-aware key: "part2" sorts before "part10".

    re.split with a capture group alternates text and digit runs, so the
    key compares str with str and int with int at every position. The raw
    name breaks ties between names that only differ in case or zero padding.
    """
    parts = _DIGITS.split(file_name.casefold())
    key = tuple(int(part) if index % 2 else part for index, part in enumerate(parts))
    return (key, file_name)


def _video_entries(listing: ResolvedListing) -> list[TorrentFile]:
    videos = [entry for entry in listing.top_level if is_video_file(entry.relative_name)]
    return sorted(videos, key=lambda entry: natural_sort_key(entry.relative_name))


def stem_matches(video_stem: str, audio_stem: str) -> bool:
    """True when the audio stem is the video stem, optionally followed by a tag.

    The character after the shared prefix must not be alphanumeric, so
    ``movie.part1.eng`` matches ``movie.part1`` but ``movie.part10`` does not.
    Both stems are expected case-folded.
    """
    if not audio_stem.startswith(video_stem):
        return False
    rest = audio_stem[len(video_stem) :]
    return not rest or not rest[0].isalnum()


def audio_label(video_stem: str, audio_name: str) -> str:
    """Label an external track by what its stem adds to the video's stem.

    ``Movie.mkv`` + ``Movie.eng.ac3`` -> ``eng``; an exact stem match has no label.
    The shared prefix is measured case-folded, so ``Straße`` covers ``STRASSE``.
    """
    stem = os.path.splitext(base_name(audio_name))[0]
    prefix_length = len(video_stem.casefold())
    cut = folded = 0
    while cut < len(stem) and folded < prefix_length:
        folded += len(stem[cut].casefold())
        cut += 1
    return stem[cut:].strip(_LABEL_STRIP)


def build_merge_group(
    torrent: Mapping[str, Any],
    listing: ResolvedListing,
    exists: ExistsPredicate | None = None,
) -> MergeGroup:
    """Classify a torrent's top-level video parts for concatenation."""
    videos = _video_entries(listing)
    mergeable = len(videos) >= 2

    warning = None
    if not listing.file_names:
        warning = WARNING_NO_FILES
    elif not videos:
        warning = WARNING_NO_VIDEOS
    elif len(videos) == 1:
        warning = WARNING_SINGLE_FILE

    group_id = (
        listing.directory
        or torrent.get("content_path")
        or torrent.get("save_path")
        or torrent.get("hash")
        or listing.name
    )
    output_path = os.path.join(listing.directory, f"{listing.name}.mp4") if listing.directory else ""

    return MergeGroup(
        id=group_id,
        name=listing.name,
        video_files=tuple(entry.full_path for entry in videos),
        all_files=tuple(entry.full_path for entry in listing.top_level),
        available=True,
        mergeable=mergeable,
        warning=warning,
        output_path=output_path,
        output_exists=bool(exists and output_path and exists(output_path)),
    )


def build_remux_group(
    torrent: Mapping[str, Any],
    listing: ResolvedListing,
    exists: ExistsPredicate | None = None,
) -> RemuxGroup:
    """Pair each top-level video with the external audio tracks that match it."""
    videos = _video_entries(listing)
    # Audio may live in subfolders (e.g. "Audio/ep1.eng.ac3"), so use every entry
    audio_pool = [entry for entry in listing.all_entries if is_audio_file(entry.relative_name)]

    group_id = (
        torrent.get("hash")
        or listing.directory
        or torrent.get("content_path")
        or torrent.get("save_path")
        or listing.name
    )
    group_path = listing.directory or torrent.get("save_path") or ""

    if not videos:
        return RemuxGroup(
            id=group_id,
            name=listing.name,
            path=group_path,
            items=(),
            available=True,
            warning=WARNING_NO_VIDEO,
        )

    items = []
    for video in videos:
        video_stem = normalize_stem(video.relative_name)
        tracks = tuple(
            AudioTrack(
                path=audio.full_path,
                label=audio_label(video_stem, audio.relative_name),
            )
            for audio in audio_pool
            if stem_matches(video_stem, normalize_stem(audio.relative_name))
        )
        output_path = remux_output_preview(video.full_path)
        items.append(
            RemuxItem(
                id=video.full_path,
                name=base_name(video.relative_name),
                video_file=video.full_path,
                audio_tracks=tracks,
                output_path=output_path,
                available=True,
                remuxable=bool(tracks),
                warning=None if tracks else WARNING_NO_AUDIO,
                output_exists=bool(exists and exists(output_path)),
            )
        )

    return RemuxGroup(
        id=group_id,
        name=listing.name,
        path=group_path,
        items=tuple(items),
        available=True,
    )

"""Resolver - turns a qBittorrent file listing into paths on disk.

qBittorrent reports a torrent's save path plus a flat list of member names.
Multi-file torrents usually nest everything under a folder named after the
torrent; loose-file torrents put members straight into the save path. This
module works out which layout applies and produces absolute paths for every
member.
"""

import logging
import ntpath
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mkv", ".avi", ".mov", ".m4v"})

AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mka",
        ".aac",
        ".ac3",
        ".eac3",
        ".dts",
        ".flac",
        ".mp3",
        ".ogg",
        ".opus",
        ".wav",
        ".m4a",
    }
)

_SEPARATORS = re.compile(r"[\\/]")


@dataclass(frozen=True)
class TorrentFile:
    """A torrent member: its name below the detected root and its absolute path."""

    relative_name: str
    full_path: str


@dataclass(frozen=True)
class ResolvedListing:
    """File listing of one torrent, resolved against its save path."""

    name: str
    base_path: str
    directory: str
    top_level: tuple[TorrentFile, ...] = ()
    all_entries: tuple[TorrentFile, ...] = ()
    file_names: tuple[str, ...] = field(default_factory=tuple)


def _extension(file_name: str) -> str:
    # ntpath.splitext understands both separator styles
    return ntpath.splitext(file_name)[1].lower()


def is_video_file(file_name: str) -> bool:
    return _extension(file_name) in VIDEO_EXTENSIONS


def is_audio_file(file_name: str) -> bool:
    return _extension(file_name) in AUDIO_EXTENSIONS


def base_name(file_name: str) -> str:
    """Last path component, whichever separator the name uses."""
    return _SEPARATORS.split(file_name)[-1]


def normalize_stem(file_name: str) -> str:
    """Case-folded base name with its extension stripped."""
    return os.path.splitext(base_name(file_name))[0].casefold()


def _has_separator(name: str) -> bool:
    return "/" in name or "\\" in name


def _join(base_path: str, raw_name: str) -> str:
    if not base_path:
        return raw_name
    return os.path.join(base_path, *_SEPARATORS.split(raw_name))


def detect_root_folder(torrent_name: str | None, file_names: Iterable[str]) -> str:
    """Return the torrent name if members live in a folder of that name, else ''."""
    if not torrent_name:
        return ""
    prefix = f"{torrent_name}/"
    win_prefix = f"{torrent_name}\\"
    if any(name.startswith(prefix) or name.startswith(win_prefix) for name in file_names):
        return torrent_name
    return ""


def resolve_listing(
    torrent: Mapping[str, Any], files: Iterable[Mapping[str, Any]] | None
) -> ResolvedListing:
    """Resolve a torrent's flat member list into top-level and full listings.

    Args:
        torrent: Torrent record from qBittorrent (name, hash, save_path, content_path)
        files: Records from the per-torrent file listing, each with a ``name``

    Returns:
        ResolvedListing. Never raises on malformed records; unusable entries
        are dropped.
    """
    torrent_name = torrent.get("name") or ""
    name = torrent_name or torrent.get("hash") or "Torrent"
    file_names = tuple(
        entry["name"]
        for entry in (files or [])
        if isinstance(entry, Mapping) and isinstance(entry.get("name"), str)
    )

    root_folder = detect_root_folder(torrent_name, file_names)
    base_path = torrent.get("save_path") or ""
    content_path = torrent.get("content_path") or ""

    directory = base_path
    if root_folder and base_path:
        directory = os.path.join(base_path, root_folder)
    elif not directory and content_path:
        directory = os.path.dirname(content_path)

    prefixes = (f"{root_folder}/", f"{root_folder}\\") if root_folder else ()

    top_level: list[TorrentFile] = []
    all_entries: list[TorrentFile] = []
    for raw_name in file_names:
        full_path = _join(base_path, raw_name)
        all_entries.append(TorrentFile(relative_name=raw_name, full_path=full_path))

        relative_name = raw_name
        for prefix in prefixes:
            if raw_name.startswith(prefix):
                relative_name = raw_name[len(prefix) :]
                break
        if _has_separator(relative_name):
            continue
        top_level.append(TorrentFile(relative_name=relative_name, full_path=full_path))

    logger.debug(
        f"Resolved '{name}': {len(top_level)} top-level of {len(all_entries)} entries "
        f"in {directory or '<unknown>'}"
    )
    return ResolvedListing(
        name=name,
        base_path=base_path,
        directory=directory,
        top_level=tuple(top_level),
        all_entries=tuple(all_entries),
        file_names=file_names,
    )

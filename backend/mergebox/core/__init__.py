"""Core modules for Mergebox."""

from mergebox.core.classifier import build_merge_group, build_remux_group
from mergebox.core.resolver import resolve_listing
from mergebox.core.transform import stream_process

__all__ = ["resolve_listing", "build_merge_group", "build_remux_group", "stream_process"]

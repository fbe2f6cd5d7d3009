"""Data models for Mergebox."""

from mergebox.models.job import Job, JobKind, JobStatus, channel_token
from mergebox.models.media import AudioTrack, MergeGroup, RemuxGroup, RemuxItem

__all__ = [
    "AudioTrack",
    "MergeGroup",
    "RemuxGroup",
    "RemuxItem",
    "Job",
    "JobKind",
    "JobStatus",
    "channel_token",
]

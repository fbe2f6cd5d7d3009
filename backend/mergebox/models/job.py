"""In-memory job record for a running ffmpeg invocation."""

import base64
from dataclasses import dataclass
from enum import Enum


class JobKind(str, Enum):
    """What a job does; also the prefix of its channel token."""

    MERGE = "merge"
    REMUX = "remux"
    REMUX_BATCH = "remux-group"


class JobStatus(str, Enum):
    """Lifecycle of a job. Terminal jobs are dropped from the runner."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def channel_token(kind: JobKind, subject_id: str) -> str:
    """Deterministic channel for a job kind and subject.

    Base64 keeps arbitrary paths safe inside an event frame.
    """
    raw = f"{kind.value}:{subject_id}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


@dataclass
class Job:
    """A submitted job, tracked while its subprocess is alive."""

    channel: str
    kind: JobKind
    subject_id: str
    output_path: str = ""
    status: JobStatus = JobStatus.RUNNING
    exit_code: int | None = None

    @property
    def is_running(self) -> bool:
        return self.status == JobStatus.RUNNING

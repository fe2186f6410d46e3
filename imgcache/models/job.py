"""
Data structures describing persisted cleanup jobs.
"""

import json
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

PAYLOAD_DIRECTORY_KEY = "directory"
MIN_PERIODIC_INTERVAL = timedelta(minutes=15)


class JobKind(Enum):
    """The two flavours of cleanup job."""

    PERIODIC = "periodic"
    ONE_TIME = "one_time"


class JobState(Enum):
    """Lifecycle states of a job row."""

    ENQUEUED = "enqueued"  # Waiting for its next due time
    RUNNING = "running"  # Claimed by a scheduler
    SUCCEEDED = "succeeded"  # Terminal, one-time jobs only
    FAILED = "failed"  # Terminal, one-time jobs only


def encode_payload(directory: str) -> str:
    """Serializes the job payload: a single string field holding the directory."""
    return json.dumps({PAYLOAD_DIRECTORY_KEY: directory})


def decode_payload(payload: str) -> str | None:
    """Extracts the directory from a serialized payload, or None if malformed."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    directory = data.get(PAYLOAD_DIRECTORY_KEY)
    return directory if isinstance(directory, str) and directory else None


@dataclass
class JobRecord:
    """A snapshot of one row of the job table."""

    job_id: int
    kind: JobKind
    payload: str
    state: JobState
    next_due: float
    attempts: int = 0
    unique_key: str | None = None
    interval_seconds: float | None = None
    last_run: float | None = None
    last_error: str | None = None
    created_at: float = 0.0
    claimed_by: str | None = None
    lease_until: float | None = None

    @property
    def directory(self) -> str | None:
        return decode_payload(self.payload)

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

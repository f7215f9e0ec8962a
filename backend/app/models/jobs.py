"""Job record, patch and snapshot models for the conversion pipeline."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    STARTING = "starting"
    DOWNLOADING = "downloading"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)


# forward order of the pipeline; ERROR sits outside it
STATUS_ORDER = [
    JobStatus.QUEUED,
    JobStatus.STARTING,
    JobStatus.DOWNLOADING,
    JobStatus.CONVERTING,
    JobStatus.DONE,
]


class EventKind(str, Enum):
    UPDATE = "update"
    DOWNLOAD_PROGRESS = "download-progress"
    CONVERT_PROGRESS = "convert-progress"
    MESSAGE = "message"
    DONE = "done"
    ERROR = "error"


class JobSnapshot(BaseModel):
    """Complete public state of a job; every event carries one."""
    status: JobStatus
    progress: int
    url: Optional[str] = None
    error: Optional[str] = None


class JobRecord(BaseModel):
    """Tracks the lifecycle of one fetch + transcode job."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    url: Optional[str] = None
    error: Optional[str] = None
    source_url: Optional[str] = None
    last_surfaced_percent: Optional[int] = None  # last convert percentage broadcast
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(status=self.status, progress=self.progress, url=self.url, error=self.error)


class JobPatch(BaseModel):
    """Partial update; only fields explicitly set are merged."""
    status: Optional[JobStatus] = None
    progress: Optional[int] = None
    url: Optional[str] = None
    error: Optional[str] = None
    last_surfaced_percent: Optional[int] = None


def _clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def _moves_backward(current: JobStatus, target: JobStatus) -> bool:
    if target == JobStatus.ERROR:
        return False
    return STATUS_ORDER.index(target) < STATUS_ORDER.index(current)


def apply_patch(record: JobRecord, patch: JobPatch) -> JobRecord:
    """
    merge a patch into a record and return the new record

    terminal records are returned unchanged, backward status moves are dropped,
    and progress never decreases unless the status changes with the same patch
    """
    if record.is_terminal:
        return record

    changes = patch.model_dump(exclude_unset=True)
    for key in ("status", "progress"):
        if key in changes and changes[key] is None:
            del changes[key]
    if not changes:
        return record

    status = changes.get("status", record.status)
    if status != record.status and _moves_backward(record.status, status):
        del changes["status"]
        status = record.status

    if "progress" in changes:
        progress = _clamp_progress(changes["progress"])
        if status == record.status and progress < record.progress:
            progress = record.progress
        changes["progress"] = progress

    changes["updated_at"] = datetime.utcnow()
    return record.model_copy(update=changes)

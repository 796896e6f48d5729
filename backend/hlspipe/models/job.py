"""Job record model."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from hlspipe.errors import InvalidStatusTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Processing status of a job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.FAILED)


# Allowed forward moves; processing -> processing is a no-op re-entry.
_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.READY, JobStatus.FAILED},
    JobStatus.READY: set(),
    JobStatus.FAILED: set(),
}


class Variant(BaseModel):
    """One completed rendition of a job."""

    format: str  # 'hls'
    height: int
    bitrate_kbps: int
    path: str  # relative to the job's output directory
    size_bytes: int = 0
    ready_at: Optional[datetime] = None


class Job(BaseModel):
    """Durable record of one uploaded media item."""

    id: str
    original_filename: str
    mime: str
    size_bytes: int = 0
    checksum: Optional[str] = None  # sha256 hex

    # Status tracking
    status: JobStatus = JobStatus.QUEUED
    error_message: Optional[str] = None

    # Probed attributes
    duration_sec: float = 0.0
    width: int = 0
    height: int = 0
    fps: float = 0.0

    storage_base: str
    variants: list[Variant] = Field(default_factory=list)

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def transition_to(self, status: JobStatus):
        """
        Move the job to a new status.

        Args:
            status: Target status

        Raises:
            InvalidStatusTransition: If the move is backward or leaves a
                terminal status
        """
        status = JobStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise InvalidStatusTransition(
                f"job {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def fail(self, message: str):
        """Mark the job failed, passing through processing if still queued."""
        if self.status == JobStatus.QUEUED:
            self.transition_to(JobStatus.PROCESSING)
        self.transition_to(JobStatus.FAILED)
        self.error_message = message

"""In-memory job status tracker.

Process-lifetime state only: records are lost on restart and the webhook is
the only durable signal of a job's outcome. One tracker instance is shared by
all concurrently running jobs, so every access goes through a lock.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from scene_composer.exceptions import InvalidJobTransitionError, JobNotFoundError

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Composition job status."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Forward-only happy path; FAILED is reachable from every non-terminal state.
_NEXT_STATUS: dict[JobStatus, JobStatus] = {
    JobStatus.PENDING: JobStatus.DOWNLOADING,
    JobStatus.DOWNLOADING: JobStatus.PROCESSING,
    JobStatus.PROCESSING: JobStatus.UPLOADING,
    JobStatus.UPLOADING: JobStatus.COMPLETED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Job:
    """Immutable snapshot of a job record."""

    id: str
    status: JobStatus = JobStatus.PENDING
    stage: str = "Queued"
    progress: int = 0
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data: dict[str, Any] = {
            "job_id": self.id,
            "status": self.status.value,
            "stage": self.stage,
            "progress": self.progress,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


_UPDATABLE_FIELDS = {"status", "stage", "progress", "error"}


class JobTracker:
    """Thread-safe in-memory job store with TTL-based pruning of finished jobs."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._jobs: dict[str, Job] = {}
        self._touched: dict[str, float] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds

    def create(self, job_id: str) -> Job:
        """Register a new job at status=pending, progress=0."""
        with self._lock:
            self._prune_expired()
            if job_id in self._jobs:
                raise InvalidJobTransitionError(f"Job already exists: {job_id}")
            job = Job(id=job_id)
            self._jobs[job_id] = job
            self._touched[job_id] = time.monotonic()
        logger.info(f"[JOB {job_id}] created")
        return job

    def update(self, job_id: str, **fields: Any) -> Job:
        """Merge fields into the job record (last write wins per field).

        Raises:
            JobNotFoundError: If the job is unknown
            InvalidJobTransitionError: If the job is already terminal or the
                status change is not allowed
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        if "status" in fields:
            fields["status"] = JobStatus(fields["status"])
        if "progress" in fields:
            fields["progress"] = max(0, min(100, int(fields["progress"])))

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status.is_terminal:
                raise InvalidJobTransitionError(
                    f"Job {job_id} already {job.status.value}; cannot update"
                )

            new_status = fields.get("status", job.status)
            if new_status != job.status and not _transition_allowed(job.status, new_status):
                raise InvalidJobTransitionError(
                    f"Job {job_id}: {job.status.value} -> {new_status.value} is not allowed"
                )

            updated = replace(job, **fields, updated_at=_utcnow())
            self._jobs[job_id] = updated
            self._touched[job_id] = time.monotonic()

        if "status" in fields and new_status != job.status:
            logger.info(f"[JOB {job_id}] {job.status.value} -> {new_status.value}")
        return updated

    def get(self, job_id: str) -> Job | None:
        """Current snapshot, or None if the job is unknown."""
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def prune(self) -> int:
        """Remove finished jobs older than the TTL. Returns number removed."""
        with self._lock:
            return self._prune_expired()

    def _prune_expired(self) -> int:
        """Remove expired terminal entries (called under lock)."""
        now = time.monotonic()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status.is_terminal and now - self._touched[job_id] > self._ttl
        ]
        for job_id in expired:
            del self._jobs[job_id]
            del self._touched[job_id]
        return len(expired)


def _transition_allowed(current: JobStatus, new: JobStatus) -> bool:
    if current.is_terminal:
        return False
    if new == JobStatus.FAILED:
        return True
    return _NEXT_STATUS.get(current) == new

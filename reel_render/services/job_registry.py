"""Job registry.

Jobs are created by the API layer and mutated only by the render executor.
Every operation is atomic for its key and readers always receive copies, so
no caller can observe or cause a half-written job.

The in-memory registry is per process; a shared backend would implement the
same JobRegistry interface.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class JobKind(str, Enum):
    PROCESS = "process"
    EXPORT = "export"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})

# Running jobs are capped below 100; only mark_done writes 100
MAX_RUNNING_PROGRESS = 99.0


@dataclass
class Job:
    id: str
    kind: JobKind
    status: JobStatus = JobStatus.PROCESSING
    progress: float = 0.0
    output_path: str | None = None
    filename: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_message(self) -> dict:
        """Compact status pushed to progress subscribers."""
        message: dict = {"status": self.status.value, "progress": self.progress}
        if self.status == JobStatus.ERROR:
            message["error"] = self.error
        return message


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobRegistry(ABC):
    """Interface for job state storage."""

    @abstractmethod
    def create(
        self,
        kind: JobKind,
        output_path: str | None = None,
        filename: str | None = None,
        job_id: str | None = None,
    ) -> Job:
        """Register a new processing job and return a copy of it.

        Callers that need the id before the job exists (to name its output)
        may pass one from new_job_id().
        """

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        """Return a copy of the job, or None if unknown."""

    @abstractmethod
    def update_progress(self, job_id: str, progress: float) -> None:
        """Raise the job's progress. Never lowers it, never reaches 100."""

    @abstractmethod
    def mark_done(self, job_id: str) -> bool:
        """Move a processing job to done with progress 100."""

    @abstractmethod
    def mark_error(self, job_id: str, message: str) -> bool:
        """Move a processing job to error."""

    @abstractmethod
    def all(self) -> list[Job]:
        """Copies of every job."""

    @abstractmethod
    def clear(self) -> int:
        """Forget every job and return how many were removed."""


class InMemoryJobRegistry(JobRegistry):
    """Thread-safe in-memory registry."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(
        self,
        kind: JobKind,
        output_path: str | None = None,
        filename: str | None = None,
        job_id: str | None = None,
    ) -> Job:
        job = Job(id=job_id or new_job_id(), kind=JobKind(kind), output_path=output_path, filename=filename)
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = job
            logger.info(f"[JOB] Created {job.kind.value} job {job.id}")
            return replace(job)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def update_progress(self, job_id: str, progress: float) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            clamped = max(0.0, min(MAX_RUNNING_PROGRESS, float(progress)))
            if clamped > job.progress:
                job.progress = clamped

    def mark_done(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = JobStatus.DONE
            job.progress = 100.0
        logger.info(f"[JOB] {job_id} done")
        return True

    def mark_error(self, job_id: str, message: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = JobStatus.ERROR
            job.error = message
        logger.error(f"[JOB] {job_id} failed: {message}")
        return True

    def all(self) -> list[Job]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def clear(self) -> int:
        with self._lock:
            count = len(self._jobs)
            self._jobs.clear()
        logger.info(f"[JOB] Cleared {count} jobs")
        return count

"""
Job-state store for anonymization runs.

Lifecycle: queued -> processing -> completed | failed. A job is failed
externally (cancel or timeout) by polling and transitioning its status;
the running batch itself is never interrupted from here.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.errors import JobConflictError, JobNotFoundError


logger = logging.getLogger(__name__)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = (QUEUED, PROCESSING, COMPLETED, FAILED)
TERMINAL_STATUSES = (COMPLETED, FAILED)


@dataclass
class JobStatus:
    """Current state of one job."""
    job_id: str
    status: str = QUEUED
    progress: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in (QUEUED, PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key in ('created_at', 'started_at', 'completed_at'):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d


class InMemoryJobStore:
    """Thread-safe job-state store held in process memory."""

    def __init__(self):
        self._jobs: Dict[str, JobStatus] = {}
        self._lock = threading.Lock()

    def create_job(self) -> str:
        """
        Register a new queued job.

        Raises:
            JobConflictError: If another job is queued or processing
        """
        with self._lock:
            for job in self._jobs.values():
                if job.is_active:
                    raise JobConflictError(job.job_id)
            job_id = uuid.uuid4().hex
            self._jobs[job_id] = JobStatus(job_id=job_id)

        logger.info(f"Created anonymization job {job_id}")
        return job_id

    def _get(self, job_id: str) -> JobStatus:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def set_status(
        self,
        job_id: str,
        status: str,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None
    ) -> JobStatus:
        """
        Transition a job. Terminal jobs are left unchanged.

        Returns:
            The job's status after the call
        """
        if status not in STATUSES:
            raise ValueError(f"Unknown job status {status!r}; expected one of {STATUSES}")

        with self._lock:
            job = self._get(job_id)
            if job.is_terminal:
                logger.debug(f"Job {job_id} already {job.status}; ignoring transition to {status}")
                return job

            if status == PROCESSING and job.started_at is None:
                job.started_at = datetime.now()
            if status in TERMINAL_STATUSES:
                job.completed_at = datetime.now()

            job.status = status
            if progress is not None:
                job.progress = progress
            if error is not None:
                job.error = error
            if result is not None:
                job.result = dict(result)

        if status == FAILED:
            logger.error(f"Job {job_id} failed: {error}")
        elif status == COMPLETED:
            logger.info(f"Job {job_id} completed")
        return job

    def update_progress(self, job_id: str, progress: int) -> None:
        """Record progress of a processing job."""
        with self._lock:
            job = self._get(job_id)
            if job.status == PROCESSING:
                job.progress = progress

    def get_status(self, job_id: str) -> JobStatus:
        with self._lock:
            return self._get(job_id)

    def active_job(self) -> Optional[JobStatus]:
        with self._lock:
            for job in self._jobs.values():
                if job.is_active:
                    return job
        return None

    def list_jobs(self, limit: int = 10) -> List[JobStatus]:
        """Most recent jobs first."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def cancel(self, job_id: str, reason: str = "cancelled") -> JobStatus:
        """Fail an active job with the given reason."""
        return self.set_status(job_id, FAILED, error=reason)

    def expire_stale(self, timeout_seconds: int, now: Optional[datetime] = None) -> List[str]:
        """
        Fail jobs that have been processing for longer than the timeout.

        Returns:
            Ids of the jobs that were expired
        """
        now = now or datetime.now()
        limit = timedelta(seconds=timeout_seconds)
        with self._lock:
            stale = [
                job.job_id for job in self._jobs.values()
                if job.status == PROCESSING and job.started_at is not None
                and now - job.started_at > limit
            ]
        for job_id in stale:
            self.set_status(job_id, FAILED, error="timed out")
        return stale

"""
Error taxonomy for the Trip Analytics privacy core.

FATAL vs RECOVERABLE:
- DataAccessError fails the whole run; the job is marked failed and the
  error propagates. Retrying is the external scheduler's decision.
- RecordTransformError affects a single trip; the Orchestrator logs it,
  counts it and continues with the rest of the batch.
- JobCancelledError stops a run whose job was cancelled or timed out;
  no record is stored and no trip is marked.

Groups or chain patterns below the k-anonymity threshold are NOT errors.
They are filtered out silently and only reported as counts.
"""

from typing import Optional


class TripAnalyticsError(Exception):
    """Base class for all errors raised by this package."""


class DataAccessError(TripAnalyticsError):
    """A trip source, anonymized store or job store could not be read or written."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.args[0]}"
        return str(self.args[0])


class RecordTransformError(TripAnalyticsError):
    """A single raw trip could not be bucketed (bad coordinate, timestamp or value)."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class JobConflictError(TripAnalyticsError):
    """An anonymization job is already processing."""

    def __init__(self, active_job_id: str):
        super().__init__(f"Anonymization job {active_job_id} is already processing")
        self.active_job_id = active_job_id


class JobNotFoundError(TripAnalyticsError):
    """Unknown job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobCancelledError(TripAnalyticsError):
    """The job driving a run was cancelled or timed out before its results were committed."""

    def __init__(self, job_id: Optional[str] = None):
        label = f"Anonymization job {job_id}" if job_id else "Anonymization run"
        super().__init__(f"{label} is no longer processing; nothing was committed")
        self.job_id = job_id

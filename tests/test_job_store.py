"""Job-state store lifecycle tests."""

from datetime import datetime, timedelta

import pytest

from core.errors import JobConflictError, JobNotFoundError
from store.job_store import COMPLETED, FAILED, PROCESSING, QUEUED, InMemoryJobStore


def test_lifecycle():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    assert jobs.get_status(job_id).status == QUEUED

    jobs.set_status(job_id, PROCESSING, progress=0)
    jobs.update_progress(job_id, 100)
    status = jobs.get_status(job_id)
    assert status.status == PROCESSING
    assert status.progress == 100
    assert status.started_at is not None

    jobs.set_status(job_id, COMPLETED, progress=250, result={"processed_count": 250})
    status = jobs.get_status(job_id)
    assert status.status == COMPLETED
    assert status.completed_at is not None
    assert status.result == {"processed_count": 250}
    assert jobs.active_job() is None


def test_only_one_active_job():
    jobs = InMemoryJobStore()
    first = jobs.create_job()

    with pytest.raises(JobConflictError) as exc_info:
        jobs.create_job()
    assert exc_info.value.active_job_id == first

    jobs.set_status(first, FAILED, error="boom")
    assert jobs.create_job() != first


def test_unknown_job():
    jobs = InMemoryJobStore()
    with pytest.raises(JobNotFoundError):
        jobs.get_status("missing")
    with pytest.raises(JobNotFoundError):
        jobs.set_status("missing", PROCESSING)


def test_unknown_status():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    with pytest.raises(ValueError):
        jobs.set_status(job_id, "paused")


def test_cancel_fails_job_with_reason():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    jobs.set_status(job_id, PROCESSING)

    jobs.cancel(job_id, "operator request")

    status = jobs.get_status(job_id)
    assert status.status == FAILED
    assert status.error == "operator request"


def test_terminal_jobs_are_not_revived():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    jobs.cancel(job_id)

    jobs.set_status(job_id, COMPLETED, progress=10)
    jobs.update_progress(job_id, 99)

    status = jobs.get_status(job_id)
    assert status.status == FAILED
    assert status.progress == 0


def test_expire_stale():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    jobs.set_status(job_id, PROCESSING)
    started = jobs.get_status(job_id).started_at

    assert jobs.expire_stale(1800, now=started + timedelta(seconds=60)) == []
    assert jobs.expire_stale(1800, now=started + timedelta(seconds=1801)) == [job_id]

    status = jobs.get_status(job_id)
    assert status.status == FAILED
    assert status.error == "timed out"


def test_to_dict_serializes_timestamps():
    jobs = InMemoryJobStore()
    job_id = jobs.create_job()
    d = jobs.get_status(job_id).to_dict()
    assert d["status"] == QUEUED
    assert datetime.fromisoformat(d["created_at"])
    assert d["started_at"] is None

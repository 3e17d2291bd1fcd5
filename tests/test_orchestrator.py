"""
Anonymization Orchestrator tests.

Covers the k-anonymity gate on user groups, per-record error recovery,
marking of processed and suppressed trips, idempotent re-runs, fatal store
errors and the job runner around it.
"""

from datetime import date, datetime, timedelta

import numpy as np
import pandas as pd
import pytest

from conftest import POINT_A, POINT_B, POINT_C, ZONE_A, ZONE_B, make_trip
from core.errors import DataAccessError, JobCancelledError, JobConflictError
from core.pipeline import AnonymizationJobRunner, AnonymizationOrchestrator
from engine.od_matrix import ODMatrixBuilder
from reader.trip_source import DataFrameTripSource, InMemoryTripSource
from schema.records import RAW_TRIP_COLUMNS
from store.anonymized_store import InMemoryAnonymizedStore
from store.job_store import COMPLETED, FAILED, InMemoryJobStore


BASE = datetime(2024, 3, 4, 8, 0)


def user_trips(user_id: str, count: int, start=BASE, **kwargs):
    return [
        make_trip(f"{user_id}-{i}", user_id, start + timedelta(days=i), **kwargs)
        for i in range(count)
    ]


class FailingStore(InMemoryAnonymizedStore):
    def insert(self, record):
        raise DataAccessError("connection refused", operation="insert")


def orchestrator_for(config, trips, pseudonymizer, store=None):
    source = InMemoryTripSource(trips)
    store = store if store is not None else InMemoryAnonymizedStore()
    return AnonymizationOrchestrator(config, source, store, pseudonymizer), source, store


def test_groups_below_k_are_suppressed(config, pseudonymizer):
    trips = user_trips("alice", 6) + user_trips("bob", 3)
    orchestrator, source, store = orchestrator_for(config, trips, pseudonymizer)

    result = orchestrator.run()

    assert result.processed_count == 6
    assert result.suppressed_user_count == 1
    assert result.suppressed_trip_count == 3
    assert result.error_count == 0
    assert len(store) == 6

    bob = pseudonymizer.pseudonymize("bob")
    assert all(r.pseudonymized_user_id != bob for r in store.records)

    # Suppressed trips are marked too so they are not re-fetched every run
    assert all(t.anonymized_at is not None for t in source.trips)
    assert result.marked_count == 9


def test_record_holds_only_buckets(config, pseudonymizer):
    trip = make_trip("t1", "alice", datetime(2024, 3, 4, 10, 7), minutes=23, distance=1200.0, companions=3)
    orchestrator, _, store = orchestrator_for(config, [trip] * 1 + user_trips("alice", 4), pseudonymizer)
    orchestrator.run()

    record = next(r for r in store.records if r.start_time_bucket == "10:00")
    assert record.pseudonymized_user_id == pseudonymizer.pseudonymize("alice")
    assert record.origin_zone == ZONE_A
    assert record.destination_zone == ZONE_B
    assert record.trip_date == date(2024, 3, 4)
    assert record.end_time_bucket == "10:30"
    assert record.duration_bucket == "600-1800"
    assert record.distance_bucket == "1000-2000"
    assert record.companion_bucket == "3-4"

    row = record.to_dict()
    assert "trip_id" not in row and "user_id" not in row
    for raw_value in (POINT_A[0], POINT_A[1], POINT_B[0], POINT_B[1], trip.start_time, "alice", "t1"):
        assert raw_value not in row.values()


def test_bad_record_is_skipped_and_counted(config, pseudonymizer):
    trips = user_trips("alice", 5)
    bad = make_trip("alice-bad", "alice", BASE, origin=(999.0, 0.0))
    orchestrator, source, store = orchestrator_for(config, trips + [bad], pseudonymizer)

    result = orchestrator.run()

    assert result.processed_count == 5
    assert result.error_count == 1
    assert "alice-bad" in result.errors[0]
    assert len(store) == 5
    assert source.get("alice-bad").anonymized_at is None
    assert all(source.get(t.trip_id).anonymized_at is not None for t in trips)


def test_missing_timestamp_in_parquet_is_skipped_and_counted(tmp_path, config, pseudonymizer):
    trips = user_trips("alice", 6)
    df = pd.DataFrame([{**t.__dict__, "anonymized_at": None} for t in trips], columns=RAW_TRIP_COLUMNS)
    df["start_time"] = pd.to_datetime(df["start_time"])
    df.loc[0, "start_time"] = pd.NaT
    path = tmp_path / "trips.parquet"
    df.to_parquet(path, index=False)

    store = InMemoryAnonymizedStore()
    result = AnonymizationOrchestrator(config, DataFrameTripSource.from_file(str(path)), store, pseudonymizer).run()

    assert result.error_count == 1
    assert result.processed_count == 5
    assert result.errors[0].startswith("alice-0:")
    assert len(store) == 5


def test_ineligible_trips_are_ignored(config, pseudonymizer):
    trips = user_trips("alice", 5)
    trips[0].is_private = True
    trips[1].synced = False
    trips[2].anonymized_at = datetime(2024, 1, 1)
    orchestrator, source, store = orchestrator_for(config, trips, pseudonymizer)

    result = orchestrator.run()

    # Only 2 eligible trips remain, below k
    assert result.fetched_count == 2
    assert result.processed_count == 0
    assert result.suppressed_user_count == 1
    assert source.get(trips[0].trip_id).anonymized_at is None


def test_rerun_does_not_reprocess(config, pseudonymizer):
    orchestrator, _, store = orchestrator_for(config, user_trips("alice", 5), pseudonymizer)

    assert orchestrator.run().processed_count == 5
    second = orchestrator.run()

    assert second.fetched_count == 0
    assert second.processed_count == 0
    assert len(store) == 5


def test_progress_callback(config, pseudonymizer):
    config.orchestrator.progress_interval = 2
    orchestrator, _, _ = orchestrator_for(config, user_trips("alice", 6), pseudonymizer)
    seen = []

    orchestrator.run(progress_callback=seen.append)

    assert seen == [2, 4, 6, 6]


def test_date_range_restricts_fetch(config, pseudonymizer):
    trips = user_trips("alice", 10)
    orchestrator, source, _ = orchestrator_for(config, trips, pseudonymizer)

    result = orchestrator.run(date_range=(date(2024, 3, 4), date(2024, 3, 8)))

    assert result.fetched_count == 5
    assert result.processed_count == 5
    assert source.get("alice-9").anonymized_at is None


def test_store_failure_is_fatal_and_marks_nothing(config, pseudonymizer):
    orchestrator, source, _ = orchestrator_for(config, user_trips("alice", 5), pseudonymizer, store=FailingStore())

    with pytest.raises(DataAccessError):
        orchestrator.run()

    assert all(t.anonymized_at is None for t in source.trips)


def test_job_runner_completes_job(config, pseudonymizer):
    orchestrator, _, _ = orchestrator_for(config, user_trips("alice", 5), pseudonymizer)
    jobs = InMemoryJobStore()

    job_id, result = AnonymizationJobRunner(orchestrator, jobs).run()

    status = jobs.get_status(job_id)
    assert status.status == COMPLETED
    assert status.progress == 5
    assert status.result["processed_count"] == result.processed_count == 5


def test_job_runner_marks_failed_on_data_access_error(config, pseudonymizer):
    orchestrator, _, _ = orchestrator_for(config, user_trips("alice", 5), pseudonymizer, store=FailingStore())
    jobs = InMemoryJobStore()

    with pytest.raises(DataAccessError):
        AnonymizationJobRunner(orchestrator, jobs).run()

    status = jobs.list_jobs(1)[0]
    assert status.status == FAILED
    assert "connection refused" in status.error
    assert jobs.active_job() is None


def test_job_runner_rejects_concurrent_run(config, pseudonymizer):
    orchestrator, source, _ = orchestrator_for(config, user_trips("alice", 5), pseudonymizer)
    jobs = InMemoryJobStore()
    jobs.create_job()

    with pytest.raises(JobConflictError):
        AnonymizationJobRunner(orchestrator, jobs).run()

    assert all(t.anonymized_at is None for t in source.trips)


class CancellingTripSource(InMemoryTripSource):
    """Cancels the running job during its first fetch and lets a replacement run finish."""

    def __init__(self, trips, jobs):
        super().__init__(trips)
        self.jobs = jobs
        self.runner = None
        self.replacement = None
        self._cancelled = False

    def fetch_eligible_trips(self, date_range=None):
        trips = super().fetch_eligible_trips(date_range)
        if not self._cancelled:
            self._cancelled = True
            self.jobs.cancel(self.jobs.active_job().job_id, "operator request")
            self.replacement = self.runner.run()
        return trips


def test_cancelled_job_commits_nothing(config, pseudonymizer):
    jobs = InMemoryJobStore()
    source = CancellingTripSource(user_trips("alice", 5), jobs)
    store = InMemoryAnonymizedStore()
    runner = AnonymizationJobRunner(AnonymizationOrchestrator(config, source, store, pseudonymizer), jobs)
    source.runner = runner

    with pytest.raises(JobCancelledError):
        runner.run()

    replacement_id, replacement = source.replacement
    assert replacement.processed_count == 5
    assert len(store) == 5
    assert jobs.get_status(replacement_id).status == COMPLETED

    cancelled = [job for job in jobs.list_jobs() if job.job_id != replacement_id][0]
    assert cancelled.status == FAILED
    assert cancelled.error == "operator request"


def test_inactive_run_stops_before_writing(config, pseudonymizer):
    config.orchestrator.progress_interval = 2
    orchestrator, source, store = orchestrator_for(config, user_trips("alice", 6), pseudonymizer)
    checks = []

    def is_active():
        checks.append(len(checks))
        return False

    with pytest.raises(JobCancelledError):
        orchestrator.run(is_active=is_active)

    assert checks == [0]
    assert len(store) == 0
    assert all(t.anonymized_at is None for t in source.trips)

@pytest.mark.parametrize("seed", range(5))
def test_suppressed_users_never_reach_any_output(config, pseudonymizer, seed):
    rng = np.random.default_rng(seed)
    k = int(rng.integers(2, 8))
    config.privacy.k_anonymity_threshold = k

    points = [POINT_A, POINT_B, POINT_C]
    trips = []
    trip_counts = {}
    for u in range(30):
        user = f"user-{seed}-{u}"
        n = int(rng.integers(1, 12))
        trip_counts[user] = n
        for i in range(n):
            origin, destination = rng.choice(3, size=2, replace=False)
            trips.append(make_trip(
                f"{user}-{i}", user,
                BASE + timedelta(days=int(rng.integers(0, 5)), minutes=int(rng.integers(0, 600))),
                origin=points[origin], destination=points[destination],
            ))

    orchestrator, _, store = orchestrator_for(config, trips, pseudonymizer)
    result = orchestrator.run()

    kept_users = {u for u, n in trip_counts.items() if n >= k}
    suppressed = {pseudonymizer.pseudonymize(u) for u in trip_counts if u not in kept_users}
    assert result.suppressed_user_count == len(trip_counts) - len(kept_users)
    assert not suppressed & {r.pseudonymized_user_id for r in store.records}

    entries = ODMatrixBuilder(store, config).build(date(2024, 3, 1), date(2024, 3, 31))
    assert sum(e.trip_count for e in entries) == sum(trip_counts[u] for u in kept_users)


def test_end_to_end_with_dataframe_source(tmp_path, config, pseudonymizer):
    rows = [
        {**make_trip(f"t{i}", "alice", BASE + timedelta(hours=i)).__dict__, "anonymized_at": None}
        for i in range(5)
    ]
    rows.append({**make_trip("t9", "bob", BASE).__dict__, "anonymized_at": None})
    path = tmp_path / "trips.csv"
    pd.DataFrame(rows, columns=RAW_TRIP_COLUMNS).to_csv(path, index=False)

    source = DataFrameTripSource.from_file(str(path))
    store = InMemoryAnonymizedStore()
    result = AnonymizationOrchestrator(config, source, store, pseudonymizer).run()

    assert result.processed_count == 5
    assert result.suppressed_user_count == 1

    saved = pd.read_csv(path)
    assert saved["anonymized_at"].notna().all()
    assert DataFrameTripSource.from_file(str(path)).fetch_eligible_trips() == []

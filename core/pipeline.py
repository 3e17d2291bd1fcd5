"""
Anonymization Orchestration.

This module coordinates the batch anonymization workflow:
1. Fetch eligible raw trips
2. Group by user and apply the k-anonymity gate
3. Pseudonymize and bucket each trip of a qualifying group, in parallel
4. Confirm the run is still wanted, then append the records to the store
5. Mark processed and suppressed source trips as anonymized
"""

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.bucketing import Bucketer, parse_timestamp
from core.config import Config
from core.errors import JobCancelledError, RecordTransformError
from core.pseudonymizer import Pseudonymizer
from core.suppression import KAnonymityGate
from reader.trip_source import TripSource
from schema.records import AnonymizedTripRecord, RawTrip
from store.anonymized_store import AnonymizedStore
from store.job_store import COMPLETED, FAILED, PROCESSING, InMemoryJobStore


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ActiveCheck = Callable[[], bool]


@dataclass
class RunResult:
    """Result of one anonymization run."""
    processed_count: int = 0
    suppressed_user_count: int = 0
    error_count: int = 0
    fetched_count: int = 0
    suppressed_trip_count: int = 0
    marked_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "processed_count": self.processed_count,
            "suppressed_user_count": self.suppressed_user_count,
            "error_count": self.error_count,
            "fetched_count": self.fetched_count,
            "suppressed_trip_count": self.suppressed_trip_count,
            "marked_count": self.marked_count,
            "duration_seconds": (
                (self.end_time - self.start_time).total_seconds()
                if self.start_time and self.end_time else None
            ),
            "errors": self.errors
        }


class AnonymizationOrchestrator:
    """
    Turns eligible raw trips into anonymized trip records.

    The orchestrator is the only writer of AnonymizedTripRecord rows. It
    never updates a raw trip except to set anonymized_at, and only after
    every individual write has succeeded or been counted as an error.

    A run that dies on a DataAccessError has marked nothing, so the next
    run picks up the same trips again.
    """

    def __init__(
        self,
        config: Config,
        trip_source: TripSource,
        store: AnonymizedStore,
        pseudonymizer: Pseudonymizer,
        bucketer: Optional[Bucketer] = None
    ):
        """
        Initialize orchestrator.

        Args:
            config: Configuration object
            trip_source: Raw trip collaborator
            store: Anonymized record store (append-only)
            pseudonymizer: Keyed user id transform
            bucketer: Bucketer; built from config.bucketing if omitted
        """
        self.config = config
        self.trip_source = trip_source
        self.store = store
        self.pseudonymizer = pseudonymizer
        self.bucketer = bucketer or Bucketer(config.bucketing)
        self.gate = KAnonymityGate(config.privacy.k_anonymity_threshold, label="user")

    def transform(self, trip: RawTrip, created_at: datetime) -> AnonymizedTripRecord:
        """
        Bucket and pseudonymize one raw trip.

        Raises:
            RecordTransformError: If any field cannot be bucketed
        """
        try:
            pseudonym = self.pseudonymizer.pseudonymize(trip.user_id)
        except ValueError as e:
            raise RecordTransformError(str(e), field_name="user_id") from e

        b = self.bucketer
        try:
            start = parse_timestamp(trip.start_time)
            end = parse_timestamp(trip.end_time)

            return AnonymizedTripRecord(
                pseudonymized_user_id=pseudonym,
                origin_zone=b.zone_id(trip.origin_lat, trip.origin_lon),
                destination_zone=b.zone_id(trip.destination_lat, trip.destination_lon),
                trip_date=start.date(),
                start_time_bucket=b.time_bucket(start),
                end_time_bucket=b.time_bucket(end),
                duration_bucket=b.duration_bucket(trip.duration_seconds),
                distance_bucket=b.distance_bucket(trip.distance_meters),
                travel_mode=str(trip.travel_mode),
                trip_purpose=str(trip.trip_purpose),
                companion_bucket=b.companion_bucket(trip.num_accompanying),
                duration_seconds=float(trip.duration_seconds),
                distance_meters=float(trip.distance_meters),
                created_at=created_at,
            )
        except (TypeError, ValueError) as e:
            raise RecordTransformError(f"Malformed trip: {e}") from e

    def run(
        self,
        date_range: Optional[Tuple[date, date]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        is_active: Optional[ActiveCheck] = None
    ) -> RunResult:
        """
        Execute one anonymization batch.

        Records are buffered until every trip has been transformed, then
        written and committed in one step.

        Args:
            date_range: Optional (start, end) restriction on trip start dates
            progress_callback: Called with the number of records handled so
                               far, every progress_interval records and at the end
            is_active: Polled at every progress step and once before anything
                       is written; False stops the run without committing

        Returns:
            RunResult with processed, suppressed-user and error counts

        Raises:
            DataAccessError: If the trip source or store fails
            JobCancelledError: If is_active returned False
        """
        result = RunResult(start_time=datetime.now())
        interval = self.config.orchestrator.progress_interval

        # Step 1: fetch
        trips = self.trip_source.fetch_eligible_trips(date_range)
        result.fetched_count = len(trips)
        logger.info(f"Fetched {len(trips):,} eligible trips")

        # Step 2: group by user and gate
        groups: Dict[str, List[RawTrip]] = defaultdict(list)
        for trip in trips:
            groups[trip.user_id].append(trip)

        partition = self.gate.partition(groups)
        result.suppressed_user_count = partition.suppressed_count
        result.suppressed_trip_count = partition.suppressed_members
        for members in partition.suppressed.values():
            logger.debug(f"Suppressed a user group of {len(members)} trips")

        # Step 3: transform
        created_at = datetime.now()
        to_process = [trip for members in partition.kept.values() for trip in members]
        transformed: Dict[int, AnonymizedTripRecord] = {}
        handled = 0

        with ThreadPoolExecutor(max_workers=self.config.orchestrator.max_workers) as executor:
            future_to_index = {
                executor.submit(self.transform, trip, created_at): i
                for i, trip in enumerate(to_process)
            }

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                handled += 1
                try:
                    transformed[index] = future.result()
                except RecordTransformError as e:
                    trip_id = to_process[index].trip_id
                    result.error_count += 1
                    result.errors.append(f"{trip_id}: {e}")
                    logger.warning(f"Skipping trip {trip_id}: {e}")

                if handled % interval == 0:
                    if progress_callback:
                        progress_callback(handled)
                    if is_active and not is_active():
                        for pending in future_to_index:
                            pending.cancel()
                        raise JobCancelledError()

        if progress_callback:
            progress_callback(handled)

        # Step 4: write and commit, then mark
        if is_active and not is_active():
            raise JobCancelledError()

        records = [transformed[i] for i in sorted(transformed)]
        processed_ids = [to_process[i].trip_id for i in sorted(transformed)]
        self.store.insert_many(records)
        self.store.flush()
        result.processed_count = len(processed_ids)

        now = datetime.now()
        result.marked_count += self.trip_source.mark_anonymized(processed_ids, now)
        suppressed_ids = [trip.trip_id for members in partition.suppressed.values() for trip in members]
        if suppressed_ids:
            result.marked_count += self.trip_source.mark_anonymized(suppressed_ids, now)

        result.end_time = datetime.now()
        logger.info(
            f"Anonymization run finished: {result.processed_count:,} processed, "
            f"{result.suppressed_user_count:,} users suppressed, {result.error_count:,} errors"
        )
        return result


class AnonymizationJobRunner:
    """
    Runs the orchestrator under the job-state store.

    At most one job may be active; a second request raises JobConflictError
    before anything is fetched.
    """

    def __init__(self, orchestrator: AnonymizationOrchestrator, job_store: InMemoryJobStore):
        self.orchestrator = orchestrator
        self.job_store = job_store

    def run(self, date_range: Optional[Tuple[date, date]] = None) -> Tuple[str, RunResult]:
        """
        Create a job, run one batch and record the outcome.

        Returns:
            (job_id, RunResult)

        Raises:
            JobConflictError: If another job is active
            DataAccessError: After marking the job failed
            JobCancelledError: If the job was cancelled or timed out mid-run;
                               nothing is written or marked
        """
        timeout = self.orchestrator.config.orchestrator.job_timeout_seconds
        expired = self.job_store.expire_stale(timeout)
        if expired:
            logger.warning(f"Expired {len(expired)} stale job(s): {expired}")

        job_id = self.job_store.create_job()
        self.job_store.set_status(job_id, PROCESSING, progress=0)

        try:
            result = self.orchestrator.run(
                date_range,
                progress_callback=lambda n: self.job_store.update_progress(job_id, n),
                is_active=lambda: self.job_store.get_status(job_id).status == PROCESSING,
            )
        except JobCancelledError:
            status = self.job_store.get_status(job_id)
            logger.warning(f"Job {job_id} was {status.error or status.status}; results discarded")
            raise JobCancelledError(job_id) from None
        except Exception as e:
            self.job_store.set_status(job_id, FAILED, error=str(e))
            raise

        self.job_store.set_status(
            job_id, COMPLETED,
            progress=result.processed_count + result.error_count,
            result=result.to_dict()
        )
        return job_id, result

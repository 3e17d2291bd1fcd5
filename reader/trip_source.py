"""
Raw Trip Sources.

The trip store is an external collaborator; this module defines the two
operations the Orchestrator needs from it and provides an in-memory
implementation and a pandas-backed file implementation (CSV or Parquet).
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from core.errors import DataAccessError
from schema.records import RawTrip, RAW_TRIP_COLUMNS


logger = logging.getLogger(__name__)

DateRange = Tuple[date, date]


def _in_range(trip: RawTrip, date_range: Optional[DateRange]) -> bool:
    """Whether a trip starts inside the range; unparseable starts are kept so they surface as errors."""
    if date_range is None:
        return True
    start = trip.start_time
    if isinstance(start, str):
        try:
            start = datetime.fromisoformat(start.replace('Z', '+00:00'))
        except ValueError:
            return True
    if not isinstance(start, datetime):
        return True
    return date_range[0] <= start.date() <= date_range[1]


class TripSource(ABC):
    """Read/mark interface onto the raw trip store."""

    @abstractmethod
    def fetch_eligible_trips(self, date_range: Optional[DateRange] = None) -> List[RawTrip]:
        """Return synced, non-private, not yet anonymized trips."""

    @abstractmethod
    def mark_anonymized(self, trip_ids: Iterable[str], when: datetime) -> int:
        """Set anonymized_at on the given trips; returns the number updated."""


class InMemoryTripSource(TripSource):
    """Trip source over a list of RawTrip objects."""

    def __init__(self, trips: Optional[Iterable[RawTrip]] = None):
        self._trips = {trip.trip_id: trip for trip in (trips or [])}
        self._lock = threading.Lock()

    def add(self, trip: RawTrip) -> None:
        with self._lock:
            self._trips[trip.trip_id] = trip

    def get(self, trip_id: str) -> Optional[RawTrip]:
        return self._trips.get(trip_id)

    @property
    def trips(self) -> List[RawTrip]:
        return list(self._trips.values())

    def fetch_eligible_trips(self, date_range: Optional[DateRange] = None) -> List[RawTrip]:
        with self._lock:
            return [t for t in self._trips.values() if t.is_eligible and _in_range(t, date_range)]

    def mark_anonymized(self, trip_ids: Iterable[str], when: datetime) -> int:
        updated = 0
        with self._lock:
            for trip_id in trip_ids:
                trip = self._trips.get(trip_id)
                if trip is not None and trip.anonymized_at is None:
                    trip.anonymized_at = when
                    updated += 1
        return updated


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 't')
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    return bool(value)


def _optional_timestamp(value) -> Optional[datetime]:
    if value is None or value == '' or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()


class DataFrameTripSource(TripSource):
    """
    Trip source backed by a pandas DataFrame, optionally persisted to a file.

    Expected columns: trip_id, user_id, origin_lat, origin_lon,
    destination_lat, destination_lon, start_time, end_time,
    duration_seconds, distance_meters, travel_mode, trip_purpose,
    num_accompanying, synced, is_private, anonymized_at.
    """

    def __init__(self, df: pd.DataFrame, path: Optional[str] = None):
        missing = [c for c in RAW_TRIP_COLUMNS if c not in df.columns and c != 'anonymized_at']
        if missing:
            raise DataAccessError(f"Trip data is missing columns: {missing}", operation="load trips")

        self._df = df.copy()
        if 'anonymized_at' not in self._df.columns:
            self._df['anonymized_at'] = None
        marked = self._df['anonymized_at'].astype(object)
        self._df['anonymized_at'] = marked.where(marked.notna(), None)
        self._df['trip_id'] = self._df['trip_id'].astype(str)
        self._path = path
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str) -> "DataFrameTripSource":
        """Load trips from a .csv or .parquet file."""
        if not os.path.exists(path):
            raise DataAccessError(f"Trip file not found: {path}", operation="load trips")

        try:
            if path.endswith('.parquet'):
                df = pd.read_parquet(path)
            else:
                df = pd.read_csv(path, dtype={'trip_id': str, 'user_id': str})
        except (OSError, ValueError) as e:
            raise DataAccessError(str(e), operation="load trips") from e

        logger.info(f"Loaded {len(df):,} raw trips from {path}")
        return cls(df, path=path)

    @property
    def frame(self) -> pd.DataFrame:
        return self._df.copy()

    def _row_to_trip(self, row) -> RawTrip:
        # Values are passed through untouched; malformed ones are reported by the Orchestrator
        return RawTrip(
            trip_id=str(row['trip_id']),
            user_id=str(row['user_id']),
            origin_lat=row['origin_lat'],
            origin_lon=row['origin_lon'],
            destination_lat=row['destination_lat'],
            destination_lon=row['destination_lon'],
            start_time=row['start_time'],
            end_time=row['end_time'],
            duration_seconds=row['duration_seconds'],
            distance_meters=row['distance_meters'],
            travel_mode=str(row['travel_mode']),
            trip_purpose=str(row['trip_purpose']),
            num_accompanying=row['num_accompanying'],
            synced=_to_bool(row['synced']),
            is_private=_to_bool(row['is_private']),
            anonymized_at=_optional_timestamp(row['anonymized_at']),
        )

    def fetch_eligible_trips(self, date_range: Optional[DateRange] = None) -> List[RawTrip]:
        with self._lock:
            trips = [self._row_to_trip(row) for row in self._df.to_dict('records')]
        eligible = [t for t in trips if t.is_eligible and _in_range(t, date_range)]
        logger.info(f"Fetched {len(eligible):,} eligible trips out of {len(trips):,}")
        return eligible

    def mark_anonymized(self, trip_ids: Iterable[str], when: datetime) -> int:
        ids = set(str(t) for t in trip_ids)
        with self._lock:
            mask = self._df['trip_id'].isin(ids) & self._df['anonymized_at'].isna()
            self._df.loc[mask, 'anonymized_at'] = when.isoformat()
            updated = int(mask.sum())
            if self._path:
                self._save()
        logger.info(f"Marked {updated:,} trips as anonymized")
        return updated

    def _save(self) -> None:
        try:
            if self._path.endswith('.parquet'):
                self._df.to_parquet(self._path, index=False)
            else:
                self._df.to_csv(self._path, index=False)
        except OSError as e:
            raise DataAccessError(str(e), operation="mark anonymized") from e

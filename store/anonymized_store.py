"""
Anonymized Data Store.

Append-only storage for AnonymizedTripRecord rows plus the filtered and
grouped queries the Aggregate Builders run against it. Rows are never
updated or deleted, so builders can read while an anonymization run is
still appending.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from core.bucketing import bucket_midpoint
from core.errors import DataAccessError
from schema.filters import QueryFilters
from schema.records import AnonymizedTripRecord


logger = logging.getLogger(__name__)

COLUMNS = AnonymizedTripRecord.FIELDS
ORIGIN_AND_DESTINATION = ('origin_zone', 'destination_zone')
_CSV_TEXT_COLUMNS = {
    column: str for column in (
        'pseudonymized_user_id', 'start_time_bucket', 'end_time_bucket', 'companion_bucket'
    )
}


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame({column: pd.Series(dtype=object) for column in COLUMNS})


def _normalize_dates(df: pd.DataFrame) -> pd.DataFrame:
    """Coerce trip_date to datetime.date after loading from a file."""
    if len(df):
        df['trip_date'] = pd.to_datetime(df['trip_date']).dt.date
    return df


class AnonymizedStore(ABC):
    """
    Append-only store of anonymized trip records.

    Subclasses provide _frame(); filtering and grouping are shared.
    """

    @abstractmethod
    def insert(self, record: AnonymizedTripRecord) -> None:
        """Append one record."""

    @abstractmethod
    def _frame(self) -> pd.DataFrame:
        """Snapshot of all committed records."""

    def flush(self) -> None:
        """Make inserted records durable. No-op for purely in-memory stores."""

    def insert_many(self, records: Iterable[AnonymizedTripRecord]) -> int:
        count = 0
        for record in records:
            self.insert(record)
            count += 1
        return count

    def __len__(self) -> int:
        return len(self._frame())

    def query(
        self,
        filters: QueryFilters,
        group_by: Optional[Sequence[str]] = None,
        zone_fields: Tuple[str, ...] = ORIGIN_AND_DESTINATION
    ) -> pd.DataFrame:
        """
        Select records in the filter's date range and apply dimension filters.

        Args:
            filters: Date range and optional zones / travel_modes / time_bins.
            group_by: If given, aggregate to one row per group with columns
                      trip_count, duration_sum, distance_sum,
                      duration_bucket_sum, distance_bucket_sum.
            zone_fields: Record fields the `zones` filter is matched against
                         (a record matches if ANY of them is in the list).

        Returns:
            Filtered rows, or grouped aggregates when group_by is set.
        """
        try:
            df = self._frame()
        except OSError as e:
            raise DataAccessError(str(e), operation="query anonymized store") from e

        if len(df) == 0:
            df = _empty_frame()

        mask = (df['trip_date'] >= filters.start_date) & (df['trip_date'] <= filters.end_date)

        if filters.zones:
            zone_mask = pd.Series(False, index=df.index)
            for zone_field in zone_fields:
                zone_mask |= df[zone_field].isin(filters.zones)
            mask &= zone_mask

        if filters.travel_modes:
            mask &= df['travel_mode'].isin(filters.travel_modes)

        if filters.time_bins:
            mask &= df['start_time_bucket'].isin(filters.time_bins)

        selected = df[mask].copy()

        if group_by is None:
            return selected.reset_index(drop=True)

        return self.aggregate(selected, list(group_by))

    @staticmethod
    def aggregate(df: pd.DataFrame, group_by: List[str]) -> pd.DataFrame:
        """Count and sum records per group."""
        if len(df) == 0:
            return pd.DataFrame(columns=group_by + [
                'trip_count', 'duration_sum', 'distance_sum', 'duration_bucket_sum', 'distance_bucket_sum'
            ])

        df = df.assign(
            _duration_mid=df['duration_bucket'].map(bucket_midpoint),
            _distance_mid=df['distance_bucket'].map(bucket_midpoint),
            duration_seconds=df['duration_seconds'].astype(float),
            distance_meters=df['distance_meters'].astype(float),
        )
        grouped = df.groupby(group_by, sort=True).agg(
            trip_count=('pseudonymized_user_id', 'size'),
            duration_sum=('duration_seconds', 'sum'),
            distance_sum=('distance_meters', 'sum'),
            duration_bucket_sum=('_duration_mid', 'sum'),
            distance_bucket_sum=('_distance_mid', 'sum'),
        )
        return grouped.reset_index()

    @staticmethod
    def grouped_distribution(
        df: pd.DataFrame,
        group_by: Sequence[str],
        column: str
    ) -> Dict[Tuple, Dict[str, int]]:
        """Per group, counts of each value of `column` (group key is always a tuple)."""
        result: Dict[Tuple, Dict[str, int]] = defaultdict(dict)
        if len(df) == 0:
            return {}

        keys = list(group_by)
        columns = keys if column in keys else keys + [column]
        counts = df.groupby(columns, sort=True).size()
        for key, value in counts.items():
            key = key if isinstance(key, tuple) else (key,)
            group = tuple(key[:len(keys)])
            result[group][str(key[columns.index(column)])] = int(value)
        return dict(result)


class InMemoryAnonymizedStore(AnonymizedStore):
    """Anonymized store held in process memory."""

    def __init__(self, records: Optional[Iterable[AnonymizedTripRecord]] = None):
        self._records: List[AnonymizedTripRecord] = list(records or [])
        self._lock = threading.Lock()
        self._cache: Optional[pd.DataFrame] = None
        self._cache_size = -1

    def insert(self, record: AnonymizedTripRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[AnonymizedTripRecord]:
        with self._lock:
            return list(self._records)

    def _frame(self) -> pd.DataFrame:
        with self._lock:
            if self._cache_size != len(self._records):
                rows = [record.to_dict() for record in self._records]
                self._cache = pd.DataFrame(rows, columns=COLUMNS) if rows else _empty_frame()
                self._cache_size = len(self._records)
            return self._cache


class FileAnonymizedStore(InMemoryAnonymizedStore):
    """
    Anonymized store persisted to a Parquet or CSV file.

    Existing rows are loaded on open; new rows are appended in memory and
    written out on flush().
    """

    def __init__(self, path: str):
        self.path = path
        records: List[AnonymizedTripRecord] = []

        if os.path.exists(path):
            try:
                if path.endswith('.parquet'):
                    df = pd.read_parquet(path)
                else:
                    df = pd.read_csv(path, dtype=_CSV_TEXT_COLUMNS)
            except (OSError, ValueError) as e:
                raise DataAccessError(str(e), operation="open anonymized store") from e
            df = _normalize_dates(df)
            records = [AnonymizedTripRecord.from_dict(row) for row in df.to_dict('records')]
            logger.info(f"Opened anonymized store {path} with {len(records):,} records")

        super().__init__(records)

    def flush(self) -> None:
        df = self._frame()
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if self.path.endswith('.parquet'):
                df.to_parquet(self.path, index=False)
            else:
                df.to_csv(self.path, index=False)
        except OSError as e:
            raise DataAccessError(str(e), operation="flush anonymized store") from e
        logger.info(f"Flushed {len(df):,} anonymized records to {self.path}")

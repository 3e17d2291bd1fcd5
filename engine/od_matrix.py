"""
Origin-Destination Matrix Builder.

Groups anonymized trips in a date range by (origin zone, destination zone)
and, optionally, by start time bucket. For each group:
- trip_count: number of records
- total_distance: sum of distance-bucket midpoints (approximation), or the
  exact sum of distance_meters when od_distance_source = 'exact'
- avg_duration: mean duration-bucket midpoint
- mode_distribution / time_distribution restricted to the group

Counts are TRUE counts. Noise is applied at disclosure (engine/disclosure.py).

TOP-N ORDERING:
    trip_count descending, ties broken by ascending (origin, destination)
"""

import logging
from collections import Counter
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional

from core.config import Config
from schema.aggregates import ODMatrixEntry
from schema.filters import QueryFilters
from store.anonymized_store import AnonymizedStore


logger = logging.getLogger(__name__)

OD_KEYS = ['origin_zone', 'destination_zone']


def od_sort_key(entry: ODMatrixEntry):
    return (-entry.trip_count, entry.origin_zone, entry.destination_zone, entry.time_bucket or '')


def resolve_filters(start_date: date, end_date: date, filters: Optional[QueryFilters]) -> QueryFilters:
    """Filters for a build call; the explicit date range always wins."""
    if filters is None:
        resolved = QueryFilters(start_date=start_date, end_date=end_date)
    else:
        resolved = replace(filters, start_date=start_date, end_date=end_date)
    resolved.validate()
    return resolved


class ODMatrixBuilder:
    """Builds OD matrix entries from the anonymized store."""

    def __init__(self, store: AnonymizedStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or Config()

    def build(
        self,
        start_date: date,
        end_date: date,
        filters: Optional[QueryFilters] = None,
        by_time_bucket: bool = False
    ) -> List[ODMatrixEntry]:
        """
        Build the OD matrix for a date range.

        Args:
            start_date: First trip date (inclusive)
            end_date: Last trip date (inclusive)
            filters: Optional zones / travel_modes / time_bins restriction.
                     A zone filter matches either end of the trip.
            by_time_bucket: Also split each pair by start time bucket

        Returns:
            Entries in top-N order
        """
        resolved = resolve_filters(start_date, end_date, filters)
        keys = OD_KEYS + (['start_time_bucket'] if by_time_bucket else [])

        rows = self.store.query(resolved)
        grouped = self.store.aggregate(rows, keys)
        modes = self.store.grouped_distribution(rows, keys, 'travel_mode')
        times = self.store.grouped_distribution(rows, keys, 'start_time_bucket')

        exact = self.config.aggregation.od_distance_source == 'exact'
        distance_column = 'distance_sum' if exact else 'distance_bucket_sum'

        entries = []
        for row in grouped.to_dict('records'):
            key = tuple(row[k] for k in keys)
            count = int(row['trip_count'])
            entries.append(ODMatrixEntry(
                origin_zone=row['origin_zone'],
                destination_zone=row['destination_zone'],
                trip_count=count,
                total_distance=float(row[distance_column]),
                avg_duration=float(row['duration_bucket_sum']) / count,
                mode_distribution=modes.get(key, {}),
                time_distribution=times.get(key, {}),
                time_bucket=row['start_time_bucket'] if by_time_bucket else None,
            ))

        entries.sort(key=od_sort_key)
        logger.info(f"OD matrix: {len(entries):,} entries from {len(rows):,} records ({start_date} to {end_date})")
        return entries

    @staticmethod
    def top(entries: List[ODMatrixEntry], n: int) -> List[ODMatrixEntry]:
        """The n largest entries in top-N order."""
        return sorted(entries, key=od_sort_key)[:n]

    def summarize(self, entries: List[ODMatrixEntry], top_n: int = 10) -> Dict[str, Any]:
        """Totals, overall mode distribution and the top pairs."""
        total_trips = sum(e.trip_count for e in entries)
        mode_totals: Counter = Counter()
        for entry in entries:
            mode_totals.update(entry.mode_distribution)

        return {
            "total_pairs": len(entries),
            "total_trips": total_trips,
            "total_distance": sum(e.total_distance for e in entries),
            "avg_trips_per_pair": total_trips / len(entries) if entries else 0.0,
            "mode_distribution": dict(sorted(mode_totals.items())),
            "top_pairs": [
                {"origin": e.origin_zone, "destination": e.destination_zone, "trip_count": e.trip_count}
                for e in self.top(entries, top_n)
            ],
        }

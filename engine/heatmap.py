"""
Heatmap Builder.

Groups anonymized trips by origin zone and places each zone at its
reconstructed center. With aggregation_level 'grid_<N>m' the stored zones
are first re-bucketed onto a coarser grid of N metres.
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional

from core.bucketing import Bucketer, rebucket_zone, zone_center
from core.config import Config
from engine.od_matrix import resolve_filters
from schema.aggregates import HeatmapEntry
from schema.filters import QueryFilters
from store.anonymized_store import AnonymizedStore


logger = logging.getLogger(__name__)

ZONE_KEY = ['zone']


def heatmap_sort_key(entry: HeatmapEntry):
    return (-entry.trip_count, entry.zone)


class HeatmapBuilder:
    """Builds per-zone trip densities from the anonymized store."""

    def __init__(self, store: AnonymizedStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or Config()
        self.bucketer = Bucketer(self.config.bucketing)

    def build(
        self,
        start_date: date,
        end_date: date,
        filters: Optional[QueryFilters] = None
    ) -> List[HeatmapEntry]:
        """
        Build heatmap entries for a date range.

        Args:
            start_date: First trip date (inclusive)
            end_date: Last trip date (inclusive)
            filters: Optional filters; zones match the origin zone, and
                     aggregation_level selects the output grid

        Returns:
            Entries sorted by trip_count descending, then zone

        Raises:
            ValueError: If the aggregation grid is finer than the stored grid
        """
        resolved = resolve_filters(start_date, end_date, filters)
        rows = self.store.query(resolved, zone_fields=('origin_zone',))

        meters = resolved.aggregation_meters
        stored_grid = self.bucketer.grid_size
        if meters is None:
            grid = stored_grid
            rows = rows.assign(zone=rows['origin_zone'])
        else:
            grid = self.bucketer.coarse_grid_degrees(meters)
            rows = rows.assign(zone=rows['origin_zone'].map(lambda z: rebucket_zone(z, stored_grid, grid)))

        grouped = self.store.aggregate(rows, ZONE_KEY)
        modes = self.store.grouped_distribution(rows, ZONE_KEY, 'travel_mode')
        times = self.store.grouped_distribution(rows, ZONE_KEY, 'start_time_bucket')

        entries = []
        for row in grouped.to_dict('records'):
            zone = row['zone']
            count = int(row['trip_count'])
            lat, lon = zone_center(zone, grid)
            entries.append(HeatmapEntry(
                zone=zone,
                latitude=lat,
                longitude=lon,
                trip_count=count,
                avg_duration=float(row['duration_bucket_sum']) / count,
                mode_distribution=modes.get((zone,), {}),
                time_buckets=times.get((zone,), {}),
            ))

        entries.sort(key=heatmap_sort_key)
        logger.info(
            f"Heatmap ({resolved.aggregation_level}): {len(entries):,} zones from {len(rows):,} records"
        )
        return entries

    @staticmethod
    def summarize(entries: List[HeatmapEntry], peak_hours: int = 5) -> Dict[str, Any]:
        counts = [e.trip_count for e in entries]
        mode_totals: Counter = Counter()
        hour_totals: Counter = Counter()
        for entry in entries:
            mode_totals.update(entry.mode_distribution)
            for bucket, count in entry.time_buckets.items():
                hour_totals[bucket[:2]] += count

        peaks = sorted(hour_totals.items(), key=lambda item: (-item[1], item[0]))[:peak_hours]

        return {
            "total_zones": len(entries),
            "total_trips": sum(counts),
            "max_trips_in_zone": max(counts) if counts else 0,
            "min_trips_in_zone": min(counts) if counts else 0,
            "mode_distribution": dict(sorted(mode_totals.items())),
            "peak_hours": [{"hour": hour, "trip_count": count} for hour, count in peaks],
        }

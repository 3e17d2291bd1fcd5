"""
Mode Share Builder.

Trip counts per travel mode for a date range, with each mode's percentage
of the total.
"""

import logging
from datetime import date
from typing import List, Optional

from core.config import Config
from engine.od_matrix import resolve_filters
from schema.aggregates import ModeShareEntry
from schema.filters import QueryFilters
from store.anonymized_store import AnonymizedStore


logger = logging.getLogger(__name__)


def with_percentages(entries: List[ModeShareEntry]) -> List[ModeShareEntry]:
    """Recompute percentages from the entries' counts and re-sort."""
    total = sum(e.count for e in entries)
    result = [
        ModeShareEntry(
            mode=e.mode,
            count=e.count,
            percentage=round(e.count / total * 100, 2) if total > 0 else 0.0,
        )
        for e in entries
    ]
    result.sort(key=lambda e: (-e.count, e.mode))
    return result


class ModeShareBuilder:
    """Builds the travel mode split from the anonymized store."""

    def __init__(self, store: AnonymizedStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or Config()

    def build(
        self,
        start_date: date,
        end_date: date,
        filters: Optional[QueryFilters] = None
    ) -> List[ModeShareEntry]:
        resolved = resolve_filters(start_date, end_date, filters)
        grouped = self.store.query(resolved, group_by=['travel_mode'])

        entries = [
            ModeShareEntry(mode=str(row['travel_mode']), count=int(row['trip_count']))
            for row in grouped.to_dict('records')
        ]
        logger.info(f"Mode share: {len(entries)} modes")
        return with_percentages(entries)

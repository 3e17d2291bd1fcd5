"""
Typed query parameters accepted at the disclosure boundary.

Upstream HTTP/CLI layers pass start_date, end_date and the optional
zones, travel_modes, time_bins, min_frequency, max_pattern_length and
aggregation_level parameters; this module turns them into one value object.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

_GRID_LEVEL = re.compile(r"^grid_(\d+)m$")
_TIME_BIN = re.compile(r"^\d{2}:\d{2}$")


def _to_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _to_list(value: Any, sep: str = ',') -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(sep) if item.strip()]
    return [str(item) for item in value]


@dataclass
class QueryFilters:
    """Date range plus optional dimension filters for an aggregate query."""
    start_date: date
    end_date: date
    zones: List[str] = field(default_factory=list)
    travel_modes: List[str] = field(default_factory=list)
    time_bins: List[str] = field(default_factory=list)
    min_frequency: Optional[int] = None
    max_pattern_length: Optional[int] = None
    aggregation_level: str = "zone"

    def validate(self) -> None:
        """Validate filter values."""
        if self.end_date < self.start_date:
            raise ValueError(f"end_date {self.end_date} is before start_date {self.start_date}")

        for time_bin in self.time_bins:
            if not _TIME_BIN.match(time_bin):
                raise ValueError(f"time_bins entries must be HH:MM, got {time_bin!r}")

        if self.min_frequency is not None and self.min_frequency < 1:
            raise ValueError(f"min_frequency must be positive, got {self.min_frequency}")

        if self.max_pattern_length is not None and not 1 <= self.max_pattern_length <= 10:
            raise ValueError(f"max_pattern_length must be between 1 and 10, got {self.max_pattern_length}")

        if self.aggregation_meters is None and self.aggregation_level != "zone":
            raise ValueError(
                f"aggregation_level must be 'zone' or 'grid_<meters>m', got {self.aggregation_level!r}"
            )

    @property
    def aggregation_meters(self) -> Optional[int]:
        """Grid size in meters for grid_<N>m levels, None for 'zone'."""
        match = _GRID_LEVEL.match(self.aggregation_level)
        return int(match.group(1)) if match else None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "QueryFilters":
        """
        Build filters from raw request parameters.

        Args:
            params: Mapping with 'start_date', 'end_date' and optional filter keys.
                    List parameters may be lists or comma-separated strings;
                    zone ids contain a comma, so zones are separated by semicolons.

        Returns:
            Validated QueryFilters
        """
        if 'start_date' not in params or 'end_date' not in params:
            raise ValueError("start_date and end_date are required")

        filters = cls(
            start_date=_to_date(params['start_date']),
            end_date=_to_date(params['end_date']),
            zones=_to_list(params.get('zones'), sep=';'),
            travel_modes=_to_list(params.get('travel_modes')),
            time_bins=_to_list(params.get('time_bins')),
            min_frequency=int(params['min_frequency']) if params.get('min_frequency') is not None else None,
            max_pattern_length=(
                int(params['max_pattern_length']) if params.get('max_pattern_length') is not None else None
            ),
            aggregation_level=str(params.get('aggregation_level') or 'zone'),
        )
        filters.validate()
        return filters

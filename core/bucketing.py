"""
Spatiotemporal Bucketing.

Maps raw coordinates, timestamps, durations, distances and companion
counts to categorical buckets. Every function here is pure: the same input
always yields the same output, independent of call order.

Zones are square cells of `grid_size_degrees` identified by the south-west
corner "<lat>,<lon>". The corner is recovered through the integer cell
index, so zone_center(zone_id(lat, lon, g), g) always lands in the cell the
point came from.
"""

import math
import logging
from datetime import date, datetime, time
from typing import Optional, Sequence, Tuple, Union

import pandas as pd

from core.config import BucketConfig
from core.errors import RecordTransformError


logger = logging.getLogger(__name__)

METERS_PER_DEGREE = 111320.0

Timestamp = Union[datetime, str]


def _decimals_for(grid_size_degrees: float) -> int:
    """Digits needed so distinct cell corners never format identically."""
    return max(4, int(-math.floor(math.log10(grid_size_degrees))) + 2)


def _check_coordinate(value: float, limit: float, name: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise RecordTransformError(f"{name} is not a number: {value!r}", field_name=name)
    if not math.isfinite(value) or abs(value) > limit:
        raise RecordTransformError(f"{name} out of range: {value!r}", field_name=name)
    return value


def zone_id(lat: float, lon: float, grid_size_degrees: float) -> str:
    """
    Map a coordinate to the key of the grid cell containing it.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees
        grid_size_degrees: Cell edge length in degrees

    Returns:
        "<lat_corner>,<lon_corner>" of the cell's south-west corner
    """
    lat = _check_coordinate(lat, 90.0, "latitude")
    lon = _check_coordinate(lon, 180.0, "longitude")

    lat_idx = math.floor(lat / grid_size_degrees)
    lon_idx = math.floor(lon / grid_size_degrees)
    decimals = _decimals_for(grid_size_degrees)

    return f"{lat_idx * grid_size_degrees:.{decimals}f},{lon_idx * grid_size_degrees:.{decimals}f}"


def _zone_indices(zone: str, grid_size_degrees: float) -> Tuple[int, int]:
    try:
        lat_str, lon_str = zone.split(',')
        return (
            round(float(lat_str) / grid_size_degrees),
            round(float(lon_str) / grid_size_degrees),
        )
    except (AttributeError, ValueError):
        raise ValueError(f"Malformed zone id: {zone!r}")


def zone_center(zone: str, grid_size_degrees: float) -> Tuple[float, float]:
    """
    Reconstruct the center point of a zone.

    Returns:
        (lat, lon) offset half a cell from the zone's south-west corner
    """
    lat_idx, lon_idx = _zone_indices(zone, grid_size_degrees)
    half = grid_size_degrees / 2
    return (lat_idx * grid_size_degrees + half, lon_idx * grid_size_degrees + half)


def rebucket_zone(zone: str, grid_size_degrees: float, coarse_grid_degrees: float) -> str:
    """Re-assign a stored zone to a coarser grid through its center point."""
    lat, lon = zone_center(zone, grid_size_degrees)
    return zone_id(lat, lon, coarse_grid_degrees)


def parse_timestamp(timestamp: Timestamp) -> datetime:
    """Parse a datetime or ISO-8601 string. Missing values (None, NaN, NaT) are unparseable."""
    if not isinstance(timestamp, str) and pd.isna(timestamp):
        raise RecordTransformError(f"Missing timestamp: {timestamp!r}", field_name="timestamp")
    if isinstance(timestamp, pd.Timestamp):
        return timestamp.to_pydatetime()
    if isinstance(timestamp, datetime):
        return timestamp
    if isinstance(timestamp, str):
        text = timestamp.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise RecordTransformError(f"Unparseable timestamp: {timestamp!r}", field_name="timestamp")


def time_bucket(timestamp: Timestamp, bin_size_minutes: int) -> str:
    """
    Truncate a timestamp's minute-of-hour to its bin boundary.

    Returns:
        "HH:MM"; the hour is kept unchanged
    """
    ts = parse_timestamp(timestamp)
    minute = (ts.minute // bin_size_minutes) * bin_size_minutes
    return f"{ts.hour:02d}:{minute:02d}"


def range_bucket(value: float, boundaries: Sequence[int]) -> str:
    """
    Label the half-open interval containing `value`.

    Args:
        value: Value to bucket
        boundaries: Ascending boundaries, e.g. [0, 300, 600]

    Returns:
        "lo-hi" for lo <= value < hi, or "N+" beyond the last boundary
    """
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise RecordTransformError(f"Not a number: {value!r}", field_name="value")
    if math.isnan(value) or value < boundaries[0]:
        raise RecordTransformError(
            f"Value {value!r} is below the first boundary {boundaries[0]}", field_name="value"
        )

    for i in range(1, len(boundaries)):
        if value < boundaries[i]:
            return f"{boundaries[i - 1]}-{boundaries[i]}"
    return f"{boundaries[-1]}+"


def bucket_midpoint(label: str) -> float:
    """Representative value of a range bucket ("lo-hi" -> midpoint, "N+" -> N)."""
    if label.endswith('+'):
        return float(label[:-1])
    lower, upper = label.split('-')
    return (float(lower) + float(upper)) / 2


def companion_bucket(count: int) -> str:
    """Bucket the number of accompanying people into 0, 1-2, 3-4, 5+."""
    try:
        count = int(count)
    except (TypeError, ValueError):
        raise RecordTransformError(f"Companion count is not an integer: {count!r}", field_name="num_accompanying")
    if count < 0:
        raise RecordTransformError(f"Negative companion count: {count}", field_name="num_accompanying")

    if count == 0:
        return '0'
    if count <= 2:
        return '1-2'
    if count <= 4:
        return '3-4'
    return '5+'


def bucket_datetime(trip_date: date, time_bucket_label: str) -> datetime:
    """Combine a trip date and an "HH:MM" bucket into a datetime for ordering."""
    hour, minute = (int(part) for part in time_bucket_label.split(':'))
    return datetime.combine(trip_date, time(hour, minute))


class Bucketer:
    """
    Applies the bucketing functions with one configured set of parameters.

    The parameters are fixed at construction; the instance holds no other
    state.
    """

    def __init__(self, config: Optional[BucketConfig] = None):
        self.config = config or BucketConfig()
        self.config.validate()

    @property
    def grid_size(self) -> float:
        return self.config.grid_size_degrees

    def zone_id(self, lat: float, lon: float) -> str:
        return zone_id(lat, lon, self.config.grid_size_degrees)

    def zone_center(self, zone: str) -> Tuple[float, float]:
        return zone_center(zone, self.config.grid_size_degrees)

    def time_bucket(self, timestamp: Timestamp) -> str:
        return time_bucket(timestamp, self.config.time_bin_minutes)

    def duration_bucket(self, duration_seconds: float) -> str:
        return range_bucket(duration_seconds, self.config.duration_boundaries)

    def distance_bucket(self, distance_meters: float) -> str:
        return range_bucket(distance_meters, self.config.distance_boundaries)

    def companion_bucket(self, count: int) -> str:
        return companion_bucket(count)

    def coarse_grid_degrees(self, meters: int) -> float:
        """
        Convert a grid size in meters to degrees for heatmap aggregation.

        Raises:
            ValueError: If the requested grid is finer than the stored grid
        """
        degrees = meters / METERS_PER_DEGREE
        if degrees < self.config.grid_size_degrees:
            raise ValueError(
                f"Aggregation grid of {meters}m ({degrees:.5f} deg) is finer than "
                f"the stored grid of {self.config.grid_size_degrees} deg"
            )
        return degrees

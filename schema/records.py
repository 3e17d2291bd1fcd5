"""
Record types crossing the anonymization boundary.

RawTrip is owned by the external trip store and is read-only here, apart
from the anonymized_at marker. AnonymizedTripRecord is written once by the
Orchestrator and never updated.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class RawTrip:
    """An individually identifiable trip as recorded by the trip store."""
    trip_id: str
    user_id: str
    origin_lat: float
    origin_lon: float
    destination_lat: float
    destination_lon: float
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    distance_meters: float
    travel_mode: str
    trip_purpose: str
    num_accompanying: int = 0
    synced: bool = True
    is_private: bool = False
    anonymized_at: Optional[datetime] = None

    @property
    def is_eligible(self) -> bool:
        """Only synced, non-private, not yet anonymized trips may be processed."""
        return self.synced and not self.is_private and self.anonymized_at is None


@dataclass(frozen=True)
class AnonymizedTripRecord:
    """
    One anonymized trip.

    Holds no raw coordinate, no raw timestamp and no pointer back to the
    originating RawTrip. trip_date is kept at day granularity for range
    queries and chain ordering; duration_seconds and distance_meters are
    non-positional numerics kept for exact chain averages.
    """
    pseudonymized_user_id: str
    origin_zone: str
    destination_zone: str
    trip_date: date
    start_time_bucket: str
    end_time_bucket: str
    duration_bucket: str
    distance_bucket: str
    travel_mode: str
    trip_purpose: str
    companion_bucket: str
    duration_seconds: float
    distance_meters: float
    created_at: datetime

    FIELDS = [
        'pseudonymized_user_id', 'origin_zone', 'destination_zone', 'trip_date',
        'start_time_bucket', 'end_time_bucket', 'duration_bucket', 'distance_bucket',
        'travel_mode', 'trip_purpose', 'companion_bucket',
        'duration_seconds', 'distance_meters', 'created_at',
    ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "AnonymizedTripRecord":
        """Rebuild a record from a stored row (dates may arrive as strings)."""
        trip_date = row['trip_date']
        if isinstance(trip_date, datetime):
            trip_date = trip_date.date()
        elif isinstance(trip_date, str):
            trip_date = date.fromisoformat(trip_date[:10])

        created_at = row['created_at']
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif hasattr(created_at, 'to_pydatetime'):
            created_at = created_at.to_pydatetime()

        return cls(
            pseudonymized_user_id=str(row['pseudonymized_user_id']),
            origin_zone=str(row['origin_zone']),
            destination_zone=str(row['destination_zone']),
            trip_date=trip_date,
            start_time_bucket=str(row['start_time_bucket']),
            end_time_bucket=str(row['end_time_bucket']),
            duration_bucket=str(row['duration_bucket']),
            distance_bucket=str(row['distance_bucket']),
            travel_mode=str(row['travel_mode']),
            trip_purpose=str(row['trip_purpose']),
            companion_bucket=str(row['companion_bucket']),
            duration_seconds=float(row['duration_seconds']),
            distance_meters=float(row['distance_meters']),
            created_at=created_at,
        )


RAW_TRIP_COLUMNS: List[str] = [
    'trip_id', 'user_id', 'origin_lat', 'origin_lon', 'destination_lat', 'destination_lon',
    'start_time', 'end_time', 'duration_seconds', 'distance_meters', 'travel_mode',
    'trip_purpose', 'num_accompanying', 'synced', 'is_private', 'anonymized_at',
]

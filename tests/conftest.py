"""Shared fixtures for the trip analytics test suite."""

from datetime import date, datetime, timedelta
from typing import Optional

import pytest

from core.bucketing import zone_id
from core.config import Config
from core.pseudonymizer import Pseudonymizer
from schema.records import AnonymizedTripRecord, RawTrip
from store.anonymized_store import InMemoryAnonymizedStore


PEPPER = "test-pepper-0123456789abcdef"
GRID = 0.01

# Cell-centered points so zone ids never depend on float edge cases
POINT_A = (47.6055, -122.3355)
POINT_B = (47.6155, -122.3255)
POINT_C = (47.6255, -122.3155)

ZONE_A = zone_id(*POINT_A, GRID)
ZONE_B = zone_id(*POINT_B, GRID)
ZONE_C = zone_id(*POINT_C, GRID)


def make_trip(
    trip_id: str,
    user_id: str,
    start: datetime,
    minutes: int = 30,
    origin=POINT_A,
    destination=POINT_B,
    distance: float = 2500.0,
    mode: str = "bus",
    purpose: str = "work",
    companions: int = 0,
    **overrides
) -> RawTrip:
    """A valid eligible raw trip; keyword overrides replace any field."""
    fields = dict(
        trip_id=trip_id,
        user_id=user_id,
        origin_lat=origin[0],
        origin_lon=origin[1],
        destination_lat=destination[0],
        destination_lon=destination[1],
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        duration_seconds=minutes * 60.0,
        distance_meters=distance,
        travel_mode=mode,
        trip_purpose=purpose,
        num_accompanying=companions,
    )
    fields.update(overrides)
    return RawTrip(**fields)


def make_record(
    user: str,
    trip_date: date,
    start_bucket: str,
    origin_zone: str = ZONE_A,
    destination_zone: str = ZONE_B,
    duration_seconds: float = 1800.0,
    distance_meters: float = 2500.0,
    mode: str = "bus",
    purpose: str = "work",
    duration_bucket: str = "1800-3600",
    distance_bucket: str = "2000-5000",
    end_bucket: Optional[str] = None,
) -> AnonymizedTripRecord:
    """An anonymized record built directly, bypassing the orchestrator."""
    return AnonymizedTripRecord(
        pseudonymized_user_id=user,
        origin_zone=origin_zone,
        destination_zone=destination_zone,
        trip_date=trip_date,
        start_time_bucket=start_bucket,
        end_time_bucket=end_bucket or start_bucket,
        duration_bucket=duration_bucket,
        distance_bucket=distance_bucket,
        travel_mode=mode,
        trip_purpose=purpose,
        companion_bucket="0",
        duration_seconds=duration_seconds,
        distance_meters=distance_meters,
        created_at=datetime(2024, 3, 1, 12, 0),
    )


@pytest.fixture
def config() -> Config:
    config = Config()
    config.orchestrator.max_workers = 2
    config.privacy.noise_seed = 12345
    return config


@pytest.fixture
def pseudonymizer() -> Pseudonymizer:
    return Pseudonymizer(PEPPER)


@pytest.fixture
def store() -> InMemoryAnonymizedStore:
    return InMemoryAnonymizedStore()


@pytest.fixture
def day() -> date:
    return date(2024, 3, 4)

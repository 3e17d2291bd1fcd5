"""Disclosure-time noise injection and mode share tests."""

import pytest

from conftest import ZONE_A, ZONE_B, make_record
from core.config import PrivacyConfig
from engine.disclosure import NoiseInjector
from engine.mode_share import ModeShareBuilder, with_percentages
from schema.aggregates import HeatmapEntry, ModeShareEntry, ODMatrixEntry, TripChainPattern


def od_entry(origin, destination, count):
    return ODMatrixEntry(
        origin_zone=origin, destination_zone=destination, trip_count=count,
        total_distance=3500.0 * count, avg_duration=2700.0,
        mode_distribution={"bus": count}, time_distribution={"08:00": count},
    )


def test_only_count_field_is_noised():
    injector = NoiseInjector(PrivacyConfig(epsilon=0.5, noise_seed=1))
    entries = [od_entry(ZONE_A, ZONE_B, 1000), od_entry(ZONE_B, ZONE_A, 800)]

    disclosed = injector.disclose_od(entries)

    assert len(disclosed) == 2
    for before in entries:
        after = next(e for e in disclosed if e.pair == before.pair)
        assert after.total_distance == before.total_distance
        assert after.avg_duration == before.avg_duration
        assert after.mode_distribution == before.mode_distribution
        assert abs(after.trip_count - before.trip_count) < 100
    # Inputs are left untouched
    assert entries[0].trip_count == 1000


def test_seeded_disclosure_is_reproducible():
    entries = [od_entry(ZONE_A, ZONE_B, 50)]
    first = NoiseInjector(PrivacyConfig(noise_seed=5)).disclose_od(entries)
    second = NoiseInjector(PrivacyConfig(noise_seed=5)).disclose_od(entries)
    assert first == second


def test_zero_entries_dropped_after_noise():
    # Tiny noise scale: zero stays zero, positive counts stay put
    config = PrivacyConfig(epsilon=1e6, noise_seed=2)
    entries = [od_entry(ZONE_A, ZONE_B, 0), od_entry(ZONE_B, ZONE_A, 7)]

    assert [e.trip_count for e in NoiseInjector(config).disclose_od(entries)] == [7]

    config.drop_zero_after_noise = False
    assert [e.trip_count for e in NoiseInjector(config).disclose_od(entries)] == [7, 0]


def test_chain_frequency_is_noised():
    pattern = TripChainPattern(pattern="a->b|b->c", hops=["a->b", "b->c"], frequency=12,
                               avg_duration=2700.0, avg_distance=4500.0)

    disclosed = NoiseInjector(PrivacyConfig(epsilon=1e6, noise_seed=3)).disclose_chains([pattern])

    assert disclosed[0].frequency == 12
    assert disclosed[0].avg_duration == 2700.0


def test_heatmap_resorted_by_noisy_count():
    entries = [
        HeatmapEntry(zone="z1", latitude=0.0, longitude=0.0, trip_count=10, avg_duration=0.0),
        HeatmapEntry(zone="z2", latitude=0.0, longitude=0.0, trip_count=30, avg_duration=0.0),
    ]

    disclosed = NoiseInjector(PrivacyConfig(epsilon=1e6, noise_seed=4)).disclose_heatmap(entries)

    assert [e.zone for e in disclosed] == ["z2", "z1"]


def test_mode_share_percentages_recomputed():
    entries = [ModeShareEntry("bus", 600), ModeShareEntry("car", 300), ModeShareEntry("walk", 100)]

    disclosed = NoiseInjector(PrivacyConfig(epsilon=0.1, noise_seed=6)).disclose_mode_share(entries)

    total = sum(e.count for e in disclosed)
    for entry in disclosed:
        assert entry.percentage == pytest.approx(round(entry.count / total * 100, 2))
    assert sum(e.percentage for e in disclosed) == pytest.approx(100.0, abs=0.05)


def test_with_percentages_orders_by_count():
    entries = with_percentages([ModeShareEntry("walk", 1), ModeShareEntry("bus", 3), ModeShareEntry("bike", 1)])
    assert [(e.mode, e.percentage) for e in entries] == [("bus", 60.0), ("bike", 20.0), ("walk", 20.0)]


def test_mode_share_builder(store, day):
    store.insert_many(
        [make_record(f"u{i}", day, "08:00", mode="bus") for i in range(3)]
        + [make_record("v", day, "09:00", mode="bike")]
    )

    entries = ModeShareBuilder(store).build(day, day)

    assert [(e.mode, e.count, e.percentage) for e in entries] == [("bus", 3, 75.0), ("bike", 1, 25.0)]


def test_empty_products():
    injector = NoiseInjector(PrivacyConfig(noise_seed=1))
    assert injector.disclose_od([]) == []
    assert injector.disclose_mode_share([]) == []

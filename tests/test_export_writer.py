"""Export writer tests: JSON, CSV and GeoJSON output."""

import json
from datetime import date

import pandas as pd
import pytest

from core.config import Config
from schema.aggregates import HeatmapEntry, ODMatrixEntry
from writer.export_writer import ExportWriter


START = date(2024, 3, 1)
END = date(2024, 3, 31)


@pytest.fixture
def writer(tmp_path):
    config = Config()
    config.data.output_path = str(tmp_path)
    return ExportWriter(config)


@pytest.fixture
def od_entries():
    return [
        ODMatrixEntry("47.6000,-122.3400", "47.6100,-122.3300", 12, 42000.0, 2700.0,
                      {"bus": 8, "car": 4}, {"08:00": 12}),
    ]


@pytest.fixture
def heatmap_entries():
    return [
        HeatmapEntry("47.6000,-122.3400", 47.605, -122.335, 20, 1500.0, {"bus": 20}, {"08:00": 20}),
    ]


def test_json_with_metadata(writer, od_entries):
    path = writer.write("od_matrix", od_entries, START, END, summary={"total_trips": 12})

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    assert path.endswith("od_matrix_2024-03-01_2024-03-31.json")
    assert payload["metadata"]["product"] == "od_matrix"
    assert payload["metadata"]["start_date"] == "2024-03-01"
    assert payload["metadata"]["epsilon"] == 1.0
    assert payload["metadata"]["total_entries"] == 1
    assert payload["data"][0]["trip_count"] == 12
    assert payload["data"][0]["mode_distribution"] == {"bus": 8, "car": 4}
    assert payload["summary"] == {"total_trips": 12}


def test_json_extra_blocks(writer, od_entries):
    path = writer.write("trip_chains", od_entries, START, END, extra={"transition_matrix": {"zones": []}})
    with open(path, encoding="utf-8") as f:
        assert json.load(f)["transition_matrix"] == {"zones": []}


def test_csv(writer, od_entries):
    path = writer.write("od_matrix", od_entries, START, END, fmt="csv")

    df = pd.read_csv(path)

    assert list(df["trip_count"]) == [12]
    assert json.loads(df["mode_distribution"][0]) == {"bus": 8, "car": 4}


def test_geojson(writer, heatmap_entries):
    path = writer.write("heatmap", heatmap_entries, START, END, fmt="geojson")

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    assert payload["type"] == "FeatureCollection"
    feature = payload["features"][0]
    assert feature["geometry"] == {"type": "Point", "coordinates": [-122.335, 47.605]}
    assert feature["properties"]["trip_count"] == 20
    assert payload["metadata"]["product"] == "heatmap"


def test_geojson_requires_heatmap(writer, od_entries):
    with pytest.raises(ValueError, match="GeoJSON"):
        writer.write("od_matrix", od_entries, START, END, fmt="geojson")


def test_unknown_format(writer, od_entries):
    with pytest.raises(ValueError):
        writer.write("od_matrix", od_entries, START, END, fmt="xml")

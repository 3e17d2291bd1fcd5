"""
Export Writer for disclosed aggregate products.

Serializes noised products to JSON (with a metadata block), CSV or, for
heatmaps, a GeoJSON FeatureCollection of Point features.
"""

import json
import logging
import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from core.config import Config
from schema.aggregates import HeatmapEntry


logger = logging.getLogger(__name__)

FORMATS = ('json', 'csv', 'geojson')


def _flatten(row: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-encode nested values so a row fits in one CSV line."""
    return {
        key: json.dumps(value, sort_keys=True) if isinstance(value, (dict, list)) else value
        for key, value in row.items()
    }


def heatmap_geojson(entries: Sequence[HeatmapEntry]) -> Dict[str, Any]:
    """Heatmap entries as a GeoJSON FeatureCollection."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [e.longitude, e.latitude]},
                "properties": {
                    "zone": e.zone,
                    "trip_count": e.trip_count,
                    "avg_duration": e.avg_duration,
                    "mode_distribution": e.mode_distribution,
                    "time_buckets": e.time_buckets,
                },
            }
            for e in entries
        ],
    }


class ExportWriter:
    """Writes one disclosed product per file under the configured output path."""

    def __init__(self, config: Config):
        """Initialize export writer."""
        self.config = config

    def _metadata(
        self,
        product: str,
        entries: Sequence[Any],
        start_date: date,
        end_date: date
    ) -> Dict[str, Any]:
        return {
            "product": product,
            "generated_at": datetime.now().isoformat(),
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "epsilon": self.config.privacy.epsilon,
            "k_anonymity_threshold": self.config.privacy.k_anonymity_threshold,
            "total_entries": len(entries),
        }

    def write(
        self,
        product: str,
        entries: Sequence[Any],
        start_date: date,
        end_date: date,
        fmt: str = 'json',
        summary: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None,
        output_path: Optional[str] = None
    ) -> str:
        """
        Write a product to `<output_path>/<product>_<start>_<end>.<fmt>`.

        Args:
            product: Product name, e.g. "od_matrix"
            entries: Disclosed entries (dataclasses with to_dict())
            start_date: Range start, recorded in the file name and metadata
            end_date: Range end
            fmt: 'json', 'csv' or 'geojson' (heatmap only)
            summary: Optional summary block (JSON only)
            extra: Optional additional top-level blocks (JSON only)
            output_path: Optional override of config.data.output_path

        Returns:
            Path of the written file
        """
        if fmt not in FORMATS:
            raise ValueError(f"Unknown export format {fmt!r}; expected one of {FORMATS}")
        if fmt == 'geojson' and not all(isinstance(e, HeatmapEntry) for e in entries):
            raise ValueError("GeoJSON export is only available for heatmap entries")

        output_path = output_path or self.config.data.output_path
        os.makedirs(output_path, exist_ok=True)
        file_path = os.path.join(output_path, f"{product}_{start_date}_{end_date}.{fmt}")
        rows: List[Dict[str, Any]] = [e.to_dict() for e in entries]

        if fmt == 'csv':
            pd.DataFrame([_flatten(r) for r in rows]).to_csv(file_path, index=False)
        else:
            if fmt == 'geojson':
                payload = heatmap_geojson(entries)
                payload["metadata"] = self._metadata(product, entries, start_date, end_date)
            else:
                payload = {"metadata": self._metadata(product, entries, start_date, end_date), "data": rows}
                if summary is not None:
                    payload["summary"] = summary
                payload.update(extra or {})

            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)

        logger.info(f"{product} written to: {file_path} ({len(rows):,} entries)")
        return file_path

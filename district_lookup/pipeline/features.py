"""Read acquired GeoJSON files into raw features."""

from __future__ import annotations

import json
from pathlib import Path

from district_lookup.common.errors import SourceFormatError
from district_lookup.common.models import RawFeature


def read_feature_collection(path: Path) -> list[RawFeature]:
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        raise SourceFormatError(f"Unreadable GeoJSON at {path}: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("type") != "FeatureCollection":
        raise SourceFormatError(f"Expected a GeoJSON FeatureCollection at {path}")

    features = payload.get("features")
    if not isinstance(features, list):
        raise SourceFormatError(f"FeatureCollection at {path} has no features list")

    return [
        RawFeature(
            properties=feature.get("properties") or {},
            geometry=feature.get("geometry"),
        )
        for feature in features
        if isinstance(feature, dict)
    ]

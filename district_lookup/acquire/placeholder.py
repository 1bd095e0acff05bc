"""Synthetic single-feature stand-ins for layers whose sources are unreachable."""

from __future__ import annotations

from pathlib import Path

from district_lookup.common.fs import write_json_atomic
from district_lookup.common.geometry import bbox_polygon
from district_lookup.common.models import DatasetDescriptor

PLACEHOLDER_MARKER = "_placeholder"


def placeholder_path(cache_dir: Path, descriptor: DatasetDescriptor) -> Path:
    # Never the cache path itself: a cache hit must not return synthetic data.
    return cache_dir / f"{Path(descriptor.cache_file).stem}.placeholder.geojson"


def build_placeholder_collection(descriptor: DatasetDescriptor) -> dict:
    if descriptor.placeholder is None:
        raise ValueError(f"Dataset {descriptor.key} declares no placeholder policy")

    properties = dict(descriptor.placeholder.properties)
    properties[PLACEHOLDER_MARKER] = True
    return {
        "type": "FeatureCollection",
        "name": f"{descriptor.key}_placeholder",
        "features": [
            {
                "type": "Feature",
                "properties": properties,
                "geometry": bbox_polygon(descriptor.placeholder.bbox),
            }
        ],
    }


def write_placeholder(cache_dir: Path, descriptor: DatasetDescriptor) -> Path:
    path = placeholder_path(cache_dir, descriptor)
    write_json_atomic(path, build_placeholder_collection(descriptor))
    return path

"""Geometry helpers shared by the loader, the stores and the resolver."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping

from pyproj import CRS, Transformer

POLYGONAL_TYPES = {"Polygon", "MultiPolygon"}


def to_multipolygon(geometry: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Upgrade a GeoJSON Polygon to MultiPolygon; None for anything non-polygonal."""
    if not isinstance(geometry, Mapping):
        return None
    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if geometry_type not in POLYGONAL_TYPES or not coordinates:
        return None
    if geometry_type == "Polygon":
        return {"type": "MultiPolygon", "coordinates": [coordinates]}
    return {"type": "MultiPolygon", "coordinates": coordinates}


def bbox_polygon(bbox: tuple[float, float, float, float] | list[float]) -> dict[str, Any]:
    min_x, min_y, max_x, max_y = (float(v) for v in bbox)
    ring = [
        [min_x, min_y],
        [max_x, min_y],
        [max_x, max_y],
        [min_x, max_y],
        [min_x, min_y],
    ]
    return {"type": "Polygon", "coordinates": [ring]}


@lru_cache(maxsize=32)
def get_transformer(source_epsg: int, target_epsg: int) -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(source_epsg), CRS.from_epsg(target_epsg), always_xy=True)


def transform_point(x: float, y: float, source_epsg: int, target_epsg: int) -> tuple[float, float]:
    if source_epsg == target_epsg:
        return x, y
    transformed_x, transformed_y = get_transformer(source_epsg, target_epsg).transform(x, y)
    return transformed_x, transformed_y


def valid_lon_lat(lon: float | None, lat: float | None) -> bool:
    if lon is None or lat is None:
        return False
    return -180 <= lon <= 180 and -90 <= lat <= 90

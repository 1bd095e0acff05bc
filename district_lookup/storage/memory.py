"""In-process spatial store backed by shapely geometries."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable

from shapely import transform
from shapely.errors import ShapelyError
from shapely.geometry import Point, shape
from shapely.geometry.base import BaseGeometry
from shapely.prepared import PreparedGeometry, prep

from district_lookup.common.constants import DEFAULT_STORAGE_SRID
from district_lookup.common.errors import StorageError
from district_lookup.common.geometry import get_transformer, transform_point
from district_lookup.common.models import CanonicalRecord


@dataclass(frozen=True)
class StoredFeature:
    row: dict[str, Any]
    geometry: BaseGeometry
    prepared: PreparedGeometry


class MemorySpatialStore:
    def __init__(self, srid: int = DEFAULT_STORAGE_SRID) -> None:
        self.srid = srid
        self.layers: dict[str, list[StoredFeature]] = {}
        self._pending: list[tuple[str, StoredFeature]] | None = None
        self._lock = threading.RLock()

    def clear(self, layer: str) -> None:
        with self._lock:
            self.layers[layer] = []

    def begin(self) -> None:
        with self._lock:
            if self._pending is not None:
                raise StorageError("A transaction is already open")
            self._pending = []

    def _to_stored(self, record: CanonicalRecord, transform_from: int | None) -> StoredFeature:
        try:
            geometry = shape(record.geometry)
        except (ShapelyError, ValueError, TypeError, AttributeError) as exc:
            raise StorageError(f"Invalid geometry for layer {record.layer}: {exc}") from exc
        if transform_from is not None and transform_from != self.srid:
            geometry = transform(geometry, get_transformer(transform_from, self.srid).transform, interleaved=False)
        return StoredFeature(row=dict(record.fields), geometry=geometry, prepared=prep(geometry))

    def insert_batch(
        self,
        layer: str,
        records: Iterable[CanonicalRecord],
        *,
        transform_from: int | None = None,
    ) -> None:
        with self._lock:
            if self._pending is None:
                raise StorageError("insert_batch called outside a transaction")
            for record in records:
                self._pending.append((layer, self._to_stored(record, transform_from)))

    def commit(self) -> None:
        with self._lock:
            if self._pending is None:
                raise StorageError("No open transaction to commit")
            for layer, feature in self._pending:
                self.layers.setdefault(layer, []).append(feature)
            self._pending = None

    def rollback(self) -> None:
        with self._lock:
            self._pending = None

    def contains_point(self, layer: str, x: float, y: float, crs: int) -> list[dict[str, Any]]:
        px, py = transform_point(x, y, crs, self.srid)
        point = Point(px, py)
        with self._lock:
            features = list(self.layers.get(layer, []))
        return [dict(feature.row) for feature in features if feature.prepared.intersects(point)]

    def count(self, layer: str) -> int:
        with self._lock:
            return len(self.layers.get(layer, []))

    def close(self) -> None:
        return None

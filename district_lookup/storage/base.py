"""Storage collaborator contract shared by the loader and the resolver."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from district_lookup.common.models import CanonicalRecord


class SpatialStore(Protocol):
    """Owns all persisted layer state.

    ``insert_batch`` is only valid between ``begin`` and ``commit``/``rollback``.
    ``transform_from`` names the EPSG code the record geometries are expressed
    in when it differs from :attr:`srid`; ``None`` means no transform.
    """

    srid: int

    def clear(self, layer: str) -> None: ...

    def begin(self) -> None: ...

    def insert_batch(
        self,
        layer: str,
        records: Iterable[CanonicalRecord],
        *,
        transform_from: int | None = None,
    ) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def contains_point(self, layer: str, x: float, y: float, crs: int) -> list[dict[str, Any]]: ...

    def count(self, layer: str) -> int: ...

    def close(self) -> None: ...

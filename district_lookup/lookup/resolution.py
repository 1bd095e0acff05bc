"""Multi-layer point resolution against the loaded boundary layers.

The engine first checks coverage (the point must fall in a municipality of
the configured county) and only then queries the configured layers. The
anchor layer must match for the result to count as found; every other
layer is independently nullable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from district_lookup.common.constants import WGS84
from district_lookup.common.geometry import transform_point
from district_lookup.common.logging import log_event
from district_lookup.common.models import LayerMatch, ResolutionResult, ResolutionStatus
from district_lookup.lookup.members import RepresentativeDirectory
from district_lookup.pipeline.registry import LayerStrategy, as_text, get_strategy
from district_lookup.storage.base import SpatialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionLayer:
    key: str
    layer: str
    strategy: LayerStrategy
    member_source: str = "record"


@dataclass(frozen=True)
class SubstitutionRule:
    layer: str
    from_layer: str


class ResolutionEngine:
    def __init__(
        self,
        store: SpatialStore,
        layers: Sequence[ResolutionLayer],
        *,
        county: str,
        coverage_layer: str,
        anchor_layer: str,
        directory: RepresentativeDirectory | None = None,
        substitutions: Sequence[SubstitutionRule] = (),
    ) -> None:
        self.store = store
        self.layers = tuple(layers)
        self.county = county
        self.coverage_layer = coverage_layer
        self.anchor_layer = anchor_layer
        self.directory = directory or RepresentativeDirectory()
        self.substitutions = tuple(substitutions)

    @classmethod
    def from_bundle(cls, bundle, store: SpatialStore) -> "ResolutionEngine":
        strategies = {descriptor.layer: get_strategy(descriptor.strategy) for descriptor in bundle.datasets.values()}
        resolution = bundle.settings["resolution"]
        layers = [
            ResolutionLayer(
                key=entry["key"],
                layer=entry["layer"],
                strategy=strategies[entry["layer"]],
                member_source=entry.get("member_source", "record"),
            )
            for entry in resolution["layers"]
        ]
        substitutions = [
            SubstitutionRule(layer=rule["layer"], from_layer=rule["from_layer"])
            for rule in resolution.get("cross_layer_substitution") or []
        ]
        return cls(
            store,
            layers,
            county=resolution["county"],
            coverage_layer=resolution["coverage_layer"],
            anchor_layer=resolution["anchor_layer"],
            directory=RepresentativeDirectory(bundle.representatives),
            substitutions=substitutions,
        )

    def _to_store_crs(self, lon: float, lat: float) -> tuple[float, float]:
        return transform_point(lon, lat, WGS84, self.store.srid)

    def _coverage_row(self, x: float, y: float) -> dict[str, Any] | None:
        county = self.county.casefold()
        for row in self.store.contains_point(self.coverage_layer, x, y, self.store.srid):
            if (as_text(row.get("county")) or "").casefold() == county:
                return row
        return None

    def is_in_coverage_area(self, lon: float, lat: float) -> bool:
        x, y = self._to_store_crs(lon, lat)
        return self._coverage_row(x, y) is not None

    def _match(self, entry: ResolutionLayer, row: Mapping[str, Any]) -> LayerMatch:
        strategy = entry.strategy
        district = as_text(row.get(strategy.id_field))
        name = as_text(row.get(strategy.name_field)) if strategy.name_field else None
        if entry.member_source == "directory":
            member = self.directory.member_for(entry.key, district)
        else:
            member = as_text(row.get(strategy.member_field)) if strategy.member_field else None

        attributes = {
            column: row.get(column)
            for column in strategy.columns
            if column not in {strategy.id_field, strategy.name_field, strategy.member_field}
        }
        return LayerMatch(district=district, name=name, member=member, attributes=attributes)

    def _substitute(self, matches: dict[str, LayerMatch | None]) -> None:
        for rule in self.substitutions:
            source = matches.get(rule.from_layer)
            if matches.get(rule.layer) is not None or source is None:
                continue
            matches[rule.layer] = LayerMatch(
                district=source.district,
                member=self.directory.member_for(rule.layer, source.district),
                approximate=True,
            )
            log_event(
                logger,
                f"{rule.layer} district approximated from {rule.from_layer}",
                level=logging.WARNING,
                layer=rule.layer,
                event="CROSS_LAYER_SUBSTITUTION",
                status="degraded",
            )

    def resolve(self, lon: float, lat: float) -> ResolutionResult:
        x, y = self._to_store_crs(lon, lat)
        coverage = self._coverage_row(x, y)
        if coverage is None:
            log_event(logger, f"point {lon},{lat} outside coverage", event="OUT_OF_COVERAGE", status="unsupported")
            return ResolutionResult(status=ResolutionStatus.UNSUPPORTED, lon=lon, lat=lat)

        municipality = as_text(coverage.get("name"))
        matches: dict[str, LayerMatch | None] = {}
        anchor_found = False
        for entry in self.layers:
            rows = self.store.contains_point(entry.layer, x, y, self.store.srid)
            if len(rows) > 1:
                log_event(
                    logger,
                    f"{len(rows)} overlapping matches in {entry.layer}, taking the first",
                    level=logging.WARNING,
                    layer=entry.layer,
                    event="OVERLAPPING_MATCH",
                    status="degraded",
                    rows_out=len(rows),
                )
            matches[entry.key] = self._match(entry, rows[0]) if rows else None
            if entry.layer == self.anchor_layer and rows:
                anchor_found = True

        if not anchor_found:
            log_event(logger, f"no {self.anchor_layer} match for {lon},{lat}", layer=self.anchor_layer, event="ANCHOR_MISS", status="not_found")
            return ResolutionResult(
                status=ResolutionStatus.NOT_FOUND,
                lon=lon,
                lat=lat,
                municipality=municipality,
                county=self.county,
            )

        self._substitute(matches)
        return ResolutionResult(
            status=ResolutionStatus.FOUND,
            lon=lon,
            lat=lat,
            municipality=municipality,
            county=self.county,
            layers=matches,
        )

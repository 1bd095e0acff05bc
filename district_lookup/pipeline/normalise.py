"""Map heterogeneous feature properties onto canonical per-layer records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from district_lookup.common.errors import NormalizationRejected
from district_lookup.common.geometry import to_multipolygon
from district_lookup.common.logging import log_event
from district_lookup.common.models import CanonicalRecord, DatasetDescriptor, RawFeature
from district_lookup.pipeline.registry import LayerStrategy, get_strategy

logger = logging.getLogger(__name__)

MAX_REJECTION_SAMPLES = 20


@dataclass
class NormalisationOutcome:
    records: list[CanonicalRecord] = field(default_factory=list)
    rejected: int = 0
    rejection_samples: list[dict] = field(default_factory=list)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def lookup_first(properties: Mapping[str, Any], candidates: Iterable[str]) -> Any | None:
    for key in candidates:
        value = properties.get(key)
        if not _is_blank(value):
            return value
    return None


def normalize_feature(
    feature: RawFeature,
    descriptor: DatasetDescriptor,
    strategy: LayerStrategy | None = None,
) -> CanonicalRecord:
    """Build the canonical record for one feature or raise NormalizationRejected."""
    strategy = strategy or get_strategy(descriptor.strategy)
    if not isinstance(feature.properties, Mapping):
        raise NormalizationRejected("properties", "feature properties are not an object")

    values: dict[str, Any] = {}
    for canonical, candidates in descriptor.field_map.items():
        value = lookup_first(feature.properties, candidates)
        if value is None:
            value = descriptor.defaults.get(canonical)
        values[canonical] = value
    for canonical, default in descriptor.defaults.items():
        values.setdefault(canonical, default)

    row = strategy.build_record(values)
    for required in strategy.required:
        if _is_blank(row.get(required)):
            raise NormalizationRejected(required, "required field missing")

    geometry = to_multipolygon(feature.geometry)
    if geometry is None:
        if not isinstance(feature.geometry, Mapping):
            raise NormalizationRejected("geometry", "feature geometry is missing or not an object")
        raise NormalizationRejected("geometry", f"unsupported geometry type {feature.geometry.get('type')!r}")

    return CanonicalRecord(
        layer=descriptor.layer,
        fields=row,
        geometry=geometry,
        source_crs=descriptor.source_crs,
    )


def normalize_features(features: Iterable[RawFeature], descriptor: DatasetDescriptor) -> NormalisationOutcome:
    strategy = get_strategy(descriptor.strategy)
    outcome = NormalisationOutcome()

    for index, feature in enumerate(features):
        try:
            outcome.records.append(normalize_feature(feature, descriptor, strategy))
        except NormalizationRejected as exc:
            outcome.rejected += 1
            if len(outcome.rejection_samples) < MAX_REJECTION_SAMPLES:
                outcome.rejection_samples.append({"index": index, "field": exc.field, "reason": exc.reason})
            log_event(
                logger,
                f"rejected feature {index} of {descriptor.key}: {exc}",
                level=logging.WARNING,
                dataset=descriptor.key,
                layer=descriptor.layer,
                event="FEATURE_REJECTED",
                status="skipped",
                error_code=exc.error_code,
            )

    return outcome

"""Data models used across the pipeline and the lookup path."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


@dataclass(frozen=True)
class PlaceholderPolicy:
    bbox: tuple[float, float, float, float]
    properties: Mapping[str, Any]


@dataclass(frozen=True)
class DatasetDescriptor:
    key: str
    description: str
    layer: str
    strategy: str
    source_locators: tuple[str, ...]
    cache_file: str
    source_crs: int
    field_map: Mapping[str, tuple[str, ...]]
    defaults: Mapping[str, Any] = field(default_factory=dict)
    placeholder: PlaceholderPolicy | None = None


@dataclass(frozen=True)
class RawFeature:
    properties: Mapping[str, Any]
    geometry: Mapping[str, Any] | None


@dataclass(frozen=True)
class CanonicalRecord:
    layer: str
    fields: Mapping[str, Any]
    geometry: Mapping[str, Any]
    source_crs: int


class AcquisitionOrigin(str, Enum):
    CACHE = "cache"
    DOWNLOAD = "download"
    LOCAL = "local"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class AcquiredFile:
    dataset_key: str
    path: Path
    origin: AcquisitionOrigin
    locator: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.origin is AcquisitionOrigin.PLACEHOLDER


@dataclass(frozen=True)
class DatasetLoadResult:
    dataset_key: str
    layer: str
    origin: AcquisitionOrigin
    features_in: int
    records_loaded: int
    rejected: int
    rejection_samples: tuple[Mapping[str, Any], ...] = ()


class GeocodeSource(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lon: float
    source: GeocodeSource
    provider: str
    formatted_address: str
    confidence: Any = None
    regions: Mapping[str, Any] = field(default_factory=dict)


class ResolutionStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class LayerMatch:
    district: Any
    name: Any = None
    member: Any = None
    approximate: bool = False
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = {"district": self.district, "name": self.name, "member": self.member}
        if self.approximate:
            payload["approximate"] = True
        extra = {key: value for key, value in self.attributes.items() if key not in payload}
        if extra:
            payload["attributes"] = extra
        return payload


@dataclass(frozen=True)
class ResolutionResult:
    status: ResolutionStatus
    lon: float
    lat: float
    municipality: str | None = None
    county: str | None = None
    layers: Mapping[str, LayerMatch | None] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.status is ResolutionStatus.FOUND

    @property
    def supported(self) -> bool:
        return self.status is not ResolutionStatus.UNSUPPORTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "lon": self.lon,
            "lat": self.lat,
            "supported": self.supported,
            "found": self.found,
            "municipality": self.municipality,
            "county": self.county,
            "districts": (
                {key: (match.to_dict() if match is not None else None) for key, match in self.layers.items()}
                if self.found
                else None
            ),
        }

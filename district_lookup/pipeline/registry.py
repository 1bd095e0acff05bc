"""Dataset registry and per-layer record strategies.

Each boundary layer is described by a :class:`LayerStrategy` holding its
canonical columns, the default property aliases for each input field and a
``build_record`` hook for derived or composite columns. Strategies are looked
up by name, so adding a layer means registering a strategy and a dataset
entry in ``datasets.yml``; the loader control flow never changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from district_lookup.common.errors import ConfigError
from district_lookup.common.models import DatasetDescriptor, PlaceholderPolicy


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class LayerStrategy:
    name: str
    columns: tuple[str, ...]
    required: tuple[str, ...]
    id_field: str
    field_map: Mapping[str, tuple[str, ...]]
    name_field: str | None = None
    member_field: str | None = None
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def build_record(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {column: as_text(values.get(column)) for column in self.columns}


class CountyCouncilStrategy(LayerStrategy):
    def build_record(self, values: Mapping[str, Any]) -> dict[str, Any]:
        record = super().build_record(values)
        if record["member"] is None:
            parts = [as_text(values.get("member_first")), as_text(values.get("member_last"))]
            record["member"] = " ".join(part for part in parts if part) or None
        return record


class CityCouncilStrategy(LayerStrategy):
    def build_record(self, values: Mapping[str, Any]) -> dict[str, Any]:
        record = super().build_record(values)
        if record["name"] is None and record["district"] is not None:
            record["name"] = f"District {record['district']}"
        return record


LAYER_STRATEGIES: dict[str, LayerStrategy] = {
    "county_council": CountyCouncilStrategy(
        name="county_council",
        columns=("district", "name", "member"),
        required=("district",),
        id_field="district",
        name_field="name",
        member_field="member",
        field_map={
            "district": ("District", "district"),
            "name": ("LABEL", "label", "name"),
            "member": ("member", "MEMBER"),
            "member_first": ("CouncilRepFirst",),
            "member_last": ("CouncilRepLast",),
        },
    ),
    "pgh_council": CityCouncilStrategy(
        name="pgh_council",
        columns=("district", "name", "member"),
        required=("district",),
        id_field="district",
        name_field="name",
        member_field="member",
        field_map={
            "district": ("DIST_ID", "district", "DISTRICT"),
            "name": ("DIST_NAME", "name", "NAME"),
            "member": ("member", "MEMBER"),
        },
    ),
    "school_districts": LayerStrategy(
        name="school_districts",
        columns=("name", "lea_code", "superintendent"),
        required=("name",),
        id_field="name",
        name_field="name",
        field_map={
            "name": ("SCHOOLD", "name", "NAME", "school_district"),
            "lea_code": ("lea_code", "LEA_CODE"),
            "superintendent": ("superintendent",),
        },
    ),
    "pgh_wards": LayerStrategy(
        name="pgh_wards",
        columns=("ward",),
        required=("ward",),
        id_field="ward",
        field_map={"ward": ("ward", "WARD")},
    ),
    "municipalities": LayerStrategy(
        name="municipalities",
        columns=("name", "county"),
        required=("name", "county"),
        id_field="name",
        name_field="name",
        field_map={
            "name": ("name", "NAME", "municipality", "LABEL"),
            "county": ("county", "COUNTY"),
        },
    ),
    "school_board_districts": LayerStrategy(
        name="school_board_districts",
        columns=("district", "member"),
        required=("district",),
        id_field="district",
        member_field="member",
        field_map={
            "district": ("District", "district"),
            "member": ("Dir2022", "board_member"),
        },
    ),
}


def get_strategy(name: str) -> LayerStrategy:
    try:
        return LAYER_STRATEGIES[name]
    except KeyError as exc:
        raise ConfigError(f"No layer strategy registered for '{name}'") from exc


def _aliases(value: Any, ctx: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{ctx} must be a string or a list of strings")
    return tuple(value)


def _placeholder(cfg: Mapping[str, Any] | None, key: str) -> PlaceholderPolicy | None:
    if not cfg:
        return None
    bbox = cfg.get("bbox")
    if not isinstance(bbox, list) or len(bbox) != 4:
        raise ConfigError(f"datasets[{key}].placeholder.bbox must be [min_x, min_y, max_x, max_y]")
    return PlaceholderPolicy(
        bbox=tuple(float(v) for v in bbox),
        properties=dict(cfg.get("properties") or {}),
    )


def build_descriptor(cfg: Mapping[str, Any]) -> DatasetDescriptor:
    key = cfg["key"]
    strategy = get_strategy(cfg.get("strategy") or cfg["layer"])

    field_map = dict(strategy.field_map)
    for canonical, aliases in (cfg.get("field_map") or {}).items():
        field_map[canonical] = _aliases(aliases, f"datasets[{key}].field_map.{canonical}")

    defaults = dict(strategy.defaults)
    defaults.update(cfg.get("defaults") or {})

    return DatasetDescriptor(
        key=key,
        description=cfg.get("description", key),
        layer=cfg["layer"],
        strategy=strategy.name,
        source_locators=tuple(cfg["source_locators"]),
        cache_file=cfg["cache_file"],
        source_crs=int(cfg["source_crs"]),
        field_map=field_map,
        defaults=defaults,
        placeholder=_placeholder(cfg.get("placeholder"), key),
    )


def build_registry(datasets_cfg: Mapping[str, Any]) -> dict[str, DatasetDescriptor]:
    registry: dict[str, DatasetDescriptor] = {}
    for entry in datasets_cfg["datasets"]:
        descriptor = build_descriptor(entry)
        registry[descriptor.key] = descriptor
    return registry

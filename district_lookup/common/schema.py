"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

import re

from district_lookup.common.errors import ConfigError

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
STORAGE_BACKENDS = {"postgis", "memory"}
MEMBER_SOURCES = {"record", "directory"}


def _assert_mapping(obj, ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    _assert_mapping(obj, ctx)
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_identifier(value, ctx: str) -> None:
    if not isinstance(value, str) or not IDENTIFIER_RE.match(value):
        raise ConfigError(f"{ctx} must be a lowercase identifier, got {value!r}")


def validate_datasets_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_required_keys(cfg, {"datasets"}, "datasets config")
    if not isinstance(cfg["datasets"], list) or not cfg["datasets"]:
        raise ConfigError("datasets must be a non-empty list")

    required = {"key", "layer", "source_locators", "cache_file", "source_crs"}
    known = required | {"description", "strategy", "field_map", "defaults", "placeholder"}
    keys: list[str] = []
    layers: list[str] = []
    for idx, entry in enumerate(cfg["datasets"]):
        ctx = f"datasets[{idx}]"
        _assert_required_keys(entry, required, ctx)
        _assert_no_unknown_keys(entry, known, ctx, allow_unknown)
        _assert_identifier(entry["key"], f"{ctx}.key")
        _assert_identifier(entry["layer"], f"{ctx}.layer")
        if not isinstance(entry["source_locators"], list):
            raise ConfigError(f"{ctx}.source_locators must be a list")
        if not entry["source_locators"] and not entry.get("placeholder"):
            raise ConfigError(f"{ctx} needs at least one source locator or a placeholder")
        if not isinstance(entry["source_crs"], int):
            raise ConfigError(f"{ctx}.source_crs must be an EPSG code")
        keys.append(entry["key"])
        layers.append(entry["layer"])

    for label, values in (("dataset keys", keys), ("layers", layers)):
        dupes = {value for value in values if values.count(value) > 1}
        if dupes:
            raise ConfigError(f"Duplicate {label}: {', '.join(sorted(dupes))}")

    return cfg


def validate_settings_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    top_required = {"storage", "pipeline", "acquisition", "geocoding", "resolution"}
    _assert_required_keys(cfg, top_required, "settings")
    _assert_no_unknown_keys(cfg, top_required | {"verify"}, "settings", allow_unknown)

    _assert_required_keys(cfg["storage"], {"backend", "srid"}, "storage")
    if cfg["storage"]["backend"] not in STORAGE_BACKENDS:
        raise ConfigError(f"storage.backend must be one of: {', '.join(sorted(STORAGE_BACKENDS))}")
    _assert_required_keys(cfg["pipeline"], {"batch_size", "continue_on_dataset_failure", "cache_dir"}, "pipeline")
    if int(cfg["pipeline"]["batch_size"]) < 1:
        raise ConfigError("pipeline.batch_size must be at least 1")
    _assert_required_keys(cfg["acquisition"], {"timeout_seconds"}, "acquisition")
    _assert_required_keys(cfg["geocoding"], {"primary", "secondary"}, "geocoding")
    for provider in ("primary", "secondary"):
        _assert_required_keys(cfg["geocoding"][provider], {"base_url", "timeout_seconds"}, f"geocoding.{provider}")

    resolution = cfg["resolution"]
    _assert_required_keys(resolution, {"county", "coverage_layer", "anchor_layer", "layers"}, "resolution")
    if not isinstance(resolution["layers"], list) or not resolution["layers"]:
        raise ConfigError("resolution.layers must be a non-empty list")
    for idx, layer in enumerate(resolution["layers"]):
        ctx = f"resolution.layers[{idx}]"
        _assert_required_keys(layer, {"key", "layer"}, ctx)
        if layer.get("member_source", "record") not in MEMBER_SOURCES:
            raise ConfigError(f"{ctx}.member_source must be one of: {', '.join(sorted(MEMBER_SOURCES))}")
    for idx, rule in enumerate(resolution.get("cross_layer_substitution") or []):
        _assert_required_keys(rule, {"layer", "from_layer"}, f"resolution.cross_layer_substitution[{idx}]")

    return cfg


def validate_representatives_config(cfg: dict | None) -> dict:
    if cfg is None:
        return {}
    _assert_mapping(cfg, "representatives")
    for layer_key, members in cfg.items():
        _assert_mapping(members, f"representatives.{layer_key}")
    return cfg


def validate_cross_references(datasets_cfg: dict, settings_cfg: dict) -> None:
    loaded_layers = {entry["layer"] for entry in datasets_cfg["datasets"]}
    resolution = settings_cfg["resolution"]
    referenced = [resolution["coverage_layer"], resolution["anchor_layer"]]
    referenced.extend(layer["layer"] for layer in resolution["layers"])
    missing = sorted(set(referenced) - loaded_layers)
    if missing:
        raise ConfigError(f"Resolution references layers that no dataset loads: {', '.join(missing)}")

    result_keys = [layer["key"] for layer in resolution["layers"]]
    if resolution["anchor_layer"] not in {layer["layer"] for layer in resolution["layers"]}:
        raise ConfigError("resolution.anchor_layer must also be listed in resolution.layers")
    for rule in resolution.get("cross_layer_substitution") or []:
        for name in (rule["layer"], rule["from_layer"]):
            if name not in result_keys:
                raise ConfigError(f"cross_layer_substitution references unknown result layer '{name}'")

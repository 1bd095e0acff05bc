"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from district_lookup.common.errors import ConfigError
from district_lookup.common.fs import read_yaml
from district_lookup.common.models import DatasetDescriptor
from district_lookup.common.schema import (
    validate_cross_references,
    validate_datasets_config,
    validate_representatives_config,
    validate_settings_config,
)
from district_lookup.pipeline.registry import build_registry

ENV_OVERRIDES = {
    "GEOMANCER_BASE_URL": ("geocoding", "primary", "base_url"),
    "CENSUS_GEOCODER_URL": ("geocoding", "secondary", "base_url"),
}


@dataclass(frozen=True)
class ConfigBundle:
    datasets: dict[str, DatasetDescriptor]
    settings: dict
    representatives: dict

    def dataset(self, key: str) -> DatasetDescriptor:
        try:
            return self.datasets[key]
        except KeyError as exc:
            raise ConfigError(f"Dataset {key} not found") from exc

    def storage_dsn(self, environ: Mapping[str, str] | None = None) -> str | None:
        env = os.environ if environ is None else environ
        storage = self.settings["storage"]
        dsn_env = storage.get("dsn_env", "DATABASE_URL")
        return env.get(dsn_env) or storage.get("dsn")


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> Any:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def _apply_env_overrides(settings: dict, environ: Mapping[str, str]) -> dict:
    if not isinstance(settings, dict):
        return settings
    for env_name, path in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        node = settings
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return settings


def load_all_configs(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigBundle:
    def overlay_for(name: str) -> Path | None:
        if overlay_config_dir is None:
            return None
        return overlay_config_dir / name

    datasets_cfg = validate_datasets_config(
        _load_yaml_with_overlay(config_dir / "datasets.yml", overlay_for("datasets.yml")),
        allow_unknown=allow_unknown,
    )
    settings_cfg = _load_yaml_with_overlay(config_dir / "settings.yml", overlay_for("settings.yml"))
    settings_cfg = _apply_env_overrides(settings_cfg, os.environ if environ is None else environ)
    settings_cfg = validate_settings_config(settings_cfg, allow_unknown=allow_unknown)
    validate_cross_references(datasets_cfg, settings_cfg)

    representatives_path = config_dir / "representatives.yml"
    representatives = {}
    if representatives_path.exists():
        representatives = validate_representatives_config(
            _load_yaml_with_overlay(representatives_path, overlay_for("representatives.yml"))
        )

    return ConfigBundle(
        datasets=build_registry(datasets_cfg),
        settings=settings_cfg,
        representatives=representatives,
    )


def resolve_datasets(bundle: ConfigBundle, target: str | None) -> list[DatasetDescriptor]:
    if target is None or target == "all":
        return list(bundle.datasets.values())
    return [bundle.dataset(target)]

"""Build the configured spatial store."""

from __future__ import annotations

from district_lookup.common.config_loader import ConfigBundle
from district_lookup.common.errors import ConfigError
from district_lookup.pipeline.registry import get_strategy
from district_lookup.storage.base import SpatialStore
from district_lookup.storage.memory import MemorySpatialStore


def layer_columns(bundle: ConfigBundle) -> dict[str, tuple[str, ...]]:
    return {descriptor.layer: get_strategy(descriptor.strategy).columns for descriptor in bundle.datasets.values()}


def build_store(bundle: ConfigBundle) -> SpatialStore:
    storage = bundle.settings["storage"]
    srid = int(storage["srid"])

    if storage["backend"] == "memory":
        return MemorySpatialStore(srid=srid)

    from district_lookup.storage.postgis import PostgisSpatialStore

    dsn = bundle.storage_dsn()
    if not dsn:
        raise ConfigError(f"storage backend postgis needs a DSN in ${storage.get('dsn_env', 'DATABASE_URL')}")
    store = PostgisSpatialStore.from_dsn(dsn, layer_columns(bundle), srid=srid)
    store.ensure_schema()
    return store

"""Pipeline driver: acquire, normalise and load each dataset in registry order."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from district_lookup.acquire.acquisition import acquire_dataset, find_cached
from district_lookup.common.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_INTER_BATCH_DELAY,
    DEFAULT_INTER_DATASET_DELAY,
)
from district_lookup.common.errors import PipelineError
from district_lookup.common.http import HttpClient, RetryConfig
from district_lookup.common.logging import log_event
from district_lookup.common.models import AcquiredFile, AcquisitionOrigin, DatasetDescriptor, DatasetLoadResult
from district_lookup.pipeline.features import read_feature_collection
from district_lookup.pipeline.loader import load_layer
from district_lookup.pipeline.normalise import normalize_features
from district_lookup.storage.base import SpatialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    cache_dir: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY
    inter_dataset_delay: float = DEFAULT_INTER_DATASET_DELAY
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    fetch_attempts: int = 2
    continue_on_dataset_failure: bool = True

    @classmethod
    def from_settings(cls, settings: dict, data_dir: Path, *, strict: bool = False) -> "PipelineOptions":
        pipeline = settings["pipeline"]
        acquisition = settings["acquisition"]
        cache_dir = Path(pipeline["cache_dir"])
        if not cache_dir.is_absolute():
            cache_dir = data_dir / cache_dir
        return cls(
            cache_dir=cache_dir,
            batch_size=int(pipeline["batch_size"]),
            inter_batch_delay=float(pipeline.get("inter_batch_delay_seconds", DEFAULT_INTER_BATCH_DELAY)),
            inter_dataset_delay=float(pipeline.get("inter_dataset_delay_seconds", DEFAULT_INTER_DATASET_DELAY)),
            fetch_timeout=float(acquisition["timeout_seconds"]),
            fetch_attempts=int(acquisition.get("max_attempts", 2)),
            continue_on_dataset_failure=bool(pipeline["continue_on_dataset_failure"]) and not strict,
        )


@dataclass
class PipelineSummary:
    results: dict[str, DatasetLoadResult] = field(default_factory=dict)
    failures: dict[str, dict] = field(default_factory=dict)

    @property
    def layer_counts(self) -> dict[str, int]:
        return {result.layer: result.records_loaded for result in self.results.values()}

    @property
    def placeholder_datasets(self) -> list[str]:
        return sorted(key for key, result in self.results.items() if result.origin is AcquisitionOrigin.PLACEHOLDER)

    @property
    def status(self) -> str:
        if self.failures:
            return "partial"
        if self.placeholder_datasets:
            return "degraded"
        return "success"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "layer_counts": self.layer_counts,
            "datasets": {
                key: {
                    "layer": result.layer,
                    "origin": result.origin.value,
                    "features_in": result.features_in,
                    "records_loaded": result.records_loaded,
                    "rejected": result.rejected,
                    "rejection_samples": list(result.rejection_samples),
                }
                for key, result in self.results.items()
            },
            "failures": self.failures,
            "placeholder_datasets": self.placeholder_datasets,
        }


def _build_client(options: PipelineOptions) -> HttpClient:
    return HttpClient(retry=RetryConfig(max_attempts=options.fetch_attempts))


def load_acquired(
    descriptor: DatasetDescriptor,
    acquired: AcquiredFile,
    store: SpatialStore,
    options: PipelineOptions,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> DatasetLoadResult:
    features = read_feature_collection(acquired.path)
    outcome = normalize_features(features, descriptor)
    log_event(
        logger,
        f"normalised {len(outcome.records)} of {len(features)} features for {descriptor.key}",
        dataset=descriptor.key,
        layer=descriptor.layer,
        event="NORMALISED",
        status="ok",
        rows_in=len(features),
        rows_out=len(outcome.records),
    )

    loaded = load_layer(
        store,
        descriptor.layer,
        outcome.records,
        source_crs=descriptor.source_crs,
        batch_size=options.batch_size,
        inter_batch_delay=options.inter_batch_delay,
        sleep=sleep,
    )
    return DatasetLoadResult(
        dataset_key=descriptor.key,
        layer=descriptor.layer,
        origin=acquired.origin,
        features_in=len(features),
        records_loaded=loaded,
        rejected=outcome.rejected,
        rejection_samples=tuple(outcome.rejection_samples),
    )


def run_single_dataset(
    descriptor: DatasetDescriptor,
    store: SpatialStore,
    options: PipelineOptions,
    *,
    http_client: HttpClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DatasetLoadResult:
    """Acquire and load one dataset; dataset-scoped errors propagate."""
    started = time.monotonic()
    log_event(logger, f"dataset start {descriptor.key}", dataset=descriptor.key, event="DATASET_START", status="ok")

    owns_client = http_client is None
    client = http_client or _build_client(options)
    try:
        acquired = acquire_dataset(descriptor, options.cache_dir, client, timeout=options.fetch_timeout)
    finally:
        if owns_client:
            client.close()

    result = load_acquired(descriptor, acquired, store, options, sleep=sleep)
    log_event(
        logger,
        f"dataset end {descriptor.key}: {result.records_loaded} records in {descriptor.layer}",
        dataset=descriptor.key,
        layer=descriptor.layer,
        event="DATASET_END",
        status="degraded" if acquired.is_placeholder else "ok",
        rows_in=result.features_in,
        rows_out=result.records_loaded,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return result


def run_pipeline(
    descriptors: Iterable[DatasetDescriptor],
    store: SpatialStore,
    options: PipelineOptions,
    *,
    http_client: HttpClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineSummary:
    """Process datasets one at a time.

    With ``continue_on_dataset_failure`` a failing dataset is logged and
    recorded in the summary and the next one is attempted; otherwise the
    first failure is re-raised.
    """
    summary = PipelineSummary()
    descriptors = list(descriptors)

    owns_client = http_client is None
    client = http_client or _build_client(options)
    try:
        for index, descriptor in enumerate(descriptors):
            try:
                summary.results[descriptor.key] = run_single_dataset(
                    descriptor,
                    store,
                    options,
                    http_client=client,
                    sleep=sleep,
                )
            except Exception as exc:
                error_code = exc.error_code if isinstance(exc, PipelineError) else "UNEXPECTED_ERROR"
                summary.failures[descriptor.key] = {"error_code": error_code, "message": str(exc)}
                log_event(
                    logger,
                    f"dataset failed {descriptor.key}: {exc}",
                    level=logging.ERROR,
                    dataset=descriptor.key,
                    layer=descriptor.layer,
                    event="DATASET_FAIL",
                    status="error",
                    error_code=error_code,
                )
                if not options.continue_on_dataset_failure:
                    raise

            if index < len(descriptors) - 1 and options.inter_dataset_delay > 0:
                sleep(options.inter_dataset_delay)
    finally:
        if owns_client:
            client.close()

    log_event(
        logger,
        f"pipeline finished with status {summary.status}",
        event="PIPELINE_END",
        status=summary.status,
        rows_out=sum(summary.layer_counts.values()),
    )
    for layer, count in summary.layer_counts.items():
        log_event(logger, f"{layer}: {count} records", layer=layer, event="LAYER_COUNT", status="ok", rows_out=count)
    return summary


def download_all(
    descriptors: Iterable[DatasetDescriptor],
    options: PipelineOptions,
    *,
    http_client: HttpClient | None = None,
) -> dict[str, dict]:
    """Acquire every dataset without loading; failures are reported, not raised."""
    outcomes: dict[str, dict] = {}
    owns_client = http_client is None
    client = http_client or _build_client(options)
    try:
        for descriptor in descriptors:
            try:
                acquired = acquire_dataset(descriptor, options.cache_dir, client, timeout=options.fetch_timeout)
            except PipelineError as exc:
                outcomes[descriptor.key] = {"status": "error", "error_code": exc.error_code, "message": str(exc)}
                continue
            outcomes[descriptor.key] = {
                "status": "ok",
                "origin": acquired.origin.value,
                "path": str(acquired.path),
            }
    finally:
        if owns_client:
            client.close()
    return outcomes


def load_from_cache(
    descriptors: Iterable[DatasetDescriptor],
    store: SpatialStore,
    options: PipelineOptions,
) -> dict[str, int]:
    """Populate ``store`` from files already on disk, without any network access.

    Used to warm a non-persistent store before answering queries. A dataset
    with neither a cache file nor a placeholder is skipped.
    """
    counts: dict[str, int] = {}
    for descriptor in descriptors:
        acquired = find_cached(descriptor, options.cache_dir)
        if acquired is None:
            log_event(
                logger,
                f"no cached file for {descriptor.key}",
                level=logging.WARNING,
                dataset=descriptor.key,
                layer=descriptor.layer,
                event="CACHE_MISS",
                status="skipped",
            )
            continue
        result = load_acquired(descriptor, acquired, store, options, sleep=lambda _seconds: None)
        counts[descriptor.layer] = result.records_loaded
    return counts

"""Resolve a dataset to a local GeoJSON file with cache, fallback and placeholder semantics."""

from __future__ import annotations

import logging
from pathlib import Path

from district_lookup.acquire.placeholder import placeholder_path, write_placeholder
from district_lookup.common.constants import DEFAULT_FETCH_TIMEOUT
from district_lookup.common.errors import AcquisitionFailed
from district_lookup.common.fs import ensure_dir
from district_lookup.common.http import HttpClient, HttpRequestError, TimeoutConfig
from district_lookup.common.logging import log_event
from district_lookup.common.models import AcquiredFile, AcquisitionOrigin, DatasetDescriptor

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "file:"


class LocatorError(HttpRequestError):
    error_code = "LOCATOR_ERROR"


def _is_local(locator: str) -> bool:
    return locator.startswith(LOCAL_PREFIX)


def _local_path(locator: str, cache_dir: Path) -> Path:
    path = Path(locator[len(LOCAL_PREFIX):])
    if not path.is_absolute():
        path = cache_dir / path
    return path


def _fetch_locator(
    locator: str,
    target_path: Path,
    cache_dir: Path,
    client: HttpClient,
    timeout: float,
) -> tuple[Path, AcquisitionOrigin]:
    if _is_local(locator):
        local_path = _local_path(locator, cache_dir)
        if not local_path.is_file():
            raise LocatorError(f"Local file {local_path.name} not found in {local_path.parent}")
        return local_path, AcquisitionOrigin.LOCAL

    path = client.download_to(locator, target_path, timeout=TimeoutConfig.bounded(timeout))
    return path, AcquisitionOrigin.DOWNLOAD


def find_cached(descriptor: DatasetDescriptor, cache_dir: Path) -> AcquiredFile | None:
    """Return an already-present file for ``descriptor`` without fetching anything."""
    cache_path = cache_dir / descriptor.cache_file
    if cache_path.is_file():
        return AcquiredFile(descriptor.key, cache_path, AcquisitionOrigin.CACHE)
    for locator in descriptor.source_locators:
        if _is_local(locator) and _local_path(locator, cache_dir).is_file():
            return AcquiredFile(descriptor.key, _local_path(locator, cache_dir), AcquisitionOrigin.LOCAL, locator)
    synthetic = placeholder_path(cache_dir, descriptor)
    if descriptor.placeholder is not None and synthetic.is_file():
        return AcquiredFile(descriptor.key, synthetic, AcquisitionOrigin.PLACEHOLDER)
    return None


def acquire_dataset(
    descriptor: DatasetDescriptor,
    cache_dir: Path,
    http_client: HttpClient | None = None,
    *,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> AcquiredFile:
    """Return a local file for ``descriptor``.

    A cache hit is returned untouched. Otherwise each locator is tried in
    order; the first success is written atomically to the cache path. When
    every locator fails the dataset's placeholder policy, if any, produces a
    synthetic one-feature file; without one :class:`AcquisitionFailed` is
    raised carrying the last underlying error.
    """
    ensure_dir(cache_dir)
    cache_path = cache_dir / descriptor.cache_file

    if cache_path.is_file():
        log_event(
            logger,
            f"using cached file {cache_path.name}",
            dataset=descriptor.key,
            event="CACHE_HIT",
            status="ok",
        )
        return AcquiredFile(descriptor.key, cache_path, AcquisitionOrigin.CACHE)

    last_error: Exception | None = None
    owns_client = http_client is None
    client = http_client or HttpClient()
    try:
        for attempt, locator in enumerate(descriptor.source_locators, start=1):
            try:
                path, origin = _fetch_locator(locator, cache_path, cache_dir, client, timeout)
            except (HttpRequestError, OSError) as exc:
                last_error = exc
                log_event(
                    logger,
                    f"source failed for {descriptor.key}: {exc}",
                    level=logging.WARNING,
                    dataset=descriptor.key,
                    source=locator,
                    attempt=attempt,
                    event="SOURCE_FAIL",
                    status="error",
                    error_code=getattr(exc, "error_code", "OS_ERROR"),
                )
                continue

            log_event(
                logger,
                f"acquired {descriptor.key} from {origin.value} source",
                dataset=descriptor.key,
                source=locator,
                attempt=attempt,
                event="SOURCE_OK",
                status="ok",
            )
            return AcquiredFile(descriptor.key, path, origin, locator)
    finally:
        if owns_client:
            client.close()

    if descriptor.placeholder is None:
        raise AcquisitionFailed(descriptor.key, last_error)

    path = write_placeholder(cache_dir, descriptor)
    log_event(
        logger,
        f"all sources failed for {descriptor.key}; loading synthetic placeholder layer",
        level=logging.WARNING,
        dataset=descriptor.key,
        layer=descriptor.layer,
        event="PLACEHOLDER",
        status="degraded",
        error_code=AcquisitionFailed.error_code,
    )
    return AcquiredFile(descriptor.key, path, AcquisitionOrigin.PLACEHOLDER)

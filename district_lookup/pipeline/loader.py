"""Batch loader with per-batch transactional replace semantics."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Iterator, Sequence

from district_lookup.common.constants import DEFAULT_BATCH_SIZE, DEFAULT_INTER_BATCH_DELAY
from district_lookup.common.errors import BatchLoadFailed
from district_lookup.common.logging import log_event
from district_lookup.common.models import CanonicalRecord
from district_lookup.storage.base import SpatialStore

logger = logging.getLogger(__name__)


def chunked(records: Sequence[CanonicalRecord], size: int) -> Iterator[Sequence[CanonicalRecord]]:
    for i in range(0, len(records), size):
        yield records[i : i + size]


def load_layer(
    store: SpatialStore,
    layer: str,
    records: Sequence[CanonicalRecord],
    *,
    source_crs: int,
    batch_size: int = DEFAULT_BATCH_SIZE,
    inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Replace ``layer`` with ``records`` and return the number of rows loaded.

    The layer is cleared first, then each batch runs in its own transaction.
    A failing batch is rolled back and raised as BatchLoadFailed; batches
    committed before it stay committed.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    transform_from = source_crs if source_crs != store.srid else None
    total_batches = math.ceil(len(records) / batch_size)

    store.clear(layer)
    log_event(logger, f"cleared layer {layer}", layer=layer, event="LAYER_CLEARED", status="ok")

    loaded = 0
    for batch_number, batch in enumerate(chunked(records, batch_size), start=1):
        store.begin()
        try:
            store.insert_batch(layer, batch, transform_from=transform_from)
            store.commit()
        except Exception as exc:
            store.rollback()
            log_event(
                logger,
                f"batch {batch_number}/{total_batches} of {layer} rolled back",
                level=logging.ERROR,
                layer=layer,
                batch=batch_number,
                event="BATCH_ROLLBACK",
                status="error",
                error_code=BatchLoadFailed.error_code,
            )
            raise BatchLoadFailed(layer, batch_number, exc) from exc

        loaded += len(batch)
        log_event(
            logger,
            f"committed batch {batch_number}/{total_batches} of {layer}",
            layer=layer,
            batch=batch_number,
            event="BATCH_COMMIT",
            status="ok",
            rows_out=len(batch),
        )

        if batch_number < total_batches and inter_batch_delay > 0:
            sleep(inter_batch_delay)

    return loaded

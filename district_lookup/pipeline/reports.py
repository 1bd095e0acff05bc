"""Run report and layer status aggregation."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from district_lookup.common.fs import write_json
from district_lookup.common.time_utils import utc_timestamp_iso
from district_lookup.pipeline.runner import PipelineSummary
from district_lookup.storage.base import SpatialStore


def layer_counts(store: SpatialStore, layers: Iterable[str]) -> dict[str, int]:
    return {layer: store.count(layer) for layer in layers}


def write_run_summary(data_dir: Path, run_id: str, summary: PipelineSummary) -> Path:
    summary_path = data_dir / "reports" / "run_summary.json"
    payload = {
        "run_id": run_id,
        "finished_at": utc_timestamp_iso(),
        **summary.to_dict(),
        "failure_count": len(summary.failures),
        "rejected_features": sum(result.rejected for result in summary.results.values()),
    }
    write_json(summary_path, payload)
    return summary_path

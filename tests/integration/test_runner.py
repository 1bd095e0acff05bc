import json
from pathlib import Path

import pytest

from district_lookup.common.errors import AcquisitionFailed
from district_lookup.common.fs import read_json
from district_lookup.common.http import HttpRequestError
from district_lookup.pipeline.registry import build_descriptor
from district_lookup.pipeline.reports import layer_counts, write_run_summary
from district_lookup.pipeline.runner import PipelineOptions, download_all, load_from_cache, run_pipeline, run_single_dataset
from district_lookup.storage.memory import MemorySpatialStore


def _square(x: float, y: float, size: float = 1.0):
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


def _write_collection(path: Path, features):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}), encoding="utf-8")


def _descriptor(key: str, layer: str, locators, **extra):
    cfg = {"key": key, "layer": layer, "source_locators": locators, "cache_file": f"{key}.geojson", "source_crs": 4326}
    cfg.update(extra)
    return build_descriptor(cfg)


class NoNetworkClient:
    def __init__(self):
        self.requested = []

    def download_to(self, url, target_path, *, timeout=None):
        self.requested.append(url)
        raise HttpRequestError(f"offline: {url}")

    def close(self):
        pass


def _options(cache_dir: Path, **overrides):
    values = {"cache_dir": cache_dir, "batch_size": 2, "inter_batch_delay": 0.0, "inter_dataset_delay": 0.25}
    values.update(overrides)
    return PipelineOptions(**values)


def _fixture(tmp_path: Path):
    cache_dir = tmp_path / "cache"
    _write_collection(
        cache_dir / "wards.geojson",
        [
            {"type": "Feature", "properties": {"ward": i}, "geometry": _square(i, 0)}
            for i in range(1, 6)
        ]
        + [{"type": "Feature", "properties": {"ward": None}, "geometry": _square(9, 9)}],
    )
    _write_collection(
        cache_dir / "council.geojson",
        [{"type": "Feature", "properties": {"District": 1}, "geometry": _square(0, 0, 10)}],
    )
    descriptors = [
        _descriptor("wards", "pgh_wards", ["https://x.test/wards"]),
        _descriptor("missing", "pgh_council", ["https://x.test/missing"]),
        _descriptor("council", "county_council", ["https://x.test/council"]),
    ]
    return cache_dir, descriptors


@pytest.mark.integration
def test_best_effort_run_continues_after_a_failed_dataset(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    store = MemorySpatialStore(srid=4326)
    sleeps: list[float] = []

    summary = run_pipeline(descriptors, store, _options(cache_dir), http_client=NoNetworkClient(), sleep=sleeps.append)

    assert summary.status == "partial"
    assert summary.layer_counts == {"pgh_wards": 5, "county_council": 1}
    assert summary.failures["missing"]["error_code"] == "ACQUISITION_FAILED"
    assert summary.results["wards"].rejected == 1
    assert store.count("pgh_wards") == 5
    assert store.count("county_council") == 1
    assert sleeps.count(0.25) == 2


@pytest.mark.integration
def test_strict_run_stops_at_first_failed_dataset(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    store = MemorySpatialStore(srid=4326)

    with pytest.raises(AcquisitionFailed):
        run_pipeline(
            descriptors,
            store,
            _options(cache_dir, continue_on_dataset_failure=False),
            http_client=NoNetworkClient(),
            sleep=lambda _s: None,
        )

    assert store.count("pgh_wards") == 5
    assert store.count("county_council") == 0


@pytest.mark.integration
def test_options_from_settings_strict_overrides_config(tmp_path: Path):
    settings = {
        "pipeline": {"batch_size": 10, "continue_on_dataset_failure": True, "cache_dir": "cache"},
        "acquisition": {"timeout_seconds": 30},
    }
    options = PipelineOptions.from_settings(settings, tmp_path)
    assert options.cache_dir == tmp_path / "cache"
    assert options.continue_on_dataset_failure
    assert not PipelineOptions.from_settings(settings, tmp_path, strict=True).continue_on_dataset_failure


@pytest.mark.integration
def test_single_dataset_run_and_reload_replaces_layer(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    store = MemorySpatialStore(srid=4326)
    options = _options(cache_dir)

    run_single_dataset(descriptors[0], store, options, http_client=NoNetworkClient(), sleep=lambda _s: None)
    result = run_single_dataset(descriptors[0], store, options, http_client=NoNetworkClient(), sleep=lambda _s: None)

    assert result.records_loaded == 5
    assert result.features_in == 6
    assert store.count("pgh_wards") == 5


@pytest.mark.integration
def test_placeholder_dataset_marks_run_degraded(tmp_path: Path):
    descriptor = _descriptor(
        "board",
        "school_board_districts",
        ["file:SchoolDistricts2022.geojson"],
        placeholder={"bbox": [-80.01, 40.435, -79.99, 40.445], "properties": {"District": "0"}},
    )
    store = MemorySpatialStore(srid=4326)

    summary = run_pipeline([descriptor], store, _options(tmp_path / "cache"), http_client=NoNetworkClient(), sleep=lambda _s: None)

    assert summary.status == "degraded"
    assert summary.placeholder_datasets == ["board"]
    assert store.contains_point("school_board_districts", -80.0, 40.44, 4326) == [{"district": "0", "member": None}]


@pytest.mark.integration
def test_run_summary_and_layer_counts(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    store = MemorySpatialStore(srid=4326)
    summary = run_pipeline(descriptors, store, _options(cache_dir), http_client=NoNetworkClient(), sleep=lambda _s: None)

    path = write_run_summary(tmp_path, "run-test", summary)
    report = read_json(path)

    assert path == tmp_path / "reports" / "run_summary.json"
    assert report["run_id"] == "run-test"
    assert report["status"] == "partial"
    assert report["failure_count"] == 1
    assert report["rejected_features"] == 1
    assert report["datasets"]["wards"]["origin"] == "cache"
    assert report["datasets"]["wards"]["rejection_samples"] == [{"index": 5, "field": "ward", "reason": "required field missing"}]
    assert layer_counts(store, ["pgh_wards", "pgh_council"]) == {"pgh_wards": 5, "pgh_council": 0}


@pytest.mark.integration
def test_download_all_reports_each_dataset(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    outcomes = download_all(descriptors, _options(cache_dir), http_client=NoNetworkClient())

    assert outcomes["wards"]["status"] == "ok"
    assert outcomes["wards"]["origin"] == "cache"
    assert outcomes["missing"] == {
        "status": "error",
        "error_code": "ACQUISITION_FAILED",
        "message": outcomes["missing"]["message"],
    }


@pytest.mark.integration
def test_load_from_cache_never_fetches(tmp_path: Path):
    cache_dir, descriptors = _fixture(tmp_path)
    store = MemorySpatialStore(srid=4326)

    counts = load_from_cache(descriptors, store, _options(cache_dir))

    assert counts == {"pgh_wards": 5, "county_council": 1}
    assert store.count("pgh_council") == 0


@pytest.mark.integration
def test_malformed_feature_is_rejected_without_failing_the_dataset(tmp_path: Path):
    cache_dir = tmp_path / "cache"
    _write_collection(
        cache_dir / "wards.geojson",
        [
            {"type": "Feature", "properties": {"ward": 1}, "geometry": _square(1, 0)},
            {"type": "Feature", "properties": {"ward": 2}, "geometry": ["not", "geojson"]},
            {"type": "Feature", "properties": {"ward": 3}, "geometry": _square(3, 0)},
        ],
    )
    descriptor = _descriptor("wards", "pgh_wards", ["https://x.test/wards"])
    store = MemorySpatialStore(srid=4326)

    summary = run_pipeline([descriptor], store, _options(cache_dir), http_client=NoNetworkClient(), sleep=lambda _s: None)

    assert summary.failures == {}
    assert summary.results["wards"].records_loaded == 2
    assert summary.results["wards"].rejected == 1
    assert summary.to_dict()["datasets"]["wards"]["rejection_samples"][0]["field"] == "geometry"
    assert store.count("pgh_wards") == 2

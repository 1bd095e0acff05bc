"""CLI entrypoint for the district lookup pipeline and query path."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from district_lookup.common.config_loader import ConfigBundle, load_all_configs, resolve_datasets
from district_lookup.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from district_lookup.common.errors import ConfigError, PipelineError
from district_lookup.common.http import HttpClient, RetryConfig
from district_lookup.common.ids import generate_run_id
from district_lookup.common.logging import build_logger, log_event
from district_lookup.lookup.geocoding import build_geocoder
from district_lookup.lookup.resolution import ResolutionEngine
from district_lookup.lookup.service import lookup_address, lookup_point
from district_lookup.pipeline.reports import layer_counts, write_run_summary
from district_lookup.pipeline.runner import PipelineOptions, download_all, load_from_cache, run_pipeline
from district_lookup.storage.base import SpatialStore
from district_lookup.storage.factory import build_store


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--dataset", default="all")
    parser.add_argument("--address", default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--strict", action="store_true")
    args = parser.parse_args(argv)

    if args.command == "lookup":
        has_point = args.lon is not None and args.lat is not None
        if not args.address and not has_point:
            parser.error("lookup needs --address or both --lon and --lat")
        if args.address and (args.lon is not None or args.lat is not None):
            parser.error("use either --address or --lon/--lat, not both")
    return args


def emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _open_store(bundle: ConfigBundle, options: PipelineOptions, *, warm: bool) -> SpatialStore:
    store = build_store(bundle)
    if warm and bundle.settings["storage"]["backend"] == "memory":
        load_from_cache(bundle.datasets.values(), store, options)
    return store


def command_etl(args: argparse.Namespace, bundle: ConfigBundle, options: PipelineOptions, data_dir: Path, run_id: str) -> int:
    descriptors = resolve_datasets(bundle, args.dataset)
    store = build_store(bundle)
    try:
        summary = run_pipeline(descriptors, store, options)
    finally:
        store.close()

    summary_path = write_run_summary(data_dir, run_id, summary)
    emit({"run_id": run_id, "summary_path": str(summary_path), **summary.to_dict()})
    if summary.failures:
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def command_download(args: argparse.Namespace, bundle: ConfigBundle, options: PipelineOptions) -> int:
    outcomes = download_all(resolve_datasets(bundle, args.dataset), options)
    emit(outcomes)
    if any(outcome["status"] != "ok" for outcome in outcomes.values()):
        return EXIT_HARD_FAIL if args.strict else EXIT_PARTIAL
    return EXIT_SUCCESS


def command_status(bundle: ConfigBundle, options: PipelineOptions) -> int:
    store = _open_store(bundle, options, warm=True)
    try:
        counts = layer_counts(store, [descriptor.layer for descriptor in bundle.datasets.values()])
        payload: dict[str, Any] = {"layer_counts": counts}
        probe = (bundle.settings.get("verify") or {}).get("probe_point")
        if probe:
            engine = ResolutionEngine.from_bundle(bundle, store)
            payload["probe"] = lookup_point(float(probe["lon"]), float(probe["lat"]), engine)
    finally:
        store.close()

    emit(payload)
    if not all(counts.values()):
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def command_lookup(args: argparse.Namespace, bundle: ConfigBundle, options: PipelineOptions) -> int:
    store = _open_store(bundle, options, warm=True)
    try:
        engine = ResolutionEngine.from_bundle(bundle, store)
        if args.address:
            with HttpClient(retry=RetryConfig(max_attempts=1)) as client:
                payload = lookup_address(args.address, build_geocoder(bundle.settings, client), engine)
        else:
            payload = lookup_point(args.lon, args.lat, engine)
    finally:
        store.close()

    emit(payload)
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    bundle = load_all_configs(config_dir, overlay_config_dir=overlay_config_dir)
    options = PipelineOptions.from_settings(bundle.settings, data_dir, strict=args.strict)

    log_event(logger, "command start", stage=args.command, event="COMMAND_START", status="ok")
    try:
        if args.command == "etl":
            code = command_etl(args, bundle, options, data_dir, run_id)
        elif args.command == "download":
            code = command_download(args, bundle, options)
        elif args.command == "status":
            code = command_status(bundle, options)
        elif args.command == "lookup":
            code = command_lookup(args, bundle, options)
        else:
            raise ValueError(f"Unknown command: {args.command}")
    except PipelineError as exc:
        log_event(
            logger,
            f"{args.command} failed: {exc}",
            level=logging.ERROR,
            stage=args.command,
            event="COMMAND_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        return EXIT_HARD_FAIL

    log_event(logger, "command end", stage=args.command, event="COMMAND_END", status="ok" if code == EXIT_SUCCESS else "partial")
    return code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except PipelineError:
        return EXIT_HARD_FAIL
    except Exception:
        logging.getLogger("district_lookup").exception("unexpected failure")
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())

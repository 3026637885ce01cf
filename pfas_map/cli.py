"""CLI entrypoint for the PFAS drinking-water map pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Mapping

from pfas_map.common.config_loader import ConfigBundle, apply_cli_overrides, load_settings
from pfas_map.common.constants import DEFAULT_UNIT, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS, STAGES
from pfas_map.common.errors import PipelineError
from pfas_map.common.http import HttpClient, HttpRequestError
from pfas_map.common.labels import load_labels
from pfas_map.common.logging import build_logger, close_logger, log_event
from pfas_map.common.models import AggregationResult, Policy
from pfas_map.common.time_utils import generate_run_id, parse_run_date
from pfas_map.harvest.cache import ResultCache
from pfas_map.harvest.geo_api import run_localities_stage
from pfas_map.harvest.hubeau import fetch_measurement_rows
from pfas_map.harvest.runner import AggregationSettings, results_path, run_harvest_stage
from pfas_map.pipeline.export import load_outcomes, run_export_stage
from pfas_map.pipeline.render_map import Thresholds, run_render_stage
from pfas_map.pipeline.reports import summarise_outcomes, write_run_summary


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=[*STAGES, "all", "check"])
    parser.add_argument("--commune", default=None, help="code INSEE for the check command")
    parser.add_argument("--run-date", default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--policy", default=None, choices=[policy.value for policy in Policy])
    parser.add_argument("--threshold", type=float, default=None)
    parser.add_argument("--amber-threshold", type=float, default=None)
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--no-cache", action="store_true")
    parser.add_argument("--lang", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args(argv)


def effective_settings(bundle: ConfigBundle, args: argparse.Namespace) -> dict:
    amber = args.amber_threshold
    if amber is None and args.threshold is not None:
        # A lowered limit drags the watch level down with it.
        amber = min(args.threshold, bundle.settings["aggregation"]["amber_threshold"])
    return apply_cli_overrides(
        bundle.settings,
        aggregation__policy=args.policy,
        aggregation__threshold=args.threshold,
        aggregation__amber_threshold=amber,
        pipeline__concurrency=args.concurrency,
        cache__enabled=False if args.no_cache else None,
    )


def execute_stage(
    stage: str,
    settings: dict,
    labels: Mapping[str, str],
    data_dir: Path,
    run_id: str,
    logger: logging.Logger,
) -> dict:
    if stage == "localities":
        payload = run_localities_stage(settings, data_dir, run_id, logger)
        return {"row_count": payload["row_count"], "dropped": payload["dropped_without_coordinates"]}
    if stage == "harvest":
        cache = ResultCache.from_settings(settings["cache"], data_dir, logger=logger)
        payload = run_harvest_stage(settings, data_dir, run_id, logger, cache=cache)
        return dict(payload["counts"])
    if stage == "export":
        return run_export_stage(settings, data_dir, data_dir / results_path(settings["aggregation"]["policy"]))
    if stage == "render":
        return run_render_stage(settings, data_dir, labels)
    raise ValueError(f"Unknown stage: {stage}")


def format_check(
    code: str,
    result: AggregationResult | None,
    labels: Mapping[str, str],
    threshold: float,
) -> str:
    if result is None:
        return f"{code}: {labels['not_measured']}"
    lines = [
        f"{labels['results']} {code}",
        f"{labels['pfas']}: {result.value} {result.unit} ({result.source_label})",
        f"{labels['limit']}: {threshold} {DEFAULT_UNIT}",
    ]
    if result.date:
        lines.append(f"{labels['measured_on']}: {result.date}")
    lines.append(labels["alert"] if result.value > threshold else labels["safe"])
    return "\n".join(lines)


def run_check(
    args: argparse.Namespace,
    settings: dict,
    labels: Mapping[str, str],
    http_client: HttpClient | None = None,
) -> int:
    if not args.commune:
        print("check requires --commune <code INSEE>", file=sys.stderr)
        return EXIT_HARD_FAIL

    aggregation = AggregationSettings.from_settings(settings["aggregation"])
    owns_client = http_client is None
    client = http_client or HttpClient.from_settings(settings["http"], pool_size=1)
    try:
        rows = fetch_measurement_rows(client, settings["measurements"], commune_code=args.commune)
    except HttpRequestError:
        print(labels["fetch_error"], file=sys.stderr)
        return EXIT_PARTIAL
    finally:
        if owns_client:
            client.close()

    print(format_check(args.commune, aggregation.evaluate(rows), labels, aggregation.threshold))
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    run_date = parse_run_date(args.run_date)
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    bundle = load_settings(config_dir, overlay_config_dir=overlay_config_dir)
    settings = effective_settings(bundle, args)
    labels = load_labels(bundle.labels_path, args.lang, settings["labels"]["default_language"])

    if args.command == "check":
        return run_check(args, settings, labels)

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    try:
        return _run_stages(args, settings, labels, data_dir, run_id, run_date, logger)
    finally:
        close_logger(logger)


def _run_stages(
    args: argparse.Namespace,
    settings: dict,
    labels: Mapping[str, str],
    data_dir: Path,
    run_id: str,
    run_date: str,
    logger: logging.Logger,
) -> int:
    stages = STAGES if args.command == "all" else (args.command,)
    policy = settings["aggregation"]["policy"]
    stage_reports: dict[str, dict] = {}
    failures: list[dict] = []
    exit_code = EXIT_SUCCESS

    for stage in stages:
        log_event(logger, "stage start", run_id=run_id, stage=stage, event="STAGE_START", status="ok")
        try:
            stage_reports[stage] = execute_stage(stage, settings, labels, data_dir, run_id, logger)
        except PipelineError as exc:
            failures.append({"stage": stage, "error_code": exc.error_code, "message": str(exc)})
            log_event(
                logger,
                f"stage {stage} failed: {exc}",
                level=logging.ERROR,
                run_id=run_id,
                stage=stage,
                event="STAGE_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            # Later stages read this stage's output, so stop here.
            hard = exc.error_code == "CONTRACT_ERROR" or args.strict or not stage_reports
            exit_code = EXIT_HARD_FAIL if hard else EXIT_PARTIAL
            break
        log_event(logger, "stage end", run_id=run_id, stage=stage, event="STAGE_END", status="ok")
        if stage == "harvest" and stage_reports[stage].get("failed"):
            exit_code = EXIT_HARD_FAIL if args.strict else EXIT_PARTIAL
            if args.strict:
                break

    outcome_summary = None
    results_file = data_dir / results_path(policy)
    if results_file.exists():
        outcome_summary = summarise_outcomes(
            load_outcomes(results_file),
            Thresholds.from_settings(settings["aggregation"]),
        )
    write_run_summary(
        data_dir,
        run_id=run_id,
        run_date=run_date,
        policy=policy,
        stages=stage_reports,
        failures=failures,
        outcome_summary=outcome_summary,
    )
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        return run_command(args)
    except PipelineError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())

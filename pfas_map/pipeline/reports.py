"""Run report aggregation."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from pfas_map.common.fs import write_json
from pfas_map.common.models import LocalityOutcome
from pfas_map.pipeline.render_map import Thresholds, color_for


def summarise_outcomes(outcomes: list[LocalityOutcome], thresholds: Thresholds) -> dict:
    statuses = Counter(outcome.status for outcome in outcomes)
    modes = Counter(outcome.result.mode.value for outcome in outcomes if outcome.result is not None)
    bands = Counter(
        color_for(outcome.result.value if outcome.result is not None else None, thresholds)
        for outcome in outcomes
    )
    return {
        "communes": len(outcomes),
        "by_status": dict(sorted(statuses.items())),
        "by_mode": dict(sorted(modes.items())),
        "by_band": dict(sorted(bands.items())),
        "from_cache": sum(1 for outcome in outcomes if outcome.from_cache),
    }


def write_run_summary(
    data_dir: Path,
    *,
    run_id: str,
    run_date: str,
    policy: str,
    stages: dict[str, dict],
    failures: list[dict],
    outcome_summary: dict | None = None,
) -> Path:
    status = "success"
    if failures:
        status = "partial" if stages else "error"
    elif outcome_summary and outcome_summary.get("by_status", {}).get("error"):
        status = "partial"

    summary_path = data_dir / "out" / "reports" / "run_summary.json"
    payload = {
        "run_id": run_id,
        "run_date": run_date,
        "policy": policy,
        "status": status,
        "stages": stages,
        "failures": failures,
        "outcomes": outcome_summary or {},
    }
    write_json(summary_path, payload)
    return summary_path

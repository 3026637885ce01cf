import json
import logging
from pathlib import Path

from pfas_map.common.logging import build_logger, close_logger, log_event
from pfas_map.common.models import AggregationMode, AggregationResult, Locality, LocalityOutcome
from pfas_map.common.time_utils import generate_run_id, parse_run_date
from pfas_map.pipeline.reports import summarise_outcomes, write_run_summary
from pfas_map.pipeline.render_map import Thresholds


def test_generate_run_id_prefix():
    assert generate_run_id().startswith("pfas-")


def test_parse_run_date_defaults_and_iso():
    assert parse_run_date("2026-02-17") == "2026-02-17"
    assert len(parse_run_date(None)) == len("2026-02-17")


def test_json_logger_writes_stable_schema(tmp_path: Path):
    logger = build_logger("run-log", tmp_path, level="WARN")
    log_event(logger, "skipped", event="IGNORED")
    log_event(logger, "commune failed", level=logging.WARNING, locality="75056", error_code="HTTP_ERROR")
    close_logger(logger)

    lines = (tmp_path / "run_meta" / "run-log.log.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["locality"] == "75056"
    assert record["error_code"] == "HTTP_ERROR"
    assert record["level"] == "WARNING"
    assert record["stage"] is None
    assert record["message"] == "commune failed"


def test_run_summary_counts_outcomes(tmp_path: Path):
    locality = Locality(code="29019", name="Brest", lat=48.39, lon=-4.49)
    result = AggregationResult(0.2, "µg/L", "2024-01-01", AggregationMode.MAX_FALLBACK, "PFOS", 1, 0)
    outcomes = [
        LocalityOutcome(locality=locality, status="measured", result=result, from_cache=True),
        LocalityOutcome(locality=locality, status="not_measured"),
        LocalityOutcome(locality=locality, status="error", error_code="HTTP_ERROR"),
    ]
    summary = summarise_outcomes(outcomes, Thresholds())
    assert summary == {
        "communes": 3,
        "by_status": {"error": 1, "measured": 1, "not_measured": 1},
        "by_mode": {"max_fallback": 1},
        "by_band": {"grey": 2, "red": 1},
        "from_cache": 1,
    }

    path = write_run_summary(
        tmp_path,
        run_id="run-1",
        run_date="2026-02-17",
        policy="sum_first",
        stages={"harvest": {}},
        failures=[],
        outcome_summary=summary,
    )
    assert json.loads(path.read_text(encoding="utf-8"))["status"] == "partial"

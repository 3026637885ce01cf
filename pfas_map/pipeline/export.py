"""pfas.json / pfas.csv export for static serving."""

from __future__ import annotations

import math
from pathlib import Path

from pfas_map.common.constants import OUTPUT_FIELDS, SOURCE_ERROR, SOURCE_MEASURED, SOURCE_NOT_MEASURED
from pfas_map.common.errors import ContractError, StageError
from pfas_map.common.fs import read_json, write_csv, write_json_array
from pfas_map.common.models import LocalityOutcome

_SOURCE_BY_STATUS = {
    "measured": SOURCE_MEASURED,
    "not_measured": SOURCE_NOT_MEASURED,
    "error": SOURCE_ERROR,
}


def build_output_row(outcome: LocalityOutcome) -> dict:
    locality = outcome.locality
    result = outcome.result
    return {
        "commune": locality.name,
        "code_insee": locality.code,
        "departement": locality.department,
        "region": locality.region,
        "pfas": result.value if result is not None else None,
        "date_mesure": result.date if result is not None else None,
        "lat": locality.lat,
        "lon": locality.lon,
        "source": _SOURCE_BY_STATUS.get(outcome.status, SOURCE_ERROR),
    }


def build_output_rows(outcomes: list[LocalityOutcome]) -> list[dict]:
    return [build_output_row(outcome) for outcome in outcomes]


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_output_rows(rows: list[dict]) -> None:
    for idx, row in enumerate(rows):
        if tuple(row) != OUTPUT_FIELDS:
            raise ContractError(f"Row {idx} does not match the pfas.json field list: {list(row)}")
        if row["pfas"] is not None and not _is_number(row["pfas"]):
            raise ContractError(f"Row {idx} has a non-numeric pfas value: {row['pfas']!r}")
        if row["date_mesure"] is not None and not isinstance(row["date_mesure"], str):
            raise ContractError(f"Row {idx} has a non-string date_mesure")
        if not _is_number(row["lat"]) or not _is_number(row["lon"]):
            raise ContractError(f"Row {idx} ({row['code_insee']}) has no usable coordinates")


def _csv_value(value: object) -> object:
    return "" if value is None else value


def write_pfas_json(path: Path, rows: list[dict]) -> Path:
    validate_output_rows(rows)
    write_json_array(path, rows)
    return path


def write_pfas_csv(path: Path, rows: list[dict]) -> Path:
    write_csv(path, list(OUTPUT_FIELDS), ({k: _csv_value(v) for k, v in row.items()} for row in rows))
    return path


def load_outcomes(results_file: Path) -> list[LocalityOutcome]:
    if not results_file.exists():
        raise StageError(f"Missing harvest results: {results_file}; run the harvest stage first")
    payload = read_json(results_file)
    return [LocalityOutcome.from_dict(row) for row in payload.get("rows", [])]


def run_export_stage(settings: dict, data_dir: Path, results_file: Path) -> dict:
    rows = build_output_rows(load_outcomes(results_file))
    output = settings["output"]
    json_path = write_pfas_json(data_dir / "out" / output["json_filename"], rows)
    csv_path = write_pfas_csv(data_dir / "out" / output["csv_filename"], rows)
    return {
        "json_path": str(json_path),
        "csv_path": str(csv_path),
        "row_count": len(rows),
        "with_pfas": sum(1 for row in rows if row["pfas"] is not None),
    }

"""UTC helpers for run metadata and cache ages."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_today_iso() -> str:
    return datetime.now(tz=timezone.utc).date().isoformat()


def parse_run_date(value: str | None) -> str:
    if not value:
        return utc_today_iso()
    return date.fromisoformat(value).isoformat()


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def generate_run_id() -> str:
    return datetime.now(tz=timezone.utc).strftime("pfas-%Y%m%dT%H%M%S%fZ")

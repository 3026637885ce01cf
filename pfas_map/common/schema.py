"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from pfas_map.common.errors import ConfigError
from pfas_map.common.models import Policy

SETTINGS_SECTIONS = {
    "geo",
    "measurements",
    "http",
    "aggregation",
    "pipeline",
    "cache",
    "labels",
    "output",
}


def _assert_mapping(obj: object, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    return obj


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value: object, ctx: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{ctx} must be {'non-negative' if allow_zero else 'positive'}")


def validate_settings_config(cfg: object, *, allow_unknown: bool = False) -> dict:
    cfg = _assert_mapping(cfg, "settings")
    _assert_required_keys(cfg, SETTINGS_SECTIONS, "settings")
    _assert_no_unknown_keys(cfg, SETTINGS_SECTIONS, "settings", allow_unknown)
    for section in SETTINGS_SECTIONS:
        _assert_mapping(cfg[section], section)

    _assert_required_keys(cfg["geo"], {"endpoint", "fields"}, "geo")
    departments = cfg["geo"].get("departments") or []
    if not isinstance(departments, list):
        raise ConfigError("geo.departments must be a list")

    measurements = cfg["measurements"]
    _assert_required_keys(measurements, {"endpoint", "page_size", "max_pages", "scope"}, "measurements")
    _assert_positive(measurements["page_size"], "measurements.page_size")
    _assert_positive(measurements["max_pages"], "measurements.max_pages")
    if measurements["scope"] not in ("commune", "departement"):
        raise ConfigError("measurements.scope must be 'commune' or 'departement'")

    http = cfg["http"]
    _assert_required_keys(
        http,
        {"connect_timeout_seconds", "read_timeout_seconds", "max_attempts", "backoff_seconds"},
        "http",
    )
    _assert_positive(http["connect_timeout_seconds"], "http.connect_timeout_seconds")
    _assert_positive(http["read_timeout_seconds"], "http.read_timeout_seconds")
    if http.get("total_timeout_seconds") is not None:
        _assert_positive(http["total_timeout_seconds"], "http.total_timeout_seconds")
    _assert_positive(http["max_attempts"], "http.max_attempts")
    _assert_positive(http["backoff_seconds"], "http.backoff_seconds", allow_zero=True)

    aggregation = cfg["aggregation"]
    _assert_required_keys(aggregation, {"policy", "threshold", "amber_threshold", "sums_exempt"}, "aggregation")
    valid_policies = {policy.value for policy in Policy}
    if aggregation["policy"] not in valid_policies:
        raise ConfigError(
            f"aggregation.policy must be one of {', '.join(sorted(valid_policies))}, got {aggregation['policy']!r}"
        )
    _assert_positive(aggregation["threshold"], "aggregation.threshold")
    _assert_positive(aggregation["amber_threshold"], "aggregation.amber_threshold")
    if aggregation["amber_threshold"] > aggregation["threshold"]:
        raise ConfigError("aggregation.amber_threshold must not exceed aggregation.threshold")

    pipeline = cfg["pipeline"]
    _assert_required_keys(pipeline, {"concurrency", "progress_every"}, "pipeline")
    _assert_positive(pipeline["concurrency"], "pipeline.concurrency")
    _assert_positive(pipeline["progress_every"], "pipeline.progress_every")

    _assert_required_keys(cfg["cache"], {"enabled", "ttl_hours", "directory"}, "cache")
    _assert_positive(cfg["cache"]["ttl_hours"], "cache.ttl_hours")

    _assert_required_keys(cfg["labels"], {"file", "default_language"}, "labels")
    _assert_required_keys(cfg["output"], {"json_filename", "csv_filename", "map_filename"}, "output")

    return cfg


def validate_labels_config(cfg: object, default_language: str) -> dict:
    cfg = _assert_mapping(cfg, "labels")
    if default_language not in cfg:
        raise ConfigError(f"Label table has no entries for default language {default_language!r}")
    for language, table in cfg.items():
        table = _assert_mapping(table, f"labels.{language}")
        bad = sorted(key for key, value in table.items() if not isinstance(value, str))
        if bad:
            raise ConfigError(f"Non-string labels in labels.{language}: {', '.join(bad)}")
    return cfg

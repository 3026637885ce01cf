from pathlib import Path

import pytest

from pfas_map.cli import effective_settings, format_check, parse_args
from pfas_map.common.config_loader import load_settings
from pfas_map.common.errors import ConfigError
from pfas_map.common.models import AggregationMode, AggregationResult

LABELS = {
    "results": "Results:",
    "pfas": "PFAS",
    "limit": "Legal limit (2026)",
    "measured_on": "Measured",
    "alert": "⚠️ Above the limit!",
    "safe": "✅ Water is compliant",
    "not_measured": "PFAS not measured for this municipality.",
}


def test_parse_args_defaults():
    args = parse_args(["harvest"])
    assert args.command == "harvest"
    assert args.policy is None
    assert args.overlay_config_dir is None
    assert args.no_cache is False
    assert args.strict is False


def test_parse_args_overrides():
    args = parse_args(["check", "--commune", "75056", "--policy", "strict", "--threshold", "0.2", "--lang", "en"])
    assert args.commune == "75056"
    assert args.policy == "strict"
    assert args.threshold == 0.2
    assert args.lang == "en"


def test_format_check_verdicts():
    result = AggregationResult(0.15, "µg/L", "2024-02-01", AggregationMode.MAX_FALLBACK, "PFOS", 2, 0)
    text = format_check("75056", result, LABELS, 0.1)
    assert "PFAS: 0.15 µg/L (PFOS)" in text
    assert "Measured: 2024-02-01" in text
    assert text.endswith("⚠️ Above the limit!")

    compliant = AggregationResult(0.05, "µg/L", None, AggregationMode.SUM_FIRST, "Somme des 20 PFAS", 0, 1)
    assert format_check("75056", compliant, LABELS, 0.1).endswith("✅ Water is compliant")
    assert format_check("75056", None, LABELS, 0.1) == "75056: PFAS not measured for this municipality."


def test_lower_threshold_pulls_amber_level_down():
    bundle = load_settings(Path("config"))
    settings = effective_settings(bundle, parse_args(["harvest", "--threshold", "0.04"]))
    assert settings["aggregation"]["threshold"] == 0.04
    assert settings["aggregation"]["amber_threshold"] == 0.04

    raised = effective_settings(bundle, parse_args(["harvest", "--threshold", "0.2"]))
    assert raised["aggregation"]["amber_threshold"] == 0.05


def test_amber_threshold_flag_overrides_watch_level():
    bundle = load_settings(Path("config"))
    settings = effective_settings(bundle, parse_args(["render", "--threshold", "0.04", "--amber-threshold", "0.02"]))
    assert settings["aggregation"]["amber_threshold"] == 0.02

    with pytest.raises(ConfigError):
        effective_settings(bundle, parse_args(["render", "--amber-threshold", "0.5"]))

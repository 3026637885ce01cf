"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pfas_map.common.errors import ConfigError
from pfas_map.common.fs import read_yaml
from pfas_map.common.schema import validate_settings_config

SETTINGS_FILENAME = "settings.yml"


@dataclass(frozen=True)
class ConfigBundle:
    settings: dict
    labels_path: Path


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> Any:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def load_settings(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ConfigBundle:
    overlay_path = overlay_config_dir / SETTINGS_FILENAME if overlay_config_dir is not None else None
    settings = validate_settings_config(
        _load_yaml_with_overlay(config_dir / SETTINGS_FILENAME, overlay_path),
        allow_unknown=allow_unknown,
    )
    labels_path = Path(settings["labels"]["file"])
    if not labels_path.is_absolute():
        labels_path = config_dir / labels_path
    return ConfigBundle(settings=settings, labels_path=labels_path)


def apply_cli_overrides(settings: dict, **overrides: Any) -> dict:
    """Return a copy of settings with non-None CLI overrides applied."""
    nested: dict[str, dict] = {}
    for dotted, value in overrides.items():
        if value is None:
            continue
        section, key = dotted.split("__", 1)
        nested.setdefault(section, {})[key] = value
    if not nested:
        return settings
    return validate_settings_config(_deep_merge(settings, nested))

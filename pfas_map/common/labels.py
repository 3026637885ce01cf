"""Read-only multilingual label store."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from pfas_map.common.fs import read_yaml
from pfas_map.common.schema import validate_labels_config


def load_label_tables(path: Path, default_language: str) -> dict[str, dict[str, str]]:
    return validate_labels_config(read_yaml(path), default_language)


def select_labels(
    tables: Mapping[str, Mapping[str, str]],
    language: str | None,
    default_language: str,
) -> Mapping[str, str]:
    """Labels for `language`, with gaps and unknown languages filled from the default."""
    merged = dict(tables[default_language])
    if language and language != default_language and language in tables:
        merged.update(tables[language])
    return MappingProxyType(merged)


def load_labels(path: Path, language: str | None, default_language: str) -> Mapping[str, str]:
    return select_labels(load_label_tables(path, default_language), language, default_language)

"""Normalise raw Hub'Eau result rows into canonical PFAS measurements."""

from __future__ import annotations

import math
from typing import Iterable, Mapping

from pfas_map.common.constants import DEFAULT_UNIT
from pfas_map.common.models import CanonicalMeasurement
from pfas_map.pipeline.classify import classify

LABEL_FIELDS = ("libelle_parametre", "parametre")
RESULT_FIELDS = ("resultat", "resultat_numerique")
DATE_FIELDS = ("date_prelevement", "date_analyse")
UNIT_FIELDS = ("libelle_unite", "unite")


def _lookup_first_text(raw: Mapping, candidates: tuple[str, ...]) -> str | None:
    for key in candidates:
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_value(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _first_value(raw: Mapping) -> float | None:
    for key in RESULT_FIELDS:
        number = parse_value(raw.get(key))
        if number is not None:
            return number
    return None


def normalise_record(raw: Mapping) -> CanonicalMeasurement | None:
    label = _lookup_first_text(raw, LABEL_FIELDS)
    if label is None:
        return None

    kind = classify(label).kind
    if kind is None:
        return None

    value = _first_value(raw)
    if value is None:
        return None

    return CanonicalMeasurement(
        label=label,
        value=value,
        unit=_lookup_first_text(raw, UNIT_FIELDS) or DEFAULT_UNIT,
        date=_lookup_first_text(raw, DATE_FIELDS),
        kind=kind,
    )


def normalise_records(rows: Iterable[Mapping]) -> list[CanonicalMeasurement]:
    out: list[CanonicalMeasurement] = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        measurement = normalise_record(row)
        if measurement is not None:
            out.append(measurement)
    return out

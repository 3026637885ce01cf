"""PFAS label classification for free-text parameter names."""

from __future__ import annotations

import re
from dataclasses import dataclass

from pfas_map.common.models import MeasurementKind

# Hub'Eau labels mix French and English, e.g. "Somme des 20 PFAS",
# "Acide perfluorooctanoïque", "Perfluorooctane sulfonate (PFOS)".
_SUM_WORD_RE = re.compile(r"\b(?:somme|sum|total|summe|suma)\b|[Σ∑]", re.IGNORECASE)
_CLASS_NAME_RE = re.compile(r"pfas|perfluoro|polyfluoro|fluoroalkyl", re.IGNORECASE)
_SUBSTANCE_RE = re.compile(
    r"pfas"
    r"|perfluoro|polyfluoro|fluoroalkyl|perfluorocarboxyl|perfluorosulfon|fluorotelomer"
    r"|\bpf[a-z]{1,3}[as]\b"
    r"|\bgenx\b|\bhfpo-?da\b|\badona\b"
    r"|\b\d{1,2}:\d\s*fts\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class LabelClass:
    is_aggregate_sum: bool
    is_individual: bool

    @property
    def kind(self) -> MeasurementKind | None:
        if self.is_aggregate_sum:
            return MeasurementKind.AGGREGATE_SUM
        if self.is_individual:
            return MeasurementKind.INDIVIDUAL
        return None


UNRELATED = LabelClass(is_aggregate_sum=False, is_individual=False)


def classify(label: object) -> LabelClass:
    if not isinstance(label, str) or not label:
        return UNRELATED
    is_sum = bool(_SUM_WORD_RE.search(label) and _CLASS_NAME_RE.search(label))
    if is_sum:
        return LabelClass(is_aggregate_sum=True, is_individual=False)
    return LabelClass(is_aggregate_sum=False, is_individual=bool(_SUBSTANCE_RE.search(label)))

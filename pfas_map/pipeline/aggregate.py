"""Reduce a commune's PFAS measurements to one representative value.

Every policy starts from the same working set: aggregate-sum entries are kept
as reported, individual substances are collapsed to the most recent entry per
distinct label. Policies then differ only in which entry they pick:

* ``sum_first``: most recent sum, else the highest individual substance.
* ``max_only``: highest individual substance, sums ignored.
* ``strict``: highest individual substance above the threshold, else the most
  recent individual substance, else the most recent sum.

Dates are ISO-8601 strings and compare lexicographically. A dated entry is
always more recent than an undated one, and the first entry seen wins any tie,
for dates as well as for values.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from pfas_map.common.models import (
    AggregationMode,
    AggregationResult,
    CanonicalMeasurement,
    MeasurementKind,
    Policy,
)


def is_more_recent(candidate: CanonicalMeasurement, current: CanonicalMeasurement) -> bool:
    if candidate.date is None:
        return False
    if current.date is None:
        return True
    return candidate.date > current.date


def most_recent(measurements: Iterable[CanonicalMeasurement]) -> CanonicalMeasurement | None:
    best = None
    for measurement in measurements:
        if best is None or is_more_recent(measurement, best):
            best = measurement
    return best


def max_value(measurements: Iterable[CanonicalMeasurement]) -> CanonicalMeasurement | None:
    best = None
    for measurement in measurements:
        if best is None or measurement.value > best.value:
            best = measurement
    return best


def dedupe_by_label(measurements: Iterable[CanonicalMeasurement]) -> list[CanonicalMeasurement]:
    latest: dict[str, CanonicalMeasurement] = {}
    for measurement in measurements:
        current = latest.get(measurement.label)
        if current is None or is_more_recent(measurement, current):
            latest[measurement.label] = measurement
    return list(latest.values())


def split_working_set(
    measurements: Sequence[CanonicalMeasurement],
) -> tuple[list[CanonicalMeasurement], list[CanonicalMeasurement]]:
    sums = [m for m in measurements if m.kind is MeasurementKind.AGGREGATE_SUM]
    individuals = dedupe_by_label(m for m in measurements if m.kind is MeasurementKind.INDIVIDUAL)
    return sums, individuals


def _result(
    chosen: CanonicalMeasurement,
    mode: AggregationMode,
    sums: list[CanonicalMeasurement],
    individuals: list[CanonicalMeasurement],
) -> AggregationResult:
    return AggregationResult(
        value=chosen.value,
        unit=chosen.unit,
        date=chosen.date,
        mode=mode,
        source_label=chosen.label,
        individual_count=len(individuals),
        sum_count=len(sums),
    )


def _sum_first(sums, individuals) -> AggregationResult | None:
    latest_sum = most_recent(sums)
    if latest_sum is not None:
        return _result(latest_sum, AggregationMode.SUM_FIRST, sums, individuals)
    highest = max_value(individuals)
    if highest is not None:
        return _result(highest, AggregationMode.MAX_FALLBACK, sums, individuals)
    return None


def _max_only(sums, individuals) -> AggregationResult | None:
    highest = max_value(individuals)
    if highest is None:
        return None
    return _result(highest, AggregationMode.MAX_ONLY, sums, individuals)


def _strict(sums, individuals, threshold: float, sums_exempt: bool) -> AggregationResult | None:
    candidates = individuals if sums_exempt else [*individuals, *sums]
    exceeding = max_value(m for m in candidates if m.value > threshold)
    if exceeding is not None:
        return _result(exceeding, AggregationMode.STRICT, sums, individuals)

    latest = most_recent(individuals)
    if latest is not None:
        return _result(latest, AggregationMode.STRICT, sums, individuals)

    latest_sum = most_recent(sums)
    if latest_sum is not None:
        return _result(latest_sum, AggregationMode.SUM_FIRST, sums, individuals)
    return None


def aggregate(
    measurements: Sequence[CanonicalMeasurement],
    policy: Policy | str = Policy.SUM_FIRST,
    threshold: float = 0.1,
    *,
    sums_exempt: bool = True,
) -> AggregationResult | None:
    """Pick the representative measurement for one commune, or None."""
    policy = Policy(policy)
    if not measurements:
        return None

    sums, individuals = split_working_set(measurements)

    if policy is Policy.SUM_FIRST:
        return _sum_first(sums, individuals)
    if policy is Policy.MAX_ONLY:
        return _max_only(sums, individuals)
    if policy is Policy.STRICT:
        return _strict(sums, individuals, threshold, sums_exempt)
    raise ValueError(f"Unsupported aggregation policy: {policy}")

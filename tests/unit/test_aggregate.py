import pytest

from pfas_map.common.models import AggregationMode, CanonicalMeasurement, MeasurementKind, Policy
from pfas_map.pipeline.aggregate import aggregate, dedupe_by_label, most_recent


def individual(label, value, date=None, unit="µg/L"):
    return CanonicalMeasurement(label=label, value=value, unit=unit, date=date, kind=MeasurementKind.INDIVIDUAL)


def total(value, date=None, label="Somme des 20 PFAS"):
    return CanonicalMeasurement(label=label, value=value, unit="µg/L", date=date, kind=MeasurementKind.AGGREGATE_SUM)


PFOA_PFOS = [
    individual("PFOA", 0.08, "2024-01-01"),
    individual("PFOS", 0.15, "2024-02-01"),
]


@pytest.mark.parametrize("policy", list(Policy))
def test_empty_input_is_absent_for_every_policy(policy):
    assert aggregate([], policy, 0.1) is None


def test_max_only_picks_highest_substance():
    result = aggregate(PFOA_PFOS, Policy.MAX_ONLY, 0.1)
    assert result.value == 0.15
    assert result.mode is AggregationMode.MAX_ONLY
    assert result.source_label == "PFOS"
    assert result.individual_count == 2
    assert result.sum_count == 0


def test_strict_reports_exceeding_substance():
    result = aggregate(PFOA_PFOS, Policy.STRICT, 0.1)
    assert result.value == 0.15
    assert result.mode is AggregationMode.STRICT


def test_strict_without_exceedance_falls_back_to_most_recent():
    result = aggregate(PFOA_PFOS, Policy.STRICT, 0.2)
    assert result.value == 0.15
    assert result.date == "2024-02-01"
    assert result.source_label == "PFOS"
    assert result.mode is AggregationMode.STRICT


def test_strict_most_recent_fallback_ignores_value():
    measurements = [individual("PFOS", 0.09, "2023-01-01"), individual("PFOA", 0.01, "2024-06-01")]
    result = aggregate(measurements, Policy.STRICT, 0.1)
    assert result.source_label == "PFOA"
    assert result.value == 0.01


def test_strict_uses_sums_only_when_no_substance():
    result = aggregate([total(0.3, "2024-01-01"), total(0.05, "2024-05-01")], Policy.STRICT, 0.1)
    assert result.value == 0.05
    assert result.mode is AggregationMode.SUM_FIRST


def test_strict_can_include_sums_in_exceedance():
    measurements = [individual("PFOA", 0.02, "2024-01-01"), total(0.4, "2023-01-01")]
    exempt = aggregate(measurements, Policy.STRICT, 0.1)
    included = aggregate(measurements, Policy.STRICT, 0.1, sums_exempt=False)
    assert exempt.value == 0.02
    assert included.value == 0.4
    assert included.mode is AggregationMode.STRICT


def test_sum_first_prefers_most_recent_sum():
    measurements = [
        individual("PFOS", 0.9, "2024-09-01"),
        total(0.07, "2024-03-01"),
        total(0.12, "2024-04-01"),
    ]
    result = aggregate(measurements, Policy.SUM_FIRST, 0.1)
    assert result.value == 0.12
    assert result.mode is AggregationMode.SUM_FIRST
    assert result.sum_count == 2


def test_sum_first_falls_back_to_max_substance():
    result = aggregate(PFOA_PFOS, Policy.SUM_FIRST, 0.1)
    assert result.value == 0.15
    assert result.mode is AggregationMode.MAX_FALLBACK


def test_max_only_ignores_sums():
    assert aggregate([total(0.5, "2024-01-01")], Policy.MAX_ONLY, 0.1) is None


def test_policy_accepts_string_names():
    assert aggregate(PFOA_PFOS, "max_only", 0.1).mode is AggregationMode.MAX_ONLY


def test_dedupe_keeps_most_recent_per_label():
    measurements = [
        individual("PFOS", 0.5, "2022-01-01"),
        individual("PFOS", 0.02, "2024-01-01"),
        individual("PFOA", 0.03, "2024-01-01"),
    ]
    deduped = dedupe_by_label(measurements)
    assert [(m.label, m.value) for m in deduped] == [("PFOS", 0.02), ("PFOA", 0.03)]
    assert aggregate(measurements, Policy.MAX_ONLY, 0.1).value == 0.03


def test_undated_entries_never_displace_dated_ones():
    measurements = [individual("PFOS", 0.02, "2024-01-01"), individual("PFOS", 0.9)]
    assert dedupe_by_label(measurements)[0].value == 0.02
    assert most_recent([individual("PFOS", 0.9), individual("PFOA", 0.1, "2020-01-01")]).label == "PFOA"


def test_ties_keep_first_seen():
    same_date = [individual("PFOS", 0.1, "2024-01-01"), individual("PFOS", 0.2, "2024-01-01")]
    assert dedupe_by_label(same_date)[0].value == 0.1
    undated = [individual("PFOA", 0.3), individual("PFOA", 0.4)]
    assert dedupe_by_label(undated)[0].value == 0.3
    equal_values = [individual("PFOA", 0.2, "2024-01-01"), individual("PFOS", 0.2, "2024-02-01")]
    assert aggregate(equal_values, Policy.MAX_ONLY, 0.1).source_label == "PFOA"


def test_aggregate_is_pure():
    measurements = [total(0.04, "2024-01-01"), *PFOA_PFOS]
    assert aggregate(measurements, Policy.SUM_FIRST, 0.1) == aggregate(measurements, Policy.SUM_FIRST, 0.1)


def test_result_round_trips_through_dict():
    result = aggregate(PFOA_PFOS, Policy.SUM_FIRST, 0.1)
    payload = result.to_dict()
    assert payload["mode"] == "max_fallback"
    assert type(result).from_dict(payload) == result

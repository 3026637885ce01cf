import pytest

from pfas_map.common.models import MeasurementKind
from pfas_map.pipeline.classify import classify


@pytest.mark.parametrize(
    "label",
    [
        "Somme des 20 PFAS",
        "Total PFAS",
        "Sum of PFAS (20 substances)",
        "SOMME DES PFAS",
        "Σ perfluoroalkyl substances",
    ],
)
def test_sum_labels_are_never_individual(label):
    result = classify(label)
    assert result.is_aggregate_sum is True
    assert result.is_individual is False
    assert result.kind is MeasurementKind.AGGREGATE_SUM


@pytest.mark.parametrize(
    "label",
    [
        "PFOA",
        "PFOS",
        "PFHxS",
        "Acide perfluorooctanoïque",
        "Perfluorooctane sulfonate (PFOS)",
        "Acide perfluorobutane sulfonique",
        "6:2 FTS",
        "GenX (HFPO-DA)",
    ],
)
def test_substance_labels_are_individual(label):
    result = classify(label)
    assert result.is_individual is True
    assert result.is_aggregate_sum is False
    assert result.kind is MeasurementKind.INDIVIDUAL


@pytest.mark.parametrize(
    "label",
    ["Nitrates", "Carbone organique total", "pH", "Somme des trihalométhanes", "", "   "],
)
def test_unrelated_labels(label):
    result = classify(label)
    assert result.kind is None


@pytest.mark.parametrize("label", [None, 12, 0.5, ["PFOA"], {"label": "PFOS"}])
def test_classify_is_total_over_non_text(label):
    assert classify(label).kind is None


def test_classify_is_deterministic():
    assert classify("Somme des 20 PFAS") == classify("Somme des 20 PFAS")

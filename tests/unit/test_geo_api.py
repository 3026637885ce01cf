from __future__ import annotations

import pytest

from pfas_map.common.errors import StageError
from pfas_map.common.http import HttpRequestError
from pfas_map.harvest.geo_api import fetch_localities, parse_locality

GEO_CONFIG = {
    "endpoint": "https://geo.example.test/",
    "fields": ["code", "nom", "centre"],
    "departments": [],
    "timeout_seconds": 30,
}

PARIS = {
    "code": "75056",
    "nom": "Paris",
    "centre": {"type": "Point", "coordinates": [2.347, 48.8589]},
    "codeDepartement": "75",
    "departement": {"code": "75", "nom": "Paris"},
    "codeRegion": "11",
    "region": {"code": "11", "nom": "Île-de-France"},
}


class FakeGeoClient:
    def __init__(self, payloads: dict[str, object]):
        self.payloads = payloads
        self.calls: list[tuple[str, dict]] = []

    def get_json(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        payload = self.payloads[url]
        if isinstance(payload, Exception):
            raise payload
        return payload


def test_parse_locality_swaps_lon_lat_and_flattens_names():
    locality = parse_locality(PARIS)
    assert locality.lat == 48.8589
    assert locality.lon == 2.347
    assert locality.department == "Paris"
    assert locality.department_code == "75"
    assert locality.region == "Île-de-France"
    assert locality.region_code == "11"


def test_parse_locality_reads_nested_codes_when_flat_codes_missing():
    row = {"code": "2A004", "nom": "Ajaccio", "centre": {"coordinates": [8.7, 41.9]}, "departement": {"code": "2A", "nom": "Corse-du-Sud"}}
    locality = parse_locality(row)
    assert locality.department_code == "2A"
    assert locality.region is None


@pytest.mark.parametrize(
    "row",
    [
        {"code": "01001", "nom": "L'Abergement-Clémenciat"},
        {"code": "01001", "nom": "X", "centre": {"coordinates": [4.9]}},
        {"code": "01001", "nom": "X", "centre": {"coordinates": ["a", "b"]}},
        {"code": "01001", "nom": "X", "centre": {"coordinates": [4.9, 123.0]}},
        {"nom": "X", "centre": {"coordinates": [4.9, 46.1]}},
        "not a row",
    ],
)
def test_parse_locality_drops_shape_anomalies(row):
    assert parse_locality(row) is None


def test_fetch_localities_counts_dropped_rows():
    client = FakeGeoClient({"https://geo.example.test/communes": [PARIS, {"code": "X", "nom": "No centre"}]})

    localities, dropped = fetch_localities(client, GEO_CONFIG)

    assert [locality.code for locality in localities] == ["75056"]
    assert dropped == 1
    assert client.calls[0][1]["params"]["geometry"] == "centre"


def test_fetch_localities_per_department():
    config = dict(GEO_CONFIG, departments=["75", "2A"])
    client = FakeGeoClient(
        {
            "https://geo.example.test/departements/75/communes": [PARIS],
            "https://geo.example.test/departements/2A/communes": [PARIS],
        }
    )

    localities, _dropped = fetch_localities(client, config)

    assert len(client.calls) == 2
    assert [locality.code for locality in localities] == ["75056"]


def test_unreachable_catalogue_is_a_stage_error():
    client = FakeGeoClient({"https://geo.example.test/communes": HttpRequestError("HTTP status 503")})
    with pytest.raises(StageError):
        fetch_localities(client, GEO_CONFIG)


def test_unexpected_payload_is_a_stage_error():
    client = FakeGeoClient({"https://geo.example.test/communes": {"message": "maintenance"}})
    with pytest.raises(StageError):
        fetch_localities(client, GEO_CONFIG)

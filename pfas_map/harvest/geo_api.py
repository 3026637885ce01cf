"""Commune catalogue from geo.api.gouv.fr."""

from __future__ import annotations

import logging
from pathlib import Path

from pfas_map.common.errors import StageError
from pfas_map.common.fs import write_json
from pfas_map.common.http import HttpClient, HttpRequestError, TimeoutConfig
from pfas_map.common.logging import log_event
from pfas_map.common.models import Locality

LOCALITIES_PATH = Path("raw") / "localities.json"


def _safe_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _name_of(value: object) -> str | None:
    # The API returns {"code": ..., "nom": ...} objects for departement/region.
    if isinstance(value, dict):
        value = value.get("nom")
    if value in (None, ""):
        return None
    return str(value)


def _code_of(row: dict, flat_key: str, nested_key: str) -> str | None:
    value = row.get(flat_key)
    if value in (None, ""):
        nested = row.get(nested_key)
        value = nested.get("code") if isinstance(nested, dict) else None
    if value in (None, ""):
        return None
    return str(value)


def parse_locality(row: object) -> Locality | None:
    if not isinstance(row, dict):
        return None
    code = row.get("code")
    name = row.get("nom")
    centre = row.get("centre") or {}
    coordinates = centre.get("coordinates") if isinstance(centre, dict) else None
    if not code or not name or not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None

    # GeoJSON order: [lon, lat].
    lon = _safe_float(coordinates[0])
    lat = _safe_float(coordinates[1])
    if lat is None or lon is None or not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None

    return Locality(
        code=str(code),
        name=str(name),
        lat=lat,
        lon=lon,
        department_code=_code_of(row, "codeDepartement", "departement"),
        department=_name_of(row.get("departement")),
        region_code=_code_of(row, "codeRegion", "region"),
        region=_name_of(row.get("region")),
    )


def _commune_urls(geo_config: dict) -> list[str]:
    endpoint = geo_config["endpoint"].rstrip("/")
    departments = geo_config.get("departments") or []
    if not departments:
        return [f"{endpoint}/communes"]
    return [f"{endpoint}/departements/{code}/communes" for code in departments]


def fetch_localities(client: HttpClient, geo_config: dict) -> tuple[list[Locality], int]:
    """Return parsed communes and the number of rows dropped for missing coordinates.

    Any transport failure is fatal: without the catalogue there is nothing to harvest.
    """
    params = {
        "fields": ",".join(geo_config["fields"]),
        "format": "json",
        "geometry": "centre",
    }
    timeout_seconds = float(geo_config.get("timeout_seconds", 30))

    localities: list[Locality] = []
    dropped = 0
    seen: set[str] = set()
    for url in _commune_urls(geo_config):
        try:
            payload = client.get_json(
                url,
                params=params,
                timeout=TimeoutConfig(connect=min(timeout_seconds, 10.0), read=timeout_seconds),
            )
        except HttpRequestError as exc:
            raise StageError(f"Commune catalogue unavailable from {url}: {exc}") from exc
        if not isinstance(payload, list):
            raise StageError(f"Unexpected commune catalogue payload from {url}")

        for row in payload:
            locality = parse_locality(row)
            if locality is None:
                dropped += 1
                continue
            if locality.code in seen:
                continue
            seen.add(locality.code)
            localities.append(locality)

    return localities, dropped


def run_localities_stage(
    settings: dict,
    data_dir: Path,
    run_id: str,
    logger: logging.Logger,
    http_client: HttpClient | None = None,
) -> dict:
    owns_client = http_client is None
    client = http_client or HttpClient.from_settings(settings["http"])
    try:
        localities, dropped = fetch_localities(client, settings["geo"])
    finally:
        if owns_client:
            client.close()

    if not localities:
        raise StageError("Commune catalogue returned no usable communes")

    log_event(
        logger,
        f"loaded {len(localities)} communes ({dropped} without coordinates)",
        run_id=run_id,
        stage="localities",
        source="geo.api.gouv.fr",
        event="LOCALITIES_LOADED",
        status="ok",
        rows_in=len(localities) + dropped,
        rows_out=len(localities),
    )

    payload = {
        "run_id": run_id,
        "source": "geo.api.gouv.fr",
        "row_count": len(localities),
        "dropped_without_coordinates": dropped,
        "rows": [locality.to_dict() for locality in localities],
    }
    write_json(data_dir / LOCALITIES_PATH, payload)
    return payload

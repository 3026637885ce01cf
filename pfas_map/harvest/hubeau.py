"""Drinking-water analysis rows from Hub'Eau (qualite_eau_potable/resultats_dis)."""

from __future__ import annotations

from collections import defaultdict

from pfas_map.common.http import HttpClient, HttpRequestError


class PagesTruncatedError(HttpRequestError):
    """More result pages remained when `max_pages` was reached."""

    error_code = "PAGES_TRUNCATED"


def _page_rows(payload: object, url: str) -> tuple[list[dict], str | None]:
    if not isinstance(payload, dict):
        raise HttpRequestError(f"Unexpected Hub'Eau payload from {url}")
    rows = payload.get("data") or []
    if not isinstance(rows, list):
        raise HttpRequestError(f"Hub'Eau payload from {url} has no data list")
    next_url = payload.get("next")
    return [row for row in rows if isinstance(row, dict)], next_url if isinstance(next_url, str) and next_url else None


def fetch_measurement_rows(
    client: HttpClient,
    measurements_config: dict,
    *,
    commune_code: str | None = None,
    department_code: str | None = None,
) -> list[dict]:
    """Fetch every result row for one commune or one department.

    Follows the API's `next` link when it is present; otherwise a page shorter
    than `page_size` is taken as the last one. Raises `PagesTruncatedError`
    when `max_pages` pages were read and the API still had more, so a partial
    row set is never mistaken for a complete one.
    """
    if (commune_code is None) == (department_code is None):
        raise ValueError("exactly one of commune_code or department_code is required")

    page_size = int(measurements_config["page_size"])
    max_pages = int(measurements_config["max_pages"])
    url: str = measurements_config["endpoint"]
    params: dict | None = {"size": page_size, "page": 1, "format": "json"}
    if commune_code is not None:
        params["code_commune"] = commune_code
    else:
        params["code_departement"] = department_code

    rows: list[dict] = []
    for page in range(1, max_pages + 1):
        payload = client.get_json(url, params=params)
        page_rows, next_url = _page_rows(payload, url)
        rows.extend(page_rows)

        if next_url is not None:
            # The next link already carries every query parameter.
            url, params = next_url, None
            continue
        if params is None or "next" in payload or len(page_rows) < page_size:
            return rows
        params = dict(params)
        params["page"] = page + 1

    scope = f"commune {commune_code}" if commune_code is not None else f"departement {department_code}"
    raise PagesTruncatedError(
        f"Hub'Eau results for {scope} exceed {max_pages} pages of {page_size} rows; "
        "raise measurements.max_pages or use commune scope"
    )


def group_rows_by_commune(rows: list[dict]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = defaultdict(list)
    for row in rows:
        code = row.get("code_commune")
        if code in (None, ""):
            continue
        grouped[str(code)].append(row)
    return dict(grouped)

"""
Interactive Leaflet map of pfas.json rows.
Markers are coloured against the regulatory limit and clustered for the
35k communes of the national build.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import folium
from folium.plugins import MarkerCluster, Search

from pfas_map.common.constants import DEFAULT_UNIT
from pfas_map.common.errors import StageError
from pfas_map.common.fs import ensure_dir, read_json

FRANCE_CENTER = (46.8, 2.5)

PALETTE = {
    "green": "#2e7d32",
    "amber": "#f9a825",
    "red": "#c62828",
    "grey": "#9e9e9e",
}

BADGE_LABEL_KEYS = {
    "green": "badge_safe",
    "amber": "badge_warn",
    "red": "badge_risk",
    "grey": "badge_na",
}


@dataclass(frozen=True)
class Thresholds:
    red: float = 0.1
    amber: float = 0.05

    @classmethod
    def from_settings(cls, aggregation: dict) -> "Thresholds":
        return cls(red=float(aggregation["threshold"]), amber=float(aggregation["amber_threshold"]))


def color_for(value: float | None, thresholds: Thresholds) -> str:
    """Colour band: above the limit is red, from the watch level up is amber."""
    if value is None or value != value:
        return "grey"
    if value > thresholds.red:
        return "red"
    if value >= thresholds.amber:
        return "amber"
    return "green"


def marker_style(value: float | None, thresholds: Thresholds) -> dict:
    color = PALETTE[color_for(value, thresholds)]
    return {
        "radius": 6,
        "weight": 1,
        "opacity": 1,
        "fill": True,
        "fill_opacity": 0.7,
        "color": color,
        "fill_color": color,
    }


def popup_html(row: Mapping, labels: Mapping[str, str], thresholds: Thresholds) -> str:
    band = color_for(row.get("pfas"), thresholds)
    title = html.escape(str(row.get("commune") or ""))
    if row.get("departement"):
        title += f" ({html.escape(str(row['departement']))})"
    value = row.get("pfas")
    value_text = labels["not_available"] if value is None else f"{value} {DEFAULT_UNIT}"
    parts = [
        f"<strong>{title}</strong>",
        f"{html.escape(labels['pfas'])} : {html.escape(value_text)}",
        f"{html.escape(labels['limit'])} : {thresholds.red} {DEFAULT_UNIT}",
        f'<span class="badge {band}">{html.escape(labels[BADGE_LABEL_KEYS[band]])}</span>',
    ]
    if row.get("date_mesure"):
        parts.append(f"<small>{html.escape(labels['measured_on'])} : {html.escape(str(row['date_mesure']))}</small>")
    return "<br/>".join(parts)


def legend_html(labels: Mapping[str, str], thresholds: Thresholds) -> str:
    entries = [
        ("green", f"&lt; {thresholds.amber} {DEFAULT_UNIT}"),
        ("amber", f"{thresholds.amber} – {thresholds.red} {DEFAULT_UNIT}"),
        ("red", f"&gt; {thresholds.red} {DEFAULT_UNIT}"),
        ("grey", html.escape(labels["badge_na"])),
    ]
    items = "".join(
        f'<div><span style="display:inline-block;width:12px;height:12px;border-radius:6px;'
        f'background:{PALETTE[band]};margin-right:6px"></span>{text}</div>'
        for band, text in entries
    )
    return (
        '<div id="pfas-legend" style="position:fixed;bottom:24px;left:24px;z-index:9999;'
        'background:white;padding:8px 12px;border-radius:4px;box-shadow:0 1px 4px rgba(0,0,0,.3);font-size:13px">'
        f"<strong>{html.escape(labels['legend_title'])}</strong>{items}"
        f"<div><small>{html.escape(labels['source'])}</small></div></div>"
    )


def _has_point(row: Mapping) -> bool:
    lat, lon = row.get("lat"), row.get("lon")
    return (
        isinstance(lat, (int, float))
        and isinstance(lon, (int, float))
        and not isinstance(lat, bool)
        and not isinstance(lon, bool)
    )


def search_features(rows: list[Mapping]) -> dict:
    """Point features labelled "commune (departement)" for the search box."""
    features = []
    for row in rows:
        if not _has_point(row):
            continue
        name = str(row.get("commune") or "")
        if row.get("departement"):
            name += f" ({row['departement']})"
        features.append(
            {
                "type": "Feature",
                "properties": {"search": name},
                "geometry": {"type": "Point", "coordinates": [row["lon"], row["lat"]]},
            }
        )
    return {"type": "FeatureCollection", "features": features}


def add_search(map_obj: folium.Map, rows: list[Mapping], labels: Mapping[str, str]) -> None:
    # Invisible points: the clustered markers stay the only visible layer.
    layer = folium.GeoJson(
        search_features(rows),
        name="search",
        marker=folium.CircleMarker(radius=0, opacity=0, fill_opacity=0),
        control=False,
    ).add_to(map_obj)
    Search(
        layer=layer,
        search_label="search",
        search_zoom=11,
        placeholder=labels["search"],
        position="topright",
        collapsed=False,
        initial=False,
    ).add_to(map_obj)


def build_map(rows: list[Mapping], labels: Mapping[str, str], thresholds: Thresholds) -> folium.Map:
    map_obj = folium.Map(location=list(FRANCE_CENTER), zoom_start=6, prefer_canvas=True)
    cluster = MarkerCluster(name=labels["pfas"], options={"chunkedLoading": True, "maxClusterRadius": 60})

    points: list[list[float]] = []
    for row in rows:
        if not _has_point(row):
            continue
        folium.CircleMarker(
            location=[row["lat"], row["lon"]],
            popup=folium.Popup(popup_html(row, labels, thresholds), max_width=320),
            tooltip=str(row.get("commune") or ""),
            **marker_style(row.get("pfas"), thresholds),
        ).add_to(cluster)
        points.append([row["lat"], row["lon"]])

    cluster.add_to(map_obj)
    map_obj.get_root().html.add_child(folium.Element(legend_html(labels, thresholds)))
    if points:
        add_search(map_obj, rows, labels)
        lats = [p[0] for p in points]
        lons = [p[1] for p in points]
        map_obj.fit_bounds([[min(lats), min(lons)], [max(lats), max(lons)]], padding=(30, 30))
    return map_obj


def run_render_stage(
    settings: dict,
    data_dir: Path,
    labels: Mapping[str, str],
) -> dict:
    output = settings["output"]
    json_path = data_dir / "out" / output["json_filename"]
    if not json_path.exists():
        raise StageError(f"Missing {json_path}; run the export stage first")
    rows = read_json(json_path)
    thresholds = Thresholds.from_settings(settings["aggregation"])

    map_path = data_dir / "out" / output["map_filename"]
    ensure_dir(map_path.parent)
    build_map(rows, labels, thresholds).save(str(map_path))
    return {"map_path": str(map_path), "row_count": len(rows)}

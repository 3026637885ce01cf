"""Data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class MeasurementKind(str, Enum):
    INDIVIDUAL = "individual"
    AGGREGATE_SUM = "aggregate_sum"


class Policy(str, Enum):
    SUM_FIRST = "sum_first"
    MAX_ONLY = "max_only"
    STRICT = "strict"


class AggregationMode(str, Enum):
    SUM_FIRST = "sum_first"
    MAX_FALLBACK = "max_fallback"
    MAX_ONLY = "max_only"
    STRICT = "strict"


@dataclass(frozen=True)
class Locality:
    code: str
    name: str
    lat: float
    lon: float
    department_code: str | None = None
    department: str | None = None
    region_code: str | None = None
    region: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Locality":
        return cls(
            code=str(payload["code"]),
            name=str(payload["name"]),
            lat=float(payload["lat"]),
            lon=float(payload["lon"]),
            department_code=payload.get("department_code"),
            department=payload.get("department"),
            region_code=payload.get("region_code"),
            region=payload.get("region"),
        )


@dataclass(frozen=True)
class CanonicalMeasurement:
    label: str
    value: float
    unit: str
    date: str | None
    kind: MeasurementKind


@dataclass(frozen=True)
class AggregationResult:
    value: float
    unit: str
    date: str | None
    mode: AggregationMode
    source_label: str
    individual_count: int
    sum_count: int

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mode"] = self.mode.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AggregationResult":
        return cls(
            value=float(payload["value"]),
            unit=str(payload["unit"]),
            date=payload.get("date"),
            mode=AggregationMode(payload["mode"]),
            source_label=str(payload["source_label"]),
            individual_count=int(payload["individual_count"]),
            sum_count=int(payload["sum_count"]),
        )


@dataclass(frozen=True)
class LocalityOutcome:
    """Per-locality harvest result handed to export and rendering."""

    locality: Locality
    status: str
    result: AggregationResult | None = None
    from_cache: bool = False
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "locality": self.locality.to_dict(),
            "status": self.status,
            "result": self.result.to_dict() if self.result is not None else None,
            "from_cache": self.from_cache,
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LocalityOutcome":
        result = payload.get("result")
        return cls(
            locality=Locality.from_dict(payload["locality"]),
            status=str(payload["status"]),
            result=AggregationResult.from_dict(result) if result else None,
            from_cache=bool(payload.get("from_cache", False)),
            error_code=payload.get("error_code"),
        )

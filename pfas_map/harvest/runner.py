"""Per-commune harvest orchestration with fail-soft semantics."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from pfas_map.common.errors import StageError
from pfas_map.common.fs import read_json, write_json
from pfas_map.common.http import HttpClient
from pfas_map.common.logging import log_event
from pfas_map.common.models import AggregationResult, Locality, LocalityOutcome, Policy
from pfas_map.harvest.cache import CacheKey, ResultCache
from pfas_map.harvest.geo_api import LOCALITIES_PATH
from pfas_map.harvest.hubeau import fetch_measurement_rows, group_rows_by_commune
from pfas_map.harvest.pool import ItemFailure, run_all
from pfas_map.pipeline.aggregate import aggregate
from pfas_map.pipeline.normalise import normalise_records

STATUS_MEASURED = "measured"
STATUS_NOT_MEASURED = "not_measured"
STATUS_ERROR = "error"


def results_path(policy: Policy | str) -> Path:
    return Path("intermediate") / f"results_{Policy(policy).value}.json"


@dataclass(frozen=True)
class AggregationSettings:
    policy: Policy
    threshold: float
    sums_exempt: bool = True

    @classmethod
    def from_settings(cls, aggregation: dict) -> "AggregationSettings":
        return cls(
            policy=Policy(aggregation["policy"]),
            threshold=float(aggregation["threshold"]),
            sums_exempt=bool(aggregation.get("sums_exempt", True)),
        )

    def cache_policy(self) -> str:
        # Strict results also depend on the threshold and on sum handling.
        if self.policy is not Policy.STRICT:
            return self.policy.value
        suffix = "" if self.sums_exempt else "_with_sums"
        return f"{self.policy.value}_t{self.threshold:g}{suffix}"

    def evaluate(self, rows: list[dict]) -> AggregationResult | None:
        return aggregate(
            normalise_records(rows),
            self.policy,
            self.threshold,
            sums_exempt=self.sums_exempt,
        )


@dataclass(frozen=True)
class WorkGroup:
    """Communes served by one request chain: a single commune or a whole department."""

    scope: str
    code: str
    localities: tuple[Locality, ...]


@dataclass
class HarvestProgress:
    total: int
    processed: int = 0
    with_data: int = 0
    failed: int = 0
    cached: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def record(self, outcome: LocalityOutcome) -> None:
        self.processed += 1
        if outcome.status == STATUS_MEASURED:
            self.with_data += 1
        elif outcome.status == STATUS_ERROR:
            self.failed += 1
        if outcome.from_cache:
            self.cached += 1

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "with_data": self.with_data,
            "failed": self.failed,
            "cached": self.cached,
        }


def build_work_groups(localities: list[Locality], scope: str) -> list[WorkGroup]:
    if scope == "commune":
        return [WorkGroup("commune", locality.code, (locality,)) for locality in localities]

    by_department: dict[str, list[Locality]] = {}
    groups: list[WorkGroup] = []
    for locality in localities:
        if locality.department_code is None:
            groups.append(WorkGroup("commune", locality.code, (locality,)))
            continue
        by_department.setdefault(locality.department_code, []).append(locality)
    groups.extend(WorkGroup("departement", code, tuple(members)) for code, members in by_department.items())
    return groups


def _outcome(locality: Locality, result: AggregationResult | None, *, from_cache: bool = False) -> LocalityOutcome:
    status = STATUS_MEASURED if result is not None else STATUS_NOT_MEASURED
    return LocalityOutcome(locality=locality, status=status, result=result, from_cache=from_cache)


def _cached_outcome(cache: ResultCache | None, key: CacheKey, locality: Locality) -> LocalityOutcome | None:
    if cache is None:
        return None
    payload = cache.get(key)
    if not isinstance(payload, dict) or "result" not in payload:
        return None
    try:
        result = AggregationResult.from_dict(payload["result"]) if payload["result"] else None
    except (KeyError, TypeError, ValueError):
        return None
    return _outcome(locality, result, from_cache=True)


class LocalityHarvester:
    """Turns a work group into one outcome per commune: cache, fetch, reduce, cache."""

    def __init__(
        self,
        client: HttpClient,
        measurements_config: dict,
        aggregation: AggregationSettings,
        cache: ResultCache | None = None,
    ) -> None:
        self.client = client
        self.measurements_config = measurements_config
        self.aggregation = aggregation
        self.cache = cache

    def _key(self, locality: Locality) -> CacheKey:
        return CacheKey(locality_code=locality.code, policy=self.aggregation.cache_policy())

    def _store(self, key: CacheKey, result: AggregationResult | None) -> None:
        if self.cache is not None:
            self.cache.put(key, {"result": result.to_dict() if result is not None else None})

    def harvest_group(self, group: WorkGroup) -> list[LocalityOutcome]:
        outcomes: dict[str, LocalityOutcome] = {}
        for locality in group.localities:
            cached = _cached_outcome(self.cache, self._key(locality), locality)
            if cached is not None:
                outcomes[locality.code] = cached

        pending = [locality for locality in group.localities if locality.code not in outcomes]
        if pending:
            if group.scope == "commune":
                rows_by_commune = {
                    group.code: fetch_measurement_rows(
                        self.client,
                        self.measurements_config,
                        commune_code=group.code,
                    )
                }
            else:
                rows_by_commune = group_rows_by_commune(
                    fetch_measurement_rows(
                        self.client,
                        self.measurements_config,
                        department_code=group.code,
                    )
                )
            for locality in pending:
                result = self.aggregation.evaluate(rows_by_commune.get(locality.code, []))
                self._store(self._key(locality), result)
                outcomes[locality.code] = _outcome(locality, result)

        return [outcomes[locality.code] for locality in group.localities]


def _failed_outcomes(group: WorkGroup, failure: ItemFailure) -> list[LocalityOutcome]:
    return [
        LocalityOutcome(locality=locality, status=STATUS_ERROR, error_code=failure.error_code)
        for locality in group.localities
    ]


def harvest_localities(
    localities: list[Locality],
    settings: dict,
    client: HttpClient,
    *,
    logger: logging.Logger,
    run_id: str,
    cache: ResultCache | None = None,
) -> tuple[list[LocalityOutcome], HarvestProgress]:
    aggregation = AggregationSettings.from_settings(settings["aggregation"])
    measurements_config = settings["measurements"]
    progress_every = int(settings["pipeline"]["progress_every"])
    groups = build_work_groups(localities, measurements_config["scope"])
    harvester = LocalityHarvester(client, measurements_config, aggregation, cache)
    progress = HarvestProgress(total=len(localities))

    def on_complete(index: int, value: list[LocalityOutcome] | ItemFailure) -> None:
        group = groups[index]
        if isinstance(value, ItemFailure):
            log_event(
                logger,
                f"measurement fetch failed for {group.scope} {group.code}: {value.message}",
                level=logging.WARNING,
                run_id=run_id,
                stage="harvest",
                locality=group.code,
                source="hubeau",
                event="LOCALITY_FAIL",
                status="error",
                error_code=value.error_code,
            )
            value = _failed_outcomes(group, value)
        before = progress.processed
        for outcome in value:
            progress.record(outcome)
        if progress.processed // progress_every > before // progress_every:
            log_event(
                logger,
                f"{progress.processed}/{progress.total} communes (with PFAS: {progress.with_data}, failed: {progress.failed})",
                run_id=run_id,
                stage="harvest",
                event="PROGRESS",
                status="ok",
                rows_out=progress.processed,
            )

    raw_results = run_all(
        groups,
        int(settings["pipeline"]["concurrency"]),
        harvester.harvest_group,
        on_complete=on_complete,
    )

    outcomes: list[LocalityOutcome] = []
    for group, value in zip(groups, raw_results):
        outcomes.extend(_failed_outcomes(group, value) if isinstance(value, ItemFailure) else value)

    # Department scope reorders communes; hand back the catalogue order.
    position = {locality.code: idx for idx, locality in enumerate(localities)}
    outcomes.sort(key=lambda outcome: position.get(outcome.locality.code, len(position)))
    return outcomes, progress


def load_localities(data_dir: Path) -> list[Locality]:
    path = data_dir / LOCALITIES_PATH
    if not path.exists():
        raise StageError(f"Missing commune catalogue: {path}; run the localities stage first")
    payload = read_json(path)
    return [Locality.from_dict(row) for row in payload.get("rows", [])]


def run_harvest_stage(
    settings: dict,
    data_dir: Path,
    run_id: str,
    logger: logging.Logger,
    http_client: HttpClient | None = None,
    cache: ResultCache | None = None,
) -> dict:
    localities = load_localities(data_dir)
    concurrency = int(settings["pipeline"]["concurrency"])

    owns_client = http_client is None
    client = http_client or HttpClient.from_settings(settings["http"], pool_size=concurrency)
    try:
        outcomes, progress = harvest_localities(
            localities,
            settings,
            client,
            logger=logger,
            run_id=run_id,
            cache=cache,
        )
    finally:
        if owns_client:
            client.close()

    duration_ms = int((time.monotonic() - progress.started_at) * 1000)
    log_event(
        logger,
        f"harvested {progress.processed} communes (with PFAS: {progress.with_data}, failed: {progress.failed}, cached: {progress.cached})",
        run_id=run_id,
        stage="harvest",
        source="hubeau",
        event="HARVEST_DONE",
        status="ok" if progress.failed == 0 else "partial",
        duration_ms=duration_ms,
        rows_in=len(localities),
        rows_out=progress.with_data,
    )

    if localities and progress.failed == len(localities):
        raise StageError("Measurement fetch failed for every commune")

    policy = settings["aggregation"]["policy"]
    payload = {
        "run_id": run_id,
        "policy": policy,
        "threshold": settings["aggregation"]["threshold"],
        "counts": progress.as_dict(),
        "rows": [outcome.to_dict() for outcome in outcomes],
    }
    write_json(data_dir / results_path(policy), payload)
    return payload

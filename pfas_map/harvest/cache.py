"""Disk cache of per-commune results, keyed by commune and policy."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pfas_map.common.fs import read_json, write_json_atomic
from pfas_map.common.logging import log_event
from pfas_map.common.models import Policy

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class CacheKey:
    locality_code: str
    policy: str

    @classmethod
    def for_policy(cls, locality_code: str, policy: Policy | str) -> "CacheKey":
        return cls(locality_code=locality_code, policy=Policy(policy).value)

    def relative_path(self) -> Path:
        return Path(_UNSAFE_CHARS_RE.sub("_", self.policy)) / f"{_UNSAFE_CHARS_RE.sub('_', self.locality_code)}.json"


class ResultCache:
    """TTL cache with lazy expiry.

    Stale entries read as missing and stay on disk until the next `put`
    overwrites them. Writes never raise: the cache only saves requests.
    """

    def __init__(
        self,
        directory: Path,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.directory = directory
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.logger = logger

    def _path(self, key: CacheKey) -> Path:
        return self.directory / key.relative_path()

    def get(self, key: CacheKey) -> Any | None:
        path = self._path(key)
        try:
            entry = read_json(path)
        except (OSError, ValueError):
            return None
        if not isinstance(entry, dict) or "payload" not in entry:
            return None
        timestamp = entry.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        if self.clock() - timestamp > self.ttl_seconds:
            return None
        return entry["payload"]

    def put(self, key: CacheKey, payload: Any) -> None:
        entry = {"timestamp": self.clock(), "payload": payload}
        try:
            write_json_atomic(self._path(key), entry)
        except (OSError, TypeError, ValueError) as exc:
            if self.logger is not None:
                log_event(
                    self.logger,
                    f"cache write failed for {key.locality_code}: {exc}",
                    level=logging.WARNING,
                    event="CACHE_WRITE_FAIL",
                    status="warning",
                    locality=key.locality_code,
                )

    @classmethod
    def from_settings(cls, cache_settings: dict, data_dir: Path, logger: logging.Logger | None = None) -> "ResultCache | None":
        if not cache_settings.get("enabled", True):
            return None
        directory = Path(cache_settings["directory"])
        if not directory.is_absolute():
            directory = data_dir / directory
        return cls(directory, float(cache_settings["ttl_hours"]) * 3600.0, logger=logger)


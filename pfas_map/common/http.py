"""HTTP client with retries, per-request timeouts, and host-aware rate limiting."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_incrementing

from pfas_map.common.constants import USER_AGENT
from pfas_map.common.errors import StageError

_CHUNK_SIZE = 64 * 1024


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def _optional_float(value: object) -> float | None:
    return None if value is None else float(value)


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-request limits.

    `connect` and `read` go to requests, where `read` bounds the gap between
    two received bytes. `total` bounds the whole request including the body.
    """

    connect: float = 10.0
    read: float = 30.0
    total: float | None = 120.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 4
    # Wait before retry n is backoff_seconds * n.
    backoff_seconds: float = 1.0


class HttpRequestError(StageError):
    error_code = "HTTP_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableHttpError(HttpRequestError):
    error_code = "HTTP_TRANSIENT"


class TokenBucket:
    def __init__(self, rate_per_sec: float, capacity: float | None = None) -> None:
        self.rate_per_sec = rate_per_sec
        self.capacity = capacity if capacity is not None else max(rate_per_sec, 1.0)
        self.tokens = self.capacity
        self.updated_at = time.monotonic()
        self.lock = threading.Lock()

    def acquire(self, tokens: float = 1.0) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                elapsed = now - self.updated_at
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
                self.updated_at = now
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                wait_for = max((tokens - self.tokens) / self.rate_per_sec, 0.01)
            time.sleep(wait_for)


class HostRateLimiter:
    def __init__(self, rate_per_sec: float) -> None:
        self.rate_per_sec = rate_per_sec
        self.buckets: dict[str, TokenBucket] = {}
        self.lock = threading.Lock()

    def acquire(self, host: str) -> None:
        with self.lock:
            bucket = self.buckets.get(host)
            if bucket is None:
                bucket = TokenBucket(rate_per_sec=self.rate_per_sec)
                self.buckets[host] = bucket
        bucket.acquire()


class HttpClient:
    """JSON-over-HTTP client shared by all fetch workers.

    Transient failures (429, 5xx, timeouts, dropped connections) are retried
    with a linearly increasing wait; any other failure is raised at once.
    """

    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        rate_per_sec: float | None = None,
        pool_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.clock = clock
        self.retry = retry or RetryConfig()
        self.limiter = HostRateLimiter(rate_per_sec) if rate_per_sec else None
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    @classmethod
    def from_settings(cls, http_settings: dict, *, pool_size: int = 10) -> "HttpClient":
        return cls(
            timeout=TimeoutConfig(
                connect=float(http_settings.get("connect_timeout_seconds", 10)),
                read=float(http_settings.get("read_timeout_seconds", 30)),
                total=_optional_float(http_settings.get("total_timeout_seconds", 120)),
            ),
            retry=RetryConfig(
                max_attempts=int(http_settings.get("max_attempts", 4)),
                backoff_seconds=float(http_settings.get("backoff_seconds", 1.0)),
            ),
            rate_per_sec=http_settings.get("rate_per_sec"),
            pool_size=pool_size,
        )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            out.update(headers)
        return out

    def _raise_for_status_or_retry(self, response: requests.Response, url: str) -> None:
        status = response.status_code
        if is_retryable_status(status):
            raise RetryableHttpError(f"Retryable HTTP status {status} from {url}", status_code=status)
        if status >= 400:
            raise HttpRequestError(f"HTTP status {status} from {url}", status_code=status)

    def _read_body(self, response: requests.Response, url: str, deadline: float | None) -> bytes:
        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                chunks.append(chunk)
                if deadline is not None and self.clock() > deadline:
                    raise RetryableHttpError(f"Exceeded total timeout reading {url}")
        except requests.RequestException as exc:
            raise RetryableHttpError(f"Connection broke while reading {url}") from exc
        return b"".join(chunks)

    def _request_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        timeout: TimeoutConfig | None,
    ) -> Any:
        req_timeout = timeout or self.timeout
        if self.limiter is not None:
            self.limiter.acquire(urlparse(url).netloc)

        started = self.clock()
        try:
            response = self.session.request(
                method="GET",
                url=url,
                params=params,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
                stream=True,
            )
        except requests.Timeout as exc:
            raise RetryableHttpError(f"Timed out requesting {url}") from exc
        except requests.ConnectionError as exc:
            raise RetryableHttpError(f"Connection failed for {url}") from exc
        except requests.RequestException as exc:
            raise HttpRequestError(f"Request failed for {url}: {exc}") from exc

        deadline = started + req_timeout.total if req_timeout.total is not None else None
        try:
            self._raise_for_status_or_retry(response, url)
            body = self._read_body(response, url, deadline)
        finally:
            response.close()

        try:
            return json.loads(body)
        except ValueError as exc:
            raise HttpRequestError(f"Invalid JSON payload from {url}") from exc

    def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        backoff = self.retry.backoff_seconds

        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_incrementing(start=backoff, increment=backoff),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )
        def _wrapped() -> Any:
            return self._request_json(url, params=params, headers=headers, timeout=timeout)

        return _wrapped()

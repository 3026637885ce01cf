"""Bounded-concurrency fan-out with fail-soft per-item results."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from pfas_map.common.errors import PipelineError

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ItemFailure:
    """Placeholder left in an output slot whose worker raised."""

    index: int
    error_code: str
    message: str


def is_failure(value: object) -> bool:
    return isinstance(value, ItemFailure)


def _failure_for(index: int, exc: Exception) -> ItemFailure:
    error_code = exc.error_code if isinstance(exc, PipelineError) else "UNEXPECTED_ERROR"
    return ItemFailure(index=index, error_code=error_code, message=str(exc) or type(exc).__name__)


class _Cursor:
    def __init__(self, size: int) -> None:
        self.size = size
        self.position = 0
        self.lock = threading.Lock()

    def claim(self) -> int | None:
        with self.lock:
            if self.position >= self.size:
                return None
            index = self.position
            self.position += 1
            return index


class _WorkerPool(Generic[T, R]):
    def __init__(
        self,
        items: Sequence[T],
        worker: Callable[[T], R],
        on_complete: Callable[[int, R | ItemFailure], None] | None,
    ) -> None:
        self.items = items
        self.worker = worker
        self.on_complete = on_complete
        self.results: list[R | ItemFailure | None] = [None] * len(items)
        self.cursor = _Cursor(len(items))
        self.completion_lock = threading.Lock()
        self.callback_error: BaseException | None = None

    def _complete(self, index: int, value: R | ItemFailure) -> None:
        with self.completion_lock:
            self.results[index] = value
            if self.on_complete is None or self.callback_error is not None:
                return
            try:
                self.on_complete(index, value)
            except Exception as exc:
                self.callback_error = exc

    def _run_worker(self) -> None:
        while True:
            index = self.cursor.claim()
            if index is None:
                return
            try:
                value = self.worker(self.items[index])
            except Exception as exc:
                value = _failure_for(index, exc)
            self._complete(index, value)

    def run(self, concurrency: int) -> list[R | ItemFailure]:
        threads = [
            threading.Thread(target=self._run_worker, name=f"pfas-fetch-{slot}", daemon=True)
            for slot in range(min(concurrency, len(self.items)))
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        if self.callback_error is not None:
            raise self.callback_error
        return list(self.results)


def run_all(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], R],
    *,
    on_complete: Callable[[int, R | ItemFailure], None] | None = None,
) -> list[R | ItemFailure]:
    """Run `worker` over `items` with at most `concurrency` calls in flight.

    The returned list is index-aligned with `items`. A worker exception does
    not stop the batch: its slot holds an `ItemFailure` instead. `on_complete`
    is called once per item, in completion order, never concurrently with
    itself.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    items = list(items)
    if not items:
        return []
    return _WorkerPool(items, worker, on_complete).run(concurrency)

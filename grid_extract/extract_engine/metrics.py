"""In-process counters and timings for the extraction engine.

Both sides of the message boundary record here: the client counts the
actions it sends and the responses it could not match, the store counts
cache misses and decode failures and times box extraction. Tests read the
counters to check deduplication without spying on the transport; the CLI
reports the extraction timing when it finishes.

Usage:
    from grid_extract.extract_engine.metrics import metrics
    metrics.inc("client.sent.post-img")
    with metrics.timed("store.extract_duration"):
        ...
    metrics.count("client.sent.post-img")
    metrics.timing("store.extract_duration")  # Timing(calls, total, longest)
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from threading import RLock
from typing import NamedTuple


class Timing(NamedTuple):
    calls: int = 0
    total: float = 0.0
    longest: float = 0.0

    @property
    def mean(self) -> float:
        return self.total / self.calls if self.calls else 0.0


class _Metrics:
    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        # Aggregated per key so long sessions stay bounded.
        self._timings: dict[str, Timing] = {}
        self._lock = RLock()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += int(amount)

    def count(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    @contextmanager
    def timed(self, key: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                prev = self._timings.get(key, Timing())
                self._timings[key] = Timing(prev.calls + 1, prev.total + elapsed, max(prev.longest, elapsed))

    def timing(self, key: str) -> Timing:
        with self._lock:
            return self._timings.get(key, Timing())

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


metrics = _Metrics()

"""Rolling latency windows for admin/guest routes and hot storage queries.

Samples are keyed by ``(kind, metric_key)`` where ``kind`` is ``api`` or
``db``; the dashboard reads them grouped by kind.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from math import ceil
from statistics import fmean
from threading import Lock
from typing import Any, Iterable

KINDS = ("api", "db")


def _nearest_rank(ordered: list[float], fraction: float) -> float:
    rank = min(len(ordered), max(1, ceil(fraction * len(ordered))))
    return ordered[rank - 1]


def latency_summary(samples: Iterable[float]) -> dict[str, Any] | None:
    ordered = sorted(samples)
    if not ordered:
        return None
    return {
        "count": len(ordered),
        "avg_ms": round(fmean(ordered), 2),
        "p50_ms": round(_nearest_rank(ordered, 0.50), 2),
        "p95_ms": round(_nearest_rank(ordered, 0.95), 2),
        "max_ms": round(ordered[-1], 2),
    }


class LatencyRecorder:
    def __init__(self, *, window: int = 200) -> None:
        self._window = window
        self._lock = Lock()
        self._samples: dict[tuple[str, str], deque[float]] = {}

    def record(self, kind: str, key: str, duration_ms: float) -> None:
        if kind not in KINDS:
            raise ValueError(f"Unknown latency kind '{kind}'.")
        with self._lock:
            window = self._samples.setdefault((kind, key), deque(maxlen=self._window))
            window.append(float(duration_ms))

    def record_api(self, key: str, duration_ms: float) -> None:
        self.record("api", key, duration_ms)

    def record_db(self, key: str, duration_ms: float) -> None:
        self.record("db", key, duration_ms)

    def summary(self, kind: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            samples = list(self._samples.get((kind, key), ()))
        return latency_summary(samples)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            copied = {slot: list(samples) for slot, samples in self._samples.items()}
        grouped: dict[str, dict[str, Any]] = {kind: {} for kind in KINDS}
        for (kind, key), samples in sorted(copied.items()):
            grouped[kind][key] = latency_summary(samples)
        return {"generated_at": datetime.now(timezone.utc).isoformat(), **grouped}

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()


perf_metrics = LatencyRecorder()

"""In-process latency counters for tools and scheduled jobs.

Operations are named ``tool.<name>`` or ``job.<name>``; ``snapshot`` can
be narrowed to one of those families. Percentiles are computed over a
bounded window of the most recent samples per operation.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from dataclasses import field
from threading import Lock

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 256


def _percentile(ordered: list[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not ordered:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


@dataclass
class OperationStats:
    """Running counters plus a sample window for one operation."""

    window: int = DEFAULT_WINDOW
    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    samples: deque[float] = field(default_factory=deque)

    def add(self, duration_ms: float, ok: bool) -> None:
        self.count += 1
        if not ok:
            self.error_count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        self.samples.append(duration_ms)
        while len(self.samples) > self.window:
            self.samples.popleft()

    def as_dict(self) -> dict[str, float | int]:
        ordered = sorted(self.samples)
        return {
            "count": self.count,
            "error_count": self.error_count,
            "error_rate": round(self.error_count / self.count, 3) if self.count else 0.0,
            "avg_ms": round(self.total_ms / self.count, 3) if self.count else 0.0,
            "p50_ms": round(_percentile(ordered, 50), 3),
            "p95_ms": round(_percentile(ordered, 95), 3),
            "max_ms": round(self.max_ms, 3),
        }


class LatencyRecorder:
    """Per-operation latency counters, owned by whoever records into it."""

    def __init__(self, window: int = DEFAULT_WINDOW) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")
        self._window = window
        self._lock = Lock()
        self._stats: dict[str, OperationStats] = {}

    def record(self, *, operation: str, duration_ms: float, ok: bool = True) -> None:
        normalized = max(float(duration_ms), 0.0)
        with self._lock:
            stats = self._stats.get(operation)
            if stats is None:
                stats = self._stats[operation] = OperationStats(window=self._window)
            stats.add(normalized, ok)
        logger.debug(
            "latency operation=%s duration_ms=%.3f ok=%s", operation, normalized, ok
        )

    def snapshot(self, prefix: str | None = None) -> dict[str, dict[str, float | int]]:
        """Aggregates keyed by operation, optionally only ``prefix``-named ones."""
        with self._lock:
            return {
                operation: stats.as_dict()
                for operation, stats in sorted(self._stats.items())
                if prefix is None or operation.startswith(prefix)
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()

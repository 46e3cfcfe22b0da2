"""
Per-process operation metrics for the reviews API.

Every review operation records its latency, whether a read was answered from
Redis, and the error class (InvalidArgument, NotFound, Internal) when it
failed. Each worker process keeps its own collector; /metrics reports the
worker that served the request.
"""

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

LATENCY_WINDOW = 1000
MIN_PERCENTILE_SAMPLES = 10
PERCENTILES = (50, 95, 99)


def _pct(part: int, whole: int) -> float:
    return round(part * 100.0 / whole, 2) if whole else 0.0


def _percentile(ordered: List[float], pct: int) -> float:
    return ordered[min(int(len(ordered) * pct / 100), len(ordered) - 1)]


@dataclass
class OperationStats:
    """Counters for one review operation."""
    latencies: Deque[float]
    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: Counter = field(default_factory=Counter)

    def copy(self) -> "OperationStats":
        return OperationStats(
            latencies=deque(self.latencies),
            requests=self.requests,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            errors=Counter(self.errors),
        )

    def describe(self) -> Dict[str, Any]:
        total_errors = sum(self.errors.values())
        description: Dict[str, Any] = {
            "total_requests": self.requests,
            "total_errors": total_errors,
            "error_rate_pct": _pct(total_errors, self.requests),
            "errors_by_type": dict(self.errors),
        }

        lookups = self.cache_hits + self.cache_misses
        if lookups:
            description["cache_hits"] = self.cache_hits
            description["cache_misses"] = self.cache_misses
            description["cache_hit_rate_pct"] = _pct(self.cache_hits, lookups)

        ordered = sorted(self.latencies)
        if len(ordered) >= MIN_PERCENTILE_SAMPLES:
            for pct in PERCENTILES:
                description[f"latency_p{pct}_ms"] = round(_percentile(ordered, pct), 2)
        if ordered:
            description["latency_avg_ms"] = round(sum(ordered) / len(ordered), 2)
        return description


class MetricsCollector:
    """
    Thread-safe collector shared by the request threads of one worker.

    Readers work from a snapshot copied under the lock, so /metrics never
    iterates a window that a request thread is appending to.

    Args:
        window_size: Number of recent latency samples kept per operation
    """

    def __init__(self, window_size: int = LATENCY_WINDOW):
        self.window_size = window_size
        self._lock = threading.Lock()
        self._operations: Dict[str, OperationStats] = {}
        self.started_at = datetime.now(timezone.utc)

    def record(
        self,
        operation: str,
        latency_ms: float,
        cache_hit: Optional[bool] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            stats = self._operations.get(operation)
            if stats is None:
                stats = OperationStats(latencies=deque(maxlen=self.window_size))
                self._operations[operation] = stats
            stats.requests += 1
            stats.latencies.append(latency_ms)
            if cache_hit is True:
                stats.cache_hits += 1
            elif cache_hit is False:
                stats.cache_misses += 1
            if error is not None:
                stats.errors[error] += 1

    def snapshot(self) -> Dict[str, OperationStats]:
        """Independent copies of every operation's counters."""
        with self._lock:
            return {name: stats.copy() for name, stats in self._operations.items()}

    def get_summary(self) -> Dict[str, Any]:
        operations = self.snapshot()
        hits = sum(stats.cache_hits for stats in operations.values())
        misses = sum(stats.cache_misses for stats in operations.values())

        return {
            "uptime_seconds": round((datetime.now(timezone.utc) - self.started_at).total_seconds(), 1),
            "cache": {
                "hit_rate_pct": _pct(hits, hits + misses),
                "total_hits": hits,
                "total_misses": misses,
            },
            "operations": {name: stats.describe() for name, stats in sorted(operations.items())},
        }

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()


metrics_collector = MetricsCollector()


def record_request_metrics(
    operation: str,
    latency_ms: float,
    cache_hit: Optional[bool] = None,
    error: Optional[str] = None,
) -> None:
    """
    Record one finished operation.

    cache_hit is None for operations that never consult the cache (writes);
    error is the failing exception's class name.
    """
    metrics_collector.record(operation, latency_ms, cache_hit=cache_hit, error=error)

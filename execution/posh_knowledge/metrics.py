"""
Metrics Collection for the PoSH knowledge tool server

Tracks tool-call volume, latency, failures and embedding cache efficiency.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class CallMetrics:
    """Metrics for a single tool call."""
    call_id: str
    tool: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    results_count: int = 0
    is_error: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Embedding cache
    cache_hits: int = 0
    cache_misses: int = 0

    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))
    calls_by_tool: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average call latency."""
        if self.total_calls == 0:
            return 0
        return self.total_latency_ms / self.total_calls

    def _percentile(self, fraction: float) -> float:
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * fraction)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        return self._percentile(0.95)

    @property
    def p99_latency_ms(self) -> float:
        """Calculate 99th percentile latency."""
        return self._percentile(0.99)

    @property
    def cache_hit_rate(self) -> float:
        """Calculate embedding cache hit rate."""
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0
        return self.cache_hits / total

    @property
    def error_rate(self) -> float:
        """Calculate error rate."""
        if self.total_calls == 0:
            return 0
        return self.failed_calls / self.total_calls

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "calls": {
                "total": self.total_calls,
                "successful": self.successful_calls,
                "failed": self.failed_calls,
                "error_rate": f"{self.error_rate:.2%}",
                "by_tool": dict(self.calls_by_tool),
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
                "p99": round(self.p99_latency_ms, 2),
            },
            "embedding_cache": {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "hit_rate": f"{self.cache_hit_rate:.2%}",
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates tool-call metrics.

    Usage:
        collector = MetricsCollector()

        with collector.track_call("get_case_law") as tracker:
            response = await dispatcher.call_tool(...)
            tracker.set_outcome(is_error=response.is_error)

        metrics = collector.get_metrics()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._call_history: list[CallMetrics] = []
        self._max_history = 1000
        # Counters are updated from event-loop and worker threads
        self._lock = threading.Lock()
        self._start_time = datetime.now()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = SystemMetrics()
            self._call_history = []
        self._start_time = datetime.now()

    class CallTracker:
        """Context manager for tracking a tool call."""

        def __init__(self, collector: 'MetricsCollector', tool: str):
            self.collector = collector
            self.call = CallMetrics(
                call_id=f"c_{int(time.time() * 1000)}",
                tool=tool,
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.call.end_time = time.time()
            self.call.latency_ms = (self.call.end_time - self.call.start_time) * 1000

            if exc_type:
                self.call.is_error = True
                self.call.error = str(exc_val)
                self.collector._record_error(exc_type.__name__)

            self.collector._record_call(self.call)
            return False  # Don't suppress exceptions

        def set_outcome(
            self,
            is_error: bool = False,
            error_type: Optional[str] = None,
            results_count: int = 0,
        ):
            """Record how the call ended when it did not raise."""
            self.call.is_error = is_error
            self.call.results_count = results_count
            if is_error and error_type:
                self.call.error = error_type
                self.collector._record_error(error_type)

    def track_call(self, tool: str) -> CallTracker:
        """
        Create a call tracker context manager.

        Usage:
            with collector.track_call(tool) as tracker:
                ...
                tracker.set_outcome(is_error=False)
        """
        return self.CallTracker(self, tool)

    def _record_call(self, call: CallMetrics):
        """Record completed call metrics."""
        with self._lock:
            self.metrics.total_calls += 1

            if call.is_error:
                self.metrics.failed_calls += 1
            else:
                self.metrics.successful_calls += 1

            self.metrics.total_latency_ms += call.latency_ms
            self.metrics.min_latency_ms = min(self.metrics.min_latency_ms, call.latency_ms)
            self.metrics.max_latency_ms = max(self.metrics.max_latency_ms, call.latency_ms)
            self.metrics.latencies.append(call.latency_ms)

            # Keep latencies list bounded
            if len(self.metrics.latencies) > self._max_history:
                self.metrics.latencies = self.metrics.latencies[-self._max_history:]

            self.metrics.calls_by_tool[call.tool] += 1

            self._call_history.append(call)
            if len(self._call_history) > self._max_history:
                self._call_history = self._call_history[-self._max_history:]

    def _record_error(self, error_type: str):
        """Record an error by type."""
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def record_cache_hit(self):
        """Record an embedding cache hit."""
        with self._lock:
            self.metrics.cache_hits += 1

    def record_cache_miss(self):
        """Record an embedding cache miss."""
        with self._lock:
            self.metrics.cache_misses += 1

    def get_metrics(self) -> SystemMetrics:
        """Get current metrics."""
        return self.metrics

    def get_metrics_dict(self) -> dict:
        """Get metrics as a dictionary."""
        with self._lock:
            return self.metrics.to_dict()

    def get_recent_calls(self, limit: int = 10) -> list[CallMetrics]:
        """Get most recent calls."""
        return self._call_history[-limit:]

    def get_uptime(self) -> timedelta:
        """Get server uptime."""
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector

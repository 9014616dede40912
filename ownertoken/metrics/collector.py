"""Metrics collector for token lifecycle operations."""
import threading
import time
from typing import Dict, List
from collections import defaultdict
import structlog

log = structlog.get_logger()


class MetricsCollector:
    """
    Collects and aggregates metrics for token registries.

    Tracks:
    - Tokens created and removed per token type
    - Credential lookup failures
    - Token creation latency
    """

    def __init__(self):
        """Initialize metrics collector."""
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._start_time = time.time()

    def increment(self, metric: str, value: int = 1, labels: Dict[str, str] | None = None):
        """
        Increment a counter metric.

        Args:
            metric: Metric name
            value: Amount to increment by
            labels: Optional labels for the metric
        """
        key = self._make_key(metric, labels)
        with self._lock:
            self._counters[key] += value

    def gauge(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        """Set a gauge metric."""
        key = self._make_key(metric, labels)
        with self._lock:
            self._gauges[key] = value

    def histogram(self, metric: str, value: float, labels: Dict[str, str] | None = None):
        """Record a histogram value."""
        key = self._make_key(metric, labels)
        with self._lock:
            self._histograms[key].append(value)

    def record_latency(self, metric: str, start_time: float, labels: Dict[str, str] | None = None):
        """
        Record latency in milliseconds.

        Args:
            metric: Metric name
            start_time: Start timestamp from time.time()
            labels: Optional labels for the metric
        """
        latency_ms = (time.time() - start_time) * 1000
        self.histogram(metric, latency_ms, labels)

    def get_metrics(self) -> Dict:
        """
        Get all collected metrics.

        Returns:
            Dictionary of all metrics
        """
        with self._lock:
            uptime = time.time() - self._start_time

            histogram_stats = {}
            for key, values in self._histograms.items():
                if values:
                    histogram_stats[key] = {
                        "count": len(values),
                        "sum": sum(values),
                        "avg": sum(values) / len(values),
                        "min": min(values),
                        "max": max(values),
                    }

            return {
                "uptime_seconds": uptime,
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": histogram_stats,
            }

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()
        log.info("metrics.reset")

    @staticmethod
    def _make_key(metric: str, labels: Dict[str, str] | None) -> str:
        """
        Create a metric key with labels, e.g. ``tokens_created_total{type=apikey}``.
        """
        if not labels:
            return metric

        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{metric}{{{label_str}}}"


# Global metrics collector instance
collector = MetricsCollector()


# Common metric names
TOKENS_CREATED_TOTAL = "tokens_created_total"
TOKENS_REMOVED_TOTAL = "tokens_removed_total"
TOKEN_LOOKUP_FAILURES_TOTAL = "token_lookup_failures_total"
TOKEN_CREATE_LATENCY_MS = "token_create_latency_ms"
TOKEN_STORE_UP = "token_store_up"

"""Metrics collection and monitoring utilities."""

import threading
from typing import Dict, Any, Optional
from common.logger import setup_logger

logger = setup_logger(__name__)


class MetricsCollector:
    """Collects performance metrics and logs them as structured records.

    Safe to use from several threads; the admission controller updates
    gauges while holding its own lock.
    """

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def record_timing(
        self, operation: str, duration: float, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record timing for an operation.

        Args:
            operation: Operation name (e.g., "mpc_session", "artifact_write")
            duration: Duration in seconds
            metadata: Additional metadata to log
        """
        with self._lock:
            if operation not in self.metrics:
                self.metrics[operation] = {
                    "count": 0,
                    "total_duration": 0.0,
                    "min_duration": float("inf"),
                    "max_duration": 0.0,
                }

            metric = self.metrics[operation]
            metric["count"] += 1
            metric["total_duration"] += duration
            metric["min_duration"] = min(metric["min_duration"], duration)
            metric["max_duration"] = max(metric["max_duration"], duration)

            log_data = {
                "operation": operation,
                "duration_seconds": duration,
                "count": metric["count"],
                "avg_duration": metric["total_duration"] / metric["count"],
            }
        if metadata:
            log_data.update(metadata)

        logger.info("Performance metric", extra=log_data)

    def record_counter(
        self, name: str, value: int = 1, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record a counter metric.

        Args:
            name: Counter name (e.g., "tasks_admitted", "sessions_aborted")
            value: Counter increment (default: 1)
            metadata: Additional metadata to log
        """
        with self._lock:
            self.metrics[name] = self.metrics.get(name, 0) + value
            log_data = {"counter": name, "value": self.metrics[name], "increment": value}
        if metadata:
            log_data.update(metadata)

        logger.debug("Counter metric", extra=log_data)

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge to its current value (e.g. in-flight tasks)."""
        with self._lock:
            self.metrics[name] = value

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get all collected metrics.

        Returns:
            Dictionary of metrics
        """
        with self._lock:
            return dict(self.metrics)

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self.metrics.clear()


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector

"""
Simple in-memory metrics for Prometheus exposition.
Thread-safe counters.
"""
import threading
from typing import Dict

# name -> help text, in exposition order
COUNTERS = {
    "requests_total": "Total HTTP requests",
    "requests_2xx": "HTTP requests answered with 2xx",
    "requests_4xx": "HTTP requests answered with 4xx",
    "requests_5xx": "HTTP requests answered with 5xx",
    "builds_started_total": "Builds started",
    "builds_succeeded_total": "Builds that produced a preview",
    "builds_failed_total": "Builds that failed for any reason",
    "builds_timed_out_total": "Builds that failed on a command timeout",
    "install_fallback_total": "Installs that fell back to the secondary package manager",
    "workspaces_swept_total": "Workspaces removed by the retention sweeper",
}


class Metrics:
    """Thread-safe metrics collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = 0
            self._counters[name] += value

    def get(self, name: str) -> int:
        """Get a counter value."""
        with self._lock:
            return self._counters.get(name, 0)

    def get_all(self) -> Dict[str, int]:
        """Get all counter values."""
        with self._lock:
            return self._counters.copy()

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        counters = self.get_all()

        for name, value in counters.items():
            metric = f"preview_{name}"
            lines.append(f"# HELP {metric} {COUNTERS.get(name, name)}")
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")

        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = Metrics()

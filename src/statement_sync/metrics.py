"""Phase timing for pipeline runs."""

import time


class MetricsCollector:
    """Collects named phase durations (latency only)."""

    def __init__(self):
        self.durations: dict[str, float] = {}
        self._start_times: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, record and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.durations[name] = self.durations.get(name, 0.0) + elapsed
        return elapsed

    def create_run_metrics(self, rows_mapped: int, rows_inserted: int, attachment_bytes: int) -> dict:
        """Create the metrics summary for one run."""
        return {
            **{f"{name}_time_sec": round(value, 3) for name, value in self.durations.items()},
            "rows_mapped": rows_mapped,
            "rows_inserted": rows_inserted,
            "attachment_bytes": attachment_bytes,
        }

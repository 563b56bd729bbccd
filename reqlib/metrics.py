import threading
import time
from dataclasses import dataclass


@dataclass
class Totals:
    calls: int = 0
    errors: int = 0
    cancelled: int = 0
    call_ms_sum: float = 0.0
    in_flight: int = 0
    max_in_flight: int = 0


class Metrics:
    def __init__(self):
        self._totals = Totals()
        self._lock = threading.Lock()
        self._start = time.time()

    def call_started(self) -> None:
        with self._lock:
            self._totals.in_flight += 1
            self._totals.max_in_flight = max(self._totals.max_in_flight, self._totals.in_flight)

    def call_finished(self, outcome: str, call_ms: float) -> None:
        """Record a finished call; outcome is "ok", "error" or "cancelled"."""
        with self._lock:
            self._totals.in_flight -= 1
            self._totals.calls += 1
            if outcome == "error":
                self._totals.errors += 1
            elif outcome == "cancelled":
                self._totals.cancelled += 1
            self._totals.call_ms_sum += call_ms

    def snapshot(self) -> tuple[Totals, float]:
        with self._lock:
            t = Totals(
                calls=self._totals.calls,
                errors=self._totals.errors,
                cancelled=self._totals.cancelled,
                call_ms_sum=self._totals.call_ms_sum,
                in_flight=self._totals.in_flight,
                max_in_flight=self._totals.max_in_flight,
            )
        elapsed = max(1e-6, time.time() - self._start)
        return t, elapsed


class StatsLogger(threading.Thread):
    daemon = True

    def __init__(self, metrics: Metrics, interval_s: float, log_fn):
        super().__init__(name="stats-logger")
        self._metrics = metrics
        self._interval = max(0.5, interval_s)
        self._log = log_fn
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            self._stop_event.wait(self._interval)
            if self._stop_event.is_set():
                break
            totals, elapsed = self._metrics.snapshot()
            cps = totals.calls / elapsed
            avg_ms = (totals.call_ms_sum / max(1, totals.calls))
            self._log(
                "Perf: calls=%d, errors=%d, cancelled=%d, in_flight=%d, avg_call_ms=%.1f, calls/sec=%.2f",
                totals.calls,
                totals.errors,
                totals.cancelled,
                totals.in_flight,
                avg_ms,
                cps,
            )

    def stop(self) -> None:
        self._stop_event.set()

import logging
import threading
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

from .metrics import Metrics


logger = logging.getLogger(__name__)


class PrometheusExporter:
    def __init__(self, metrics: Metrics, port: int = 8000, registry: CollectorRegistry = REGISTRY) -> None:
        self.metrics = metrics
        self.port = port
        self.registry = registry
        self._server_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

        self.calls_total = Counter('reqlib_calls_total', 'Total number of dispatched calls', registry=registry)
        self.errors_total = Counter('reqlib_errors_total', 'Total number of calls that failed', registry=registry)
        self.cancelled_total = Counter(
            'reqlib_cancelled_total', 'Total number of calls cancelled by their context', registry=registry
        )
        self.in_flight = Gauge('reqlib_in_flight', 'Calls currently running on a worker', registry=registry)
        self.avg_call_duration_seconds = Gauge(
            'reqlib_avg_call_duration_seconds', 'Average call duration in seconds', registry=registry
        )

        self._last_calls = 0
        self._last_errors = 0
        self._last_cancelled = 0

    def start(self) -> None:
        start_http_server(self.port, registry=self.registry)
        logger.info("Prometheus metrics server started on port %d", self.port)

        self._server_thread = threading.Thread(
            target=self._update_metrics_loop,
            name="prometheus-updater",
            daemon=True
        )
        self._server_thread.start()

    def _update_metrics_loop(self) -> None:
        while not self._stop_event.is_set():
            self._update_metrics()
            self._stop_event.wait(5.0)

    def _update_metrics(self) -> None:
        totals, _elapsed = self.metrics.snapshot()

        calls_delta = totals.calls - self._last_calls
        errors_delta = totals.errors - self._last_errors
        cancelled_delta = totals.cancelled - self._last_cancelled

        if calls_delta > 0:
            self.calls_total.inc(calls_delta)
        if errors_delta > 0:
            self.errors_total.inc(errors_delta)
        if cancelled_delta > 0:
            self.cancelled_total.inc(cancelled_delta)

        self.in_flight.set(totals.in_flight)
        if totals.calls > 0:
            avg_call_ms = totals.call_ms_sum / totals.calls
            self.avg_call_duration_seconds.set(avg_call_ms / 1000.0)

        self._last_calls = totals.calls
        self._last_errors = totals.errors
        self._last_cancelled = totals.cancelled

    def stop(self) -> None:
        self._stop_event.set()
        if self._server_thread:
            self._server_thread.join(timeout=2.0)

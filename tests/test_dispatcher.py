import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from reqlib.context import background, with_cancel, with_timeout
from reqlib.dispatcher import Dispatcher
from reqlib.errors import Cancelled, DeadlineExceeded, NetworkError
from reqlib.invoker import CancellableInvoker
from reqlib.metrics import Metrics
from reqlib.types import Request


class CountingHttp:
    def __init__(self, make_response, delay: float = 0.02):
        self.make_response = make_response
        self.delay = delay
        self.lock = threading.Lock()
        self.current = 0
        self.peak = 0
        self.calls = 0

    def send(self, request, timeout=None):
        with self.lock:
            self.current += 1
            self.calls += 1
            self.peak = max(self.peak, self.current)
        try:
            time.sleep(self.delay)
            return self.make_response(request.url.encode())
        finally:
            with self.lock:
                self.current -= 1

    def cancel(self, request):
        pass


class GateHttp:
    """send() blocks until the gate opens; records which URLs reached the network."""

    def __init__(self, make_response):
        self.make_response = make_response
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.sent = []

    def send(self, request, timeout=None):
        self.sent.append(request.url)
        self.entered.set()
        self.gate.wait(5.0)
        return self.make_response(b"ok")

    def cancel(self, request):
        pass


def _req(i: int) -> Request:
    return Request(method="GET", url=f"http://example.com/{i}")


@pytest.mark.parametrize("workers", [1, 3])
def test_never_more_than_max_worker_in_flight(make_response, workers):
    http = CountingHttp(make_response)
    metrics = Metrics()
    d = Dispatcher(CancellableInvoker(http), max_worker=workers, max_queue=2, metrics=metrics)
    d.start()
    try:
        with ThreadPoolExecutor(max_workers=12) as ex:
            results = list(ex.map(lambda i: d.submit(background(), _req(i)), range(24)))
    finally:
        d.close()

    assert all(r.ok for r in results)
    assert http.peak <= workers
    assert http.calls == 24
    totals, _ = metrics.snapshot()
    assert totals.max_in_flight <= workers
    assert totals.calls == 24


def test_every_call_gets_its_own_result_under_backpressure(make_response):
    http = CountingHttp(make_response, delay=0.005)
    d = Dispatcher(CancellableInvoker(http), max_worker=2, max_queue=1)
    d.start()
    n = 40  # far beyond max_queue + max_worker
    try:
        with ThreadPoolExecutor(max_workers=n) as ex:
            results = list(ex.map(lambda i: d.submit(background(), _req(i)), range(n)))
    finally:
        d.close()

    assert len(results) == n
    for i, result in enumerate(results):
        assert result.ok
        assert result.response.read() == f"http://example.com/{i}".encode()
    # every job went back to the pool
    assert d.pool.idle == d.pool.size


def test_network_error_delivered_as_result():
    class FailingHttp:
        def send(self, request, timeout=None):
            raise NetworkError("connection refused")

        def cancel(self, request):
            pass

    d = Dispatcher(CancellableInvoker(FailingHttp()), max_worker=1, max_queue=1)
    try:
        result = d.submit(background(), _req(0))
    finally:
        d.close()
    assert isinstance(result.error, NetworkError)


def test_cancel_while_waiting_for_queue_space(make_response):
    http = GateHttp(make_response)
    d = Dispatcher(CancellableInvoker(http), max_worker=1, max_queue=1, poll_interval=0.01)
    d.start()
    with ThreadPoolExecutor(max_workers=2) as ex:
        running = ex.submit(d.submit, background(), _req(0))
        assert http.entered.wait(2.0)
        queued = ex.submit(d.submit, background(), _req(1))
        deadline = time.monotonic() + 2.0
        while d.queue.qsize() < 1 and time.monotonic() < deadline:
            time.sleep(0.005)

        ctx = with_cancel()
        out = {}
        blocked = threading.Thread(target=lambda: out.setdefault("r", d.submit(ctx, _req(2))))
        blocked.start()
        time.sleep(0.05)
        ctx.cancel()
        blocked.join(2.0)
        assert not blocked.is_alive()
        assert isinstance(out["r"].error, Cancelled)

        http.gate.set()
        assert running.result(2.0).ok
        assert queued.result(2.0).ok
    d.close()
    assert "http://example.com/2" not in http.sent


def test_cancel_queued_call_returns_early_and_skips_network(make_response):
    http = GateHttp(make_response)
    d = Dispatcher(CancellableInvoker(http), max_worker=1, max_queue=4, poll_interval=0.01)
    d.start()
    with ThreadPoolExecutor(max_workers=1) as ex:
        running = ex.submit(d.submit, background(), _req(0))
        assert http.entered.wait(2.0)

        ctx = with_cancel()
        out = {}
        waiter = threading.Thread(target=lambda: out.setdefault("r", d.submit(ctx, _req(1))))
        waiter.start()
        time.sleep(0.05)
        ctx.cancel()
        waiter.join(2.0)
        # returned while the worker is still busy with the first call
        assert not waiter.is_alive()
        assert isinstance(out["r"].error, Cancelled)

        http.gate.set()
        assert running.result(2.0).ok
    d.close()
    assert http.sent == ["http://example.com/0"]
    assert d.pool.idle == d.pool.size


def test_invalid_sizes():
    with pytest.raises(ValueError):
        Dispatcher(CancellableInvoker(None), max_worker=0)
    with pytest.raises(ValueError):
        Dispatcher(CancellableInvoker(None), max_queue=-1)


def test_submit_after_close_fails(make_response):
    d = Dispatcher(CancellableInvoker(CountingHttp(make_response)), max_worker=1, max_queue=0)
    d.start()
    assert d.queue.maxsize == 1
    d.close()
    with pytest.raises(RuntimeError):
        d.submit(background(), _req(0))


def test_close_joins_workers(make_response):
    d = Dispatcher(CancellableInvoker(CountingHttp(make_response)), max_worker=3, max_queue=2)
    d.start()
    workers = list(d._workers)
    assert len(workers) == 3
    d.close()
    assert not any(t.is_alive() for t in workers)


class HoldingMetrics(Metrics):
    """The first call_finished() blocks until released, keeping its worker busy."""

    def __init__(self):
        super().__init__()
        self.holding = threading.Event()
        self.hold = threading.Event()
        self._first = True

    def call_finished(self, outcome, call_ms):
        first, self._first = self._first, False
        if first:
            self.holding.set()
            self.hold.wait(5.0)
        super().call_finished(outcome, call_ms)


def _wait_for_calls(metrics, n):
    deadline = time.monotonic() + 2.0
    while metrics.snapshot()[0].calls < n and time.monotonic() < deadline:
        time.sleep(0.005)
    return metrics.snapshot()[0].calls


def test_finishing_worker_leaves_reused_slot_alone(make_response):
    class SlowSecondHttp(GateHttp):
        def send(self, request, timeout=None):
            if request.url.endswith("/0"):
                return self.make_response(b"fast")
            return super().send(request, timeout)

    http = SlowSecondHttp(make_response)
    metrics = HoldingMetrics()
    d = Dispatcher(CancellableInvoker(http), max_worker=2, max_queue=2, metrics=metrics, poll_interval=0.01)
    d.start()
    workers = list(d._workers)
    try:
        # first activation delivers, then its worker stalls in metrics
        assert d.submit(background(), _req(0)).ok
        assert metrics.holding.wait(2.0)
        assert d.pool.size == 1 and d.pool.idle == 1

        # second activation of the same slot runs on the other worker and is abandoned
        ctx = with_cancel()
        out = {}
        waiter = threading.Thread(target=lambda: out.setdefault("r", d.submit(ctx, _req(1))))
        waiter.start()
        assert http.entered.wait(2.0)
        ctx.cancel()
        waiter.join(2.0)
        assert isinstance(out["r"].error, Cancelled)
        assert d.pool.size == 1
        assert d.pool.idle == 0

        # the stalled worker finishing must not hand back a slot it no longer owns
        metrics.hold.set()
        assert _wait_for_calls(metrics, 1) == 1
        assert d.pool.idle == 0

        http.gate.set()
        assert _wait_for_calls(metrics, 2) == 2
        assert d.pool.idle == 1
        assert all(t.is_alive() for t in workers)

        assert all(d.submit(background(), _req(i)).ok for i in (2, 3, 4))
    finally:
        http.gate.set()
        metrics.hold.set()
        d.close()
    assert d.pool.idle == d.pool.size


def test_worker_survives_a_failing_job(make_response):
    class FlakyMetrics(Metrics):
        def __init__(self):
            super().__init__()
            self.failed = False

        def call_started(self):
            if not self.failed:
                self.failed = True
                raise RuntimeError("metrics backend down")
            super().call_started()

    d = Dispatcher(
        CancellableInvoker(CountingHttp(make_response, delay=0.0)),
        max_worker=1,
        max_queue=1,
        metrics=FlakyMetrics(),
        poll_interval=0.01,
    )
    d.start()
    try:
        lost = d.submit(with_timeout(None, 0.2), _req(0))
        assert isinstance(lost.error, DeadlineExceeded)
        assert d.submit(background(), _req(1)).ok
    finally:
        d.close()

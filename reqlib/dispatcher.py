import logging
import queue
import threading
import time
from typing import List, Optional

from .config import DEFAULT_MAX_QUEUE, DEFAULT_MAX_WORKER
from .context import Context
from .errors import CancellationError
from .invoker import CancellableInvoker
from .job import Job, JobPool
from .metrics import Metrics
from .types import Request, Result


logger = logging.getLogger(__name__)

_STOP = object()


class Dispatcher:
    """Fixed worker pool fed by a bounded queue of jobs.

    At most ``max_worker`` jobs run at once. Up to ``max_queue`` more wait in
    the queue; past that, submit() blocks until space frees up.
    """

    def __init__(
        self,
        invoker: CancellableInvoker,
        max_worker: int = DEFAULT_MAX_WORKER,
        max_queue: int = DEFAULT_MAX_QUEUE,
        metrics: Optional[Metrics] = None,
        poll_interval: float = 0.05,
    ):
        if max_worker < 1:
            raise ValueError(f"max_worker must be >= 1, got {max_worker}")
        if max_queue < 0:
            raise ValueError(f"max_queue must be >= 0, got {max_queue}")
        self.max_worker = max_worker
        # queue.Queue(0) is unbounded; a zero-capacity queue becomes a single hand-off slot
        self.queue: "queue.Queue[object]" = queue.Queue(maxsize=max(1, max_queue))
        self.pool = JobPool(invoker)
        self.metrics = metrics or Metrics()
        self._poll_interval = poll_interval
        self._workers: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._closed = False

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is closed")
            if self._workers:
                return
            for i in range(self.max_worker):
                t = threading.Thread(target=self.worker, name=f"reqlib-worker-{i}", daemon=True)
                t.start()
                self._workers.append(t)
        logger.debug("Dispatcher started: %d workers, queue capacity %d", self.max_worker, self.queue.maxsize)

    def worker(self) -> None:
        while True:
            job = self.queue.get()
            if job is _STOP:
                self.queue.task_done()
                return
            try:
                self._run(job)
            except Exception:
                logger.exception("Worker failed running job %d", job.handle)
            finally:
                self.queue.task_done()

    def _run(self, job: Job) -> None:
        # the job may be back in the pool as soon as run() returns; do not touch it after
        self.metrics.call_started()
        t0 = time.perf_counter()
        outcome = "error"
        try:
            result = job.run(on_abandon=self.pool.release)
            if result.ok:
                outcome = "ok"
            elif isinstance(result.error, CancellationError):
                outcome = "cancelled"
        finally:
            self.metrics.call_finished(outcome, (time.perf_counter() - t0) * 1000.0)

    def submit(self, ctx: Context, request: Request) -> Result:
        """Run request on a worker and return its Result.

        Blocks while the queue is full and then until the Result arrives.
        If ctx is done first, returns the context error at once: a job that
        never got a queue slot is not enqueued, and a queued or running one
        is abandoned to its worker.
        """
        if not self._workers:
            self.start()
        job = self.pool.acquire()
        owned = True
        try:
            job.reset(ctx, request)
            if not self._enqueue(ctx, job):
                return Result(error=ctx.err())
            result = self._await(ctx, job)
            if result is None:
                owned = False
                return Result(error=ctx.err())
            return result
        finally:
            if owned:
                self.pool.release(job)

    def _enqueue(self, ctx: Context, job: Job) -> bool:
        while True:
            try:
                self.queue.put(job, timeout=self._poll_interval)
                return True
            except queue.Full:
                if ctx.done():
                    logger.debug("Dropped %s %s before queueing: %s", job.request.method, job.request.url, ctx.err())
                    return False

    def _await(self, ctx: Context, job: Job) -> Optional[Result]:
        channel = job.result()
        request = job.request
        while True:
            try:
                return channel.get(timeout=self._poll_interval)
            except queue.Empty:
                if ctx.done() and job.abandon():
                    logger.debug("Abandoned %s %s: %s", request.method, request.url, ctx.err())
                    return None

    def close(self) -> None:
        """Stop the workers once the jobs already queued have run."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            workers, self._workers = self._workers, []
        for _ in workers:
            self.queue.put(_STOP)
        for t in workers:
            t.join()
        logger.debug("Dispatcher stopped")

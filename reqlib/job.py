"""Reusable execution slots.

A :class:`Job` holds the state of one in-flight call: its context, its
prepared request and a channel that receives exactly one :class:`Result`.
Jobs live in a :class:`JobPool` arena and are recycled between calls.

``reset()`` swaps in a fresh channel. A caller that kept a job handle past
releasing it would be reading that fresh channel, which never receives its
value; ``JobPool.borrow()`` ties the handle to a ``with`` block so it cannot
outlive the call. A caller that stops waiting early hands the job over with
``abandon()`` instead, and ``run()`` hands it back through ``on_abandon``.
"""

import queue
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from .context import Context
from .invoker import CancellableInvoker
from .net import release
from .types import Request, Result


class Job:
    def __init__(self, handle: int, invoker: CancellableInvoker):
        self.handle = handle
        self._invoker = invoker
        self.ctx: Optional[Context] = None
        self.request: Optional[Request] = None
        self._result: "queue.Queue[Result]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._closed = True
        self._abandoned = False

    def reset(self, ctx: Context, request: Request) -> None:
        with self._lock:
            self.ctx = ctx
            self.request = request
            self._result = queue.Queue(maxsize=1)
            self._closed = False
            self._abandoned = False

    def result(self) -> "queue.Queue[Result]":
        return self._result

    def abandon(self) -> bool:
        """Give up on a queued or running job.

        Returns False if the result was already delivered, in which case the
        caller still owns the job and must read the channel. On True the
        result is never delivered and the job belongs to whoever runs it.
        """
        with self._lock:
            if self._closed:
                return False
            self._abandoned = True
            return True

    def run(self, on_abandon: Optional[Callable[["Job"], None]] = None) -> Result:
        """Invoke once and deliver the Result.

        Once the Result is delivered the job belongs to its caller again and
        run() does not touch it. If it was abandoned instead, the response is
        closed and on_abandon(job) is called to hand the slot back.
        """
        if self._closed:
            raise RuntimeError(f"job {self.handle} already ran; reset it before resubmitting")
        channel = self._result
        try:
            result = self._invoker.invoke(self.ctx, self.request)
        except Exception as e:
            result = Result(error=e)
        with self._lock:
            self._closed = True
            if not self._abandoned:
                channel.put_nowait(result)
                return result
        # nobody is left to read it
        release(result.response)
        if on_abandon is not None:
            on_abandon(self)
        return result

    def clear(self) -> None:
        self.ctx = None
        self.request = None


class JobPool:
    def __init__(self, invoker: CancellableInvoker):
        self._invoker = invoker
        self._jobs: List[Job] = []
        self._free: List[int] = []
        self._lock = threading.Lock()

    def acquire(self) -> Job:
        with self._lock:
            if self._free:
                return self._jobs[self._free.pop()]
            job = Job(len(self._jobs), self._invoker)
            self._jobs.append(job)
            return job

    def release(self, job: Job) -> None:
        with self._lock:
            if job.handle >= len(self._jobs) or self._jobs[job.handle] is not job:
                raise ValueError(f"job {job.handle} does not belong to this pool")
            if job.handle in self._free:
                raise ValueError(f"job {job.handle} released twice")
            job.clear()
            self._free.append(job.handle)

    @contextmanager
    def borrow(self) -> Iterator[Job]:
        job = self.acquire()
        try:
            yield job
        finally:
            self.release(job)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._jobs)

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._free)

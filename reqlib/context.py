"""Cancellation contexts.

A context carries a cancellation signal and an optional deadline across
threads. Calls bound to a context stop waiting as soon as it is done, and
report :class:`~reqlib.errors.Cancelled` or
:class:`~reqlib.errors.DeadlineExceeded` accordingly.

    with with_timeout(background(), 2.0) as ctx:
        client.get(ctx, "/status")
"""

import threading
import time
from typing import Callable, List, Optional

from .errors import CancellationError, Cancelled, DeadlineExceeded


DoneCallback = Callable[["Context"], None]


class Context:
    def __init__(self, parent: Optional["Context"] = None, deadline: Optional[float] = None):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: Optional[CancellationError] = None
        self._callbacks: List[DoneCallback] = []
        self._timer: Optional[threading.Timer] = None
        self._parent = parent

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent.add_done_callback(self._on_parent_done)
        if self._deadline is not None and not self._done.is_set():
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                self._finish(DeadlineExceeded())
            else:
                self._timer = threading.Timer(remaining, self._finish, args=(DeadlineExceeded(),))
                self._timer.daemon = True
                self._timer.start()

    @property
    def deadline(self) -> Optional[float]:
        """Deadline on the time.monotonic() clock, or None."""
        return self._deadline

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        self._check_deadline()
        return self._done.is_set()

    def err(self) -> Optional[CancellationError]:
        self._check_deadline()
        with self._lock:
            return self._err

    def _check_deadline(self) -> None:
        # the timer thread may not have fired yet
        if self._deadline is not None and not self._done.is_set() and time.monotonic() >= self._deadline:
            self._finish(DeadlineExceeded())

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def cancel(self) -> None:
        self._finish(Cancelled())

    def add_done_callback(self, fn: DoneCallback) -> None:
        """Register fn to run once when the context is done.

        Runs fn immediately, on the calling thread, if the context is
        already done.
        """
        with self._lock:
            if self._err is None:
                self._callbacks.append(fn)
                return
        fn(self)

    def remove_done_callback(self, fn: DoneCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(fn)
            except ValueError:
                pass

    def _on_parent_done(self, parent: "Context") -> None:
        err = parent.err()
        self._finish(err if err is not None else Cancelled())

    def _finish(self, err: CancellationError) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
        self._done.set()
        if timer is not None:
            timer.cancel()
        if self._parent is not None:
            self._parent.remove_done_callback(self._on_parent_done)
        for fn in callbacks:
            fn(self)

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()


class _Background(Context):
    # never done, so callbacks would only pile up
    def cancel(self) -> None:
        return None

    def add_done_callback(self, fn: DoneCallback) -> None:
        return None

    def remove_done_callback(self, fn: DoneCallback) -> None:
        return None


_BACKGROUND = _Background()


def background() -> Context:
    """Return the root context: never cancelled, no deadline."""
    return _BACKGROUND


def with_cancel(parent: Optional[Context] = None) -> Context:
    return Context(parent or _BACKGROUND)


def with_deadline(parent: Optional[Context], deadline: float) -> Context:
    return Context(parent or _BACKGROUND, deadline=deadline)


def with_timeout(parent: Optional[Context], seconds: float) -> Context:
    return with_deadline(parent, time.monotonic() + seconds)

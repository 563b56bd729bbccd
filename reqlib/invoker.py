import logging
import threading
from typing import Optional

from urllib3 import BaseHTTPResponse

from .context import Context
from .errors import NetworkError, ReqError
from .net import release
from .types import HttpClientProtocol, Request, Result


logger = logging.getLogger(__name__)


class CancellableInvoker:
    """Runs one blocking round trip on its own thread, raced against a context.

    Whichever finishes first decides the Result. When the context wins, the
    transport is asked to abort, the call thread is joined so nothing touches
    the request after invoke() returns, and any response the abandoned call
    still produced is closed.
    """

    def __init__(self, http: HttpClientProtocol):
        self.http = http

    def invoke(self, ctx: Context, request: Request) -> Result:
        err = ctx.err()
        if err is not None:
            return Result(error=err)

        wake = threading.Event()
        outcome: dict = {}

        def call() -> None:
            try:
                outcome["response"] = self.http.send(request, timeout=ctx.remaining())
            except ReqError as e:
                outcome["error"] = e
            except Exception as e:
                outcome["error"] = NetworkError(str(e), cause=e)
            finally:
                wake.set()

        def on_done(_ctx: Context) -> None:
            wake.set()

        worker = threading.Thread(target=call, name="reqlib-call", daemon=True)
        worker.start()
        ctx.add_done_callback(on_done)
        try:
            wake.wait()
        finally:
            ctx.remove_done_callback(on_done)

        err = ctx.err()
        if err is not None:
            self.http.cancel(request)
            worker.join()
            discarded: Optional[BaseHTTPResponse] = outcome.get("response")
            if discarded is not None:
                logger.debug("Discarding response for cancelled %s %s", request.method, request.url)
                release(discarded)
            return Result(error=err)

        worker.join()
        if "error" in outcome:
            return Result(error=outcome["error"])
        return Result(response=outcome["response"])

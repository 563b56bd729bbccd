import logging
from typing import Any, Optional, Tuple

from .config import ClientConfig, HeadersLike, MutateHook, RequestOptions
from .context import Context, background
from .dispatcher import Dispatcher
from .invoker import CancellableInvoker
from .metrics import Metrics, StatsLogger
from .net import HttpClient
from .parsing import QueryValues
from .request import build_request, encode_form, encode_json
from .response import Response
from .types import Body, HttpClientProtocol


logger = logging.getLogger(__name__)


class Client:
    """HTTP client that runs every call through a bounded worker pool.

    Usage:
        with Client(ClientConfig(base_url="https://api.example.com")) as client:
            resp = client.get(ctx, "/items", {"page": "2"})
            items = resp.json()

    Each method takes a cancellation context first (None means background)
    and accepts the per-call keyword options ``headers``, ``auth`` and
    ``mutate``. Failures raise a :class:`~reqlib.errors.ReqError` subclass.
    """

    def __init__(self, config: Optional[ClientConfig] = None, http_client: Optional[HttpClientProtocol] = None):
        self.config = config or ClientConfig()
        self._owns_http = http_client is None
        self.http = http_client or HttpClient.from_config(self.config)
        self.metrics = Metrics()
        self.dispatcher = Dispatcher(
            CancellableInvoker(self.http),
            max_worker=self.config.max_worker,
            max_queue=self.config.max_queue,
            metrics=self.metrics,
        )
        self.dispatcher.start()
        self.stats_thread: Optional[StatsLogger] = None
        if self.config.metrics_interval and self.config.metrics_interval > 0:
            self.stats_thread = StatsLogger(self.metrics, self.config.metrics_interval, logger.info)
            self.stats_thread.start()

    @classmethod
    def from_env(cls) -> "Client":
        return cls(ClientConfig.from_env())

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        try:
            self.dispatcher.close()
        finally:
            if self.stats_thread:
                self.stats_thread.stop()
            if self._owns_http:
                self.http.close()

    def get(self, ctx: Optional[Context], url: str, params: Optional[QueryValues] = None, **opts: Any) -> Response:
        return self.do(ctx, url, "GET", params=params, **opts)

    def head(self, ctx: Optional[Context], url: str, params: Optional[QueryValues] = None, **opts: Any) -> Response:
        return self.do(ctx, url, "HEAD", params=params, **opts)

    def delete(self, ctx: Optional[Context], url: str, params: Optional[QueryValues] = None, **opts: Any) -> Response:
        return self.do(ctx, url, "DELETE", params=params, **opts)

    def patch(
        self,
        ctx: Optional[Context],
        url: str,
        params: Optional[QueryValues] = None,
        body: Body = None,
        **opts: Any,
    ) -> Response:
        return self.do(ctx, url, "PATCH", body, params=params, **opts)

    def post(self, ctx: Optional[Context], url: str, body: Body = None, **opts: Any) -> Response:
        return self.do(ctx, url, "POST", body, **opts)

    def put(self, ctx: Optional[Context], url: str, body: Body = None, **opts: Any) -> Response:
        return self.do(ctx, url, "PUT", body, **opts)

    def post_json(self, ctx: Optional[Context], url: str, value: Any, **opts: Any) -> Response:
        body, content_type = encode_json(value)
        return self.do(ctx, url, "POST", body, content_type=content_type, **opts)

    def put_json(self, ctx: Optional[Context], url: str, value: Any, **opts: Any) -> Response:
        body, content_type = encode_json(value)
        return self.do(ctx, url, "PUT", body, content_type=content_type, **opts)

    def post_form(self, ctx: Optional[Context], url: str, values: Optional[QueryValues], **opts: Any) -> Response:
        body, content_type = encode_form(values)
        return self.do(ctx, url, "POST", body, content_type=content_type, **opts)

    def put_form(self, ctx: Optional[Context], url: str, values: Optional[QueryValues], **opts: Any) -> Response:
        body, content_type = encode_form(values)
        return self.do(ctx, url, "PUT", body, content_type=content_type, **opts)

    def do(
        self,
        ctx: Optional[Context],
        url: str,
        method: str,
        body: Body = None,
        params: Optional[QueryValues] = None,
        headers: Optional[HeadersLike] = None,
        auth: Optional[Tuple[str, str]] = None,
        mutate: Optional[MutateHook] = None,
        content_type: Optional[str] = None,
    ) -> Response:
        """Build, dispatch and wait for one call; every other method funnels here."""
        ctx = ctx or background()
        options = RequestOptions.build(headers=headers, auth=auth, mutate=mutate, content_type=content_type)
        request = build_request(self.config, method, url, body, options=options, params=params)

        result = self.dispatcher.submit(ctx, request)
        if result.error is not None:
            raise result.error
        return Response(result.response)

import logging
import threading
import time
import urllib.request
from http.cookiejar import CookieJar
from typing import Dict, List, Optional
from urllib.parse import urljoin

import urllib3
from urllib3 import BaseHTTPResponse, HTTPHeaderDict
from urllib3 import exceptions as urllib3_exc
from urllib3.util import parse_url

from .config import DEFAULT_MAX_CONNECTIONS, DEFAULT_MAX_REDIRECTS, ClientConfig, RedirectPolicy
from .errors import Cancelled, NetworkError, RedirectError, ReqError, TransportTimeout, UseLastResponse
from .types import Request


logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = ("Authorization", "Proxy-Authorization", "Cookie", "Cookie2")


def release(response: Optional[BaseHTTPResponse]) -> None:
    """Close an unwanted response and hand its connection back to the pool."""
    if response is None:
        return
    try:
        response.close()
    finally:
        response.release_conn()


def wrap_transport_error(exc: BaseException) -> NetworkError:
    reason = exc
    if isinstance(exc, urllib3_exc.MaxRetryError) and exc.reason is not None:
        reason = exc.reason
    # NewConnectionError subclasses ConnectTimeoutError but means refused or unresolvable
    if isinstance(reason, urllib3_exc.TimeoutError) and not isinstance(reason, urllib3_exc.NewConnectionError):
        return TransportTimeout(str(reason), cause=exc)
    return NetworkError(str(reason), cause=exc)


class _CookieResponse:
    """The slice of the urllib response API CookieJar.extract_cookies reads."""

    def __init__(self, headers: HTTPHeaderDict):
        self._headers = headers

    def info(self) -> "_CookieResponse":
        return self

    def get_all(self, name: str, default=None):
        return self._headers.getlist(name) or default


def _max_redirects_policy(limit: int) -> RedirectPolicy:
    def check(request: Request, via: List[Request]) -> None:
        if len(via) >= limit:
            raise RedirectError(f"stopped after {limit} redirects")

    return check


class HttpClient:
    def __init__(
        self,
        pool: Optional[urllib3.PoolManager] = None,
        cookie_jar: Optional[CookieJar] = None,
        check_redirect: Optional[RedirectPolicy] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        timeout: Optional[float] = None,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
    ):
        self._owns_pool = pool is None
        self.http = pool or urllib3.PoolManager(
            num_pools=max(8, max_connections),
            maxsize=max_connections,
            retries=False,
        )
        self.cookie_jar = cookie_jar
        self.check_redirect = check_redirect or _max_redirects_policy(max_redirects)
        self.timeout = timeout
        self._inflight: Dict[int, bool] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ClientConfig) -> "HttpClient":
        return cls(
            pool=config.transport,
            cookie_jar=config.cookie_jar,
            check_redirect=config.check_redirect,
            max_redirects=config.max_redirects,
            timeout=config.timeout,
            max_connections=config.max_connections,
        )

    def send(self, request: Request, timeout: Optional[float] = None) -> BaseHTTPResponse:
        """Perform the round trip, following redirects, and return the unread response.

        timeout is the caller's remaining time; the effective limit is the
        smaller of it and the client-wide timeout and spans every redirect hop.
        """
        limits = [t for t in (timeout, self.timeout) if t is not None]
        deadline = time.monotonic() + min(limits) if limits else None
        key = id(request)
        with self._lock:
            self._inflight[key] = False
        try:
            return self._follow(request, deadline, key)
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def cancel(self, request: Request) -> None:
        """Mark an in-flight request as abandoned.

        urllib3 cannot interrupt a blocked socket read, so the call stops at
        its next hop or as soon as the current one returns, and whatever it
        received is closed instead of returned.
        """
        with self._lock:
            if id(request) in self._inflight:
                self._inflight[id(request)] = True

    def close(self) -> None:
        if self._owns_pool:
            self.http.clear()

    def _cancelled(self, key: int) -> bool:
        with self._lock:
            return self._inflight.get(key, False)

    def _follow(self, request: Request, deadline: Optional[float], key: int) -> BaseHTTPResponse:
        via: List[Request] = []
        body_pos = _tell(request.body)
        current = request
        while True:
            response = self._send_once(current, deadline)
            if self._cancelled(key):
                release(response)
                raise Cancelled("request aborted")

            location = response.get_redirect_location()
            if not location:
                return response

            try:
                next_request = self._redirect_request(current, response.status, location, body_pos)
                via.append(current)
                self.check_redirect(next_request, via)
            except UseLastResponse:
                return response
            except ReqError:
                release(response)
                raise
            except Exception as e:
                release(response)
                raise RedirectError(f"redirect to {location} refused: {e}", cause=e) from e

            logger.debug("Following %d redirect %s -> %s", response.status, current.url, next_request.url)
            release(response)
            current = next_request

    def _send_once(self, request: Request, deadline: Optional[float]) -> BaseHTTPResponse:
        headers = HTTPHeaderDict(request.headers)
        if self.cookie_jar is not None:
            self._add_cookies(request.url, headers)

        kwargs = {}
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeout(f"timeout exceeded before sending {request.method} {request.url}")
            kwargs["timeout"] = urllib3.Timeout(total=remaining)

        try:
            response = self.http.urlopen(
                request.method,
                request.url,
                body=request.body,
                headers=headers,
                redirect=False,
                retries=False,
                preload_content=False,
                **kwargs,
            )
        except (urllib3_exc.HTTPError, OSError) as e:
            raise wrap_transport_error(e) from e

        if self.cookie_jar is not None:
            self.cookie_jar.extract_cookies(
                _CookieResponse(response.headers), urllib.request.Request(request.url, method=request.method)
            )
        return response

    def _add_cookies(self, url: str, headers: HTTPHeaderDict) -> None:
        shim = urllib.request.Request(url)
        self.cookie_jar.add_cookie_header(shim)
        cookie = shim.get_header("Cookie")
        if not cookie:
            return
        existing = headers.get("Cookie")
        headers["Cookie"] = f"{existing}; {cookie}" if existing else cookie

    def _redirect_request(self, current: Request, status: int, location: str, body_pos: Optional[int]) -> Request:
        url = urljoin(current.url, location)
        headers = HTTPHeaderDict(current.headers)
        method, body = current.method, current.body

        if status in (301, 302, 303) and method != "HEAD":
            if method != "GET":
                method = "GET"
            body = None
            headers.discard("Content-Type")
            headers.discard("Content-Length")
        elif body is not None and not isinstance(body, bytes):
            if body_pos is None:
                raise RedirectError(f"cannot replay request body for {status} redirect to {url}")
            body.seek(body_pos)

        if parse_url(url).host != parse_url(current.url).host:
            for name in _SENSITIVE_HEADERS:
                headers.discard(name)
        return Request(method=method, url=url, headers=headers, body=body)


def _tell(body) -> Optional[int]:
    if body is None or isinstance(body, bytes):
        return None
    try:
        return body.tell()
    except (AttributeError, OSError):
        return None

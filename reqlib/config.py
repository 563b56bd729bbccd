import dataclasses
import os
from dataclasses import dataclass
from http.cookiejar import CookieJar
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import urllib3

from .types import Request


DEFAULT_USER_AGENT = "reqlib/0.1 (+https://example.com)"
DEFAULT_MAX_QUEUE = 64
DEFAULT_MAX_WORKER = 8
DEFAULT_MAX_CONNECTIONS = 16
DEFAULT_MAX_REDIRECTS = 10

HeaderPairs = Tuple[Tuple[str, str], ...]
HeadersLike = Union[Mapping[str, Union[str, Sequence[str]]], Iterable[Tuple[str, str]]]
RedirectPolicy = Callable[[Request, List[Request]], None]
MutateHook = Callable[[Request], Request]


def header_pairs(headers: Optional[HeadersLike]) -> HeaderPairs:
    """Flatten a mapping (str or list values) or an iterable of pairs into pairs."""
    if not headers:
        return ()
    items = headers.items() if isinstance(headers, Mapping) else headers
    pairs: List[Tuple[str, str]] = []
    for key, value in items:
        if isinstance(value, (list, tuple)):
            pairs.extend((key, str(v)) for v in value)
        else:
            pairs.append((key, str(value)))
    return tuple(pairs)


@dataclass(frozen=True)
class ClientConfig:
    max_worker: int = DEFAULT_MAX_WORKER
    max_queue: int = DEFAULT_MAX_QUEUE
    transport: Optional[urllib3.PoolManager] = None
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    cookie_jar: Optional[CookieJar] = None
    check_redirect: Optional[RedirectPolicy] = None
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    timeout: Optional[float] = None
    base_url: str = ""
    headers: HeaderPairs = ()
    user_agent: str = DEFAULT_USER_AGENT
    metrics_interval: float = 0.0

    def with_header(self, key: str, value: str) -> "ClientConfig":
        return dataclasses.replace(self, headers=self.headers + ((key, value),))

    def with_headers(self, headers: HeadersLike) -> "ClientConfig":
        return dataclasses.replace(self, headers=self.headers + header_pairs(headers))

    def replace(self, **changes) -> "ClientConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """Build a config from REQLIB_* environment variables.

        Recognised variables:
            REQLIB_BASE_URL, REQLIB_TIMEOUT (seconds), REQLIB_MAX_WORKER,
            REQLIB_MAX_QUEUE, REQLIB_USER_AGENT, REQLIB_METRICS_INTERVAL.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        timeout = env.get("REQLIB_TIMEOUT")
        return cls(
            base_url=env.get("REQLIB_BASE_URL", ""),
            timeout=float(timeout) if timeout else None,
            max_worker=max(1, int(env.get("REQLIB_MAX_WORKER", str(DEFAULT_MAX_WORKER)))),
            max_queue=max(0, int(env.get("REQLIB_MAX_QUEUE", str(DEFAULT_MAX_QUEUE)))),
            user_agent=env.get("REQLIB_USER_AGENT", DEFAULT_USER_AGENT),
            metrics_interval=max(0.0, float(env.get("REQLIB_METRICS_INTERVAL", "0"))),
        )


@dataclass(frozen=True)
class RequestOptions:
    headers: HeaderPairs = ()
    auth: Optional[Tuple[str, str]] = None
    mutate: Optional[MutateHook] = None

    @classmethod
    def build(
        cls,
        headers: Optional[HeadersLike] = None,
        auth: Optional[Tuple[str, str]] = None,
        mutate: Optional[MutateHook] = None,
        content_type: Optional[str] = None,
    ) -> "RequestOptions":
        """Collect per-call keyword arguments into one overlay.

        content_type goes underneath the caller's headers so an explicit
        Content-Type header from the caller wins.
        """
        pairs = header_pairs(headers)
        if content_type and not any(k.lower() == "content-type" for k, _ in pairs):
            pairs = (("Content-Type", content_type),) + pairs
        return cls(headers=pairs, auth=auth, mutate=mutate)


DEFAULT_CONFIG = ClientConfig()

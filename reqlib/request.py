"""Configuration merger.

Turns a :class:`ClientConfig`, the per-call :class:`RequestOptions` and the
call arguments into one outgoing :class:`Request`. Header layers apply in a
fixed order: client defaults, then the per-call overlay (which replaces every
default value of a key it names), then the optional mutation hook, which sees
the finished request and may change or reject anything.
"""

import json
import re
from typing import Any, Optional, Tuple

from urllib3 import HTTPHeaderDict
from urllib3.util import make_headers

from .config import ClientConfig, HeaderPairs, RequestOptions
from .errors import BuildError, ReqError
from .parsing import QueryValues, UrlTools
from .types import Body, Request


JSON_CONTENT_TYPE = "application/json; charset=UTF-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# RFC 7230 token
_METHOD_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def merge_headers(base: HTTPHeaderDict, overlay: HeaderPairs) -> HTTPHeaderDict:
    """Return base with every key named in overlay replaced by overlay's values."""
    merged = HTTPHeaderDict(base)
    for key in {k.lower() for k, _ in overlay}:
        merged.discard(key)
    for key, value in overlay:
        merged.add(key, value)
    return merged


def default_headers(config: ClientConfig) -> HTTPHeaderDict:
    headers = HTTPHeaderDict()
    if config.user_agent:
        headers["User-Agent"] = config.user_agent
    return merge_headers(headers, config.headers)


def build_request(
    config: ClientConfig,
    method: str,
    url: str,
    body: Body = None,
    options: Optional[RequestOptions] = None,
    params: Optional[QueryValues] = None,
) -> Request:
    options = options or RequestOptions()
    if not method or not _METHOD_RE.fullmatch(method):
        raise BuildError(f"invalid method {method!r}")

    full_url = UrlTools.append_query(UrlTools.join(config.base_url, url), params)
    UrlTools.validate(full_url)

    overlay = options.headers
    if options.auth is not None:
        user, password = options.auth
        auth = make_headers(basic_auth=f"{user}:{password}")["authorization"]
        overlay = overlay + (("Authorization", auth),)

    req = Request(
        method=method.upper(),
        url=full_url,
        headers=merge_headers(default_headers(config), overlay),
        body=body,
    )

    if options.mutate is not None:
        try:
            req = options.mutate(req)
        except ReqError:
            raise
        except Exception as e:
            raise BuildError(f"request hook failed: {e}") from e
        if not isinstance(req, Request):
            raise BuildError("request hook must return a Request")
    return req


def encode_json(value: Any) -> Tuple[bytes, str]:
    try:
        data = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise BuildError(f"cannot encode JSON body: {e}") from e
    return data.encode("utf-8"), JSON_CONTENT_TYPE


def encode_form(values: Optional[QueryValues]) -> Tuple[bytes, str]:
    return UrlTools.encode_values(values).encode("ascii"), FORM_CONTENT_TYPE

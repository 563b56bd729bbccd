"""One-shot wrapper over a received response.

The body can be consumed once, by exactly one of :meth:`Response.bytes`,
:meth:`Response.text` or :meth:`Response.json`. That call reads everything
and hands the connection back to the pool, even when decoding fails. Any
later consuming call raises :class:`~reqlib.errors.BodyConsumedError`.
"""

import json
import threading
from email.message import Message
from typing import Any, Optional

from urllib3 import BaseHTTPResponse, HTTPHeaderDict
from urllib3 import exceptions as urllib3_exc

from .errors import BodyConsumedError, DecodeError
from .net import release


class Response:
    def __init__(self, raw: BaseHTTPResponse):
        self._raw = raw
        self._lock = threading.Lock()
        self._consumed = False

    @property
    def raw(self) -> BaseHTTPResponse:
        """The underlying urllib3 response, for status and headers."""
        return self._raw

    @property
    def status(self) -> int:
        return self._raw.status

    @property
    def headers(self) -> HTTPHeaderDict:
        return self._raw.headers

    @property
    def url(self) -> Optional[str]:
        return self._raw.url

    @property
    def consumed(self) -> bool:
        with self._lock:
            return self._consumed

    def _take(self) -> None:
        with self._lock:
            if self._consumed:
                raise BodyConsumedError("response body already consumed")
            self._consumed = True

    def bytes(self) -> bytes:
        self._take()
        try:
            return self._raw.read()
        except (urllib3_exc.HTTPError, OSError) as e:
            raise DecodeError(f"failed to read response body: {e}") from e
        finally:
            self._raw.release_conn()

    def text(self, encoding: Optional[str] = None) -> str:
        data = self.bytes()
        encoding = encoding or self.charset or "utf-8"
        try:
            return data.decode(encoding)
        except (LookupError, UnicodeDecodeError) as e:
            raise DecodeError(f"cannot decode body as {encoding}: {e}") from e

    def json(self, **kwargs: Any) -> Any:
        """Decode the body as JSON; kwargs go to json.loads."""
        data = self.bytes()
        try:
            return json.loads(data, **kwargs)
        except ValueError as e:
            raise DecodeError(f"malformed JSON body: {e}") from e

    @property
    def charset(self) -> Optional[str]:
        content_type = self._raw.headers.get("Content-Type")
        if not content_type:
            return None
        msg = Message()
        msg["Content-Type"] = content_type
        return msg.get_content_charset()

    def close(self) -> None:
        """Release the body without reading it. No-op once consumed."""
        with self._lock:
            if self._consumed:
                return
            self._consumed = True
        release(self._raw)

    def __enter__(self) -> "Response":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Response [{self.status}]>"

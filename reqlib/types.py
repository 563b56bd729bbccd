from dataclasses import dataclass, field
from typing import IO, Optional, Protocol, Union

from urllib3 import BaseHTTPResponse, HTTPHeaderDict


Body = Union[bytes, IO[bytes], None]


@dataclass
class Request:
    method: str
    url: str
    headers: HTTPHeaderDict = field(default_factory=HTTPHeaderDict)
    body: Body = None


@dataclass(frozen=True)
class Result:
    response: Optional[BaseHTTPResponse] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class HttpClientProtocol(Protocol):
    def send(self, request: Request, timeout: Optional[float] = None) -> BaseHTTPResponse: ...

    def cancel(self, request: Request) -> None: ...

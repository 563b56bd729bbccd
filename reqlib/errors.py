"""Exceptions raised by reqlib.

Every failure a call can produce derives from :class:`ReqError`, split by who
is at fault: the caller's input (:class:`BuildError`), the remote side or the
network (:class:`NetworkError`), the caller giving up
(:class:`CancellationError`) or the response body (:class:`DecodeError`).
"""

from typing import Optional


class ReqError(Exception):
    """Base exception for all reqlib errors."""


class BuildError(ReqError):
    """The request could not be built; no network attempt was made."""


class NetworkError(ReqError):
    """Transport failure: DNS, refused connection, TLS, protocol or timeout."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransportTimeout(NetworkError):
    """The transport's own connect or read deadline expired."""


class RedirectError(NetworkError):
    """A redirect could not be followed."""


class UseLastResponse(Exception):
    """Raised by a redirect policy to stop and return the redirect response."""


class CancellationError(ReqError):
    """The caller's context was done before the call completed."""


class Cancelled(CancellationError):
    """The context was cancelled explicitly."""

    def __init__(self, message: str = "context cancelled") -> None:
        super().__init__(message)


class DeadlineExceeded(CancellationError):
    """The context deadline passed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class DecodeError(ReqError):
    """The response body could not be read or decoded."""


class BodyConsumedError(ReqError):
    """The response body was already consumed by an earlier accessor."""

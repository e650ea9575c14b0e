"""Failure taxonomy shared by the fetch client and the upstream services."""

from __future__ import annotations


class FetchError(Exception):
    """Base class for every classified upstream failure."""


class InvalidTargetError(FetchError):
    """The request target could not be turned into a valid HTTP URL."""

    def __init__(self, target: str, reason: str | None = None) -> None:
        self.target = target
        message = f"Invalid request target: {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class TransportError(FetchError):
    """The exchange failed before an HTTP response was received."""


class HTTPStatusError(FetchError):
    """The upstream answered with a status outside of 200-299."""

    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message or f"Server error: {status_code}")

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600


class RateLimitedError(FetchError):
    """The upstream answered HTTP 429; callers should back off."""

    status_code = 429

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__("Rate limited. Please try again later.")


class DecodeError(FetchError):
    """The payload did not match the expected shape."""

    def __init__(self, model_name: str, detail: str) -> None:
        self.model_name = model_name
        super().__init__(f"Decoding error for {model_name}: {detail}")


class UpstreamError(FetchError):
    """The upstream reported failure in-band despite a successful status."""

    def __init__(self, message: str | None) -> None:
        self.upstream_message = message or "Unknown error"
        super().__init__(self.upstream_message)


def is_transient(exc: BaseException) -> bool:
    """Return whether ``exc`` is worth retrying after a short back-off."""

    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, HTTPStatusError):
        return exc.is_server_error
    return False

"""Typed request/decode primitive shared by the upstream services."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Mapping, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from ..errors import (
    DecodeError,
    HTTPStatusError,
    InvalidTargetError,
    RateLimitedError,
    TransportError,
    UpstreamError,
)
from ..schemas import UpstreamPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ALLOWED_SCHEMES = {"http", "https"}


@lru_cache(maxsize=64)
def _adapter(model: Any) -> TypeAdapter[Any]:
    return TypeAdapter(model)


class FetchClient:
    """Perform one GET exchange and classify whatever goes wrong.

    No retries happen here; retry policy belongs to callers, which can tell
    transient failures from rate limiting by the exception type.
    """

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._client = http_client

    async def fetch(
        self,
        target: str,
        model: type[T],
        *,
        params: Mapping[str, Any] | None = None,
    ) -> T:
        """Fetch ``target`` and decode the JSON body as ``model``."""

        response = await self._send(target, params)
        try:
            decoded = _adapter(model).validate_json(response.content)
        except ValidationError as exc:
            self._raise_in_band_failure(model, response.content, exc)
            logger.debug(
                "Decoding %s failed; raw payload starts with %r",
                getattr(model, "__name__", model),
                response.content[:500],
            )
            raise DecodeError(getattr(model, "__name__", str(model)), str(exc)) from exc

        if isinstance(decoded, UpstreamPayload):
            decoded.raise_for_upstream()
        return decoded

    async def fetch_bytes(
        self, target: str, *, params: Mapping[str, Any] | None = None
    ) -> bytes:
        """Fetch ``target`` and return the raw body."""

        response = await self._send(target, params)
        return response.content

    @staticmethod
    def _raise_in_band_failure(model: Any, content: bytes, cause: ValidationError) -> None:
        if not (isinstance(model, type) and issubclass(model, UpstreamPayload)):
            return
        try:
            envelope = model.envelope().model_validate_json(content)
        except ValidationError:
            return
        try:
            envelope.raise_for_upstream()
        except UpstreamError as exc:
            raise exc from cause

    async def _send(
        self, target: str, params: Mapping[str, Any] | None
    ) -> httpx.Response:
        try:
            request = self._client.build_request(
                "GET", target, params=dict(params) if params else None
            )
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise InvalidTargetError(target, str(exc)) from exc

        if request.url.scheme not in _ALLOWED_SCHEMES or not request.url.host:
            raise InvalidTargetError(target, "expected an absolute http(s) URL")

        try:
            response = await self._client.send(request)
        except httpx.UnsupportedProtocol as exc:
            raise InvalidTargetError(target, str(exc)) from exc
        except httpx.HTTPError as exc:
            # Query strings carry API keys, so only the host and path are reported.
            raise TransportError(
                f"{exc.__class__.__name__} while requesting "
                f"{request.url.host}{request.url.path}"
            ) from exc

        if response.status_code == 429:
            raise RateLimitedError(_retry_after(response))
        if not 200 <= response.status_code <= 299:
            raise HTTPStatusError(response.status_code)
        return response


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after")
    if not header:
        return None
    try:
        return max(float(header), 0.0)
    except ValueError:
        return None

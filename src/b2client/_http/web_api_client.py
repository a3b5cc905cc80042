"""JSON-over-HTTP calls with B2 error mapping.

Every httpx exception is turned into a B2NetworkBaseError subclass here and
every non-2xx response into the matching B2Error, so nothing above this layer
needs to know about httpx.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import httpx

from ..errors import (
    B2ConnectionBrokenError,
    B2Error,
    B2LocalError,
    B2NetworkError,
    B2NetworkTimeoutError,
    B2UnauthorizedError,
    RequestCategory,
    create_error,
)
from ..utils import debug, parse_retry_after_seconds
from .iter_coroutine import iter_coroutine
from .transport import BaseTransport, JSONBody, RequestBody, StreamBody

_T = TypeVar("_T")


def map_transport_error(exc: httpx.TransportError) -> B2Error:
    if isinstance(exc, httpx.TimeoutException):
        return B2NetworkTimeoutError("socket_timeout", None, f"socket timeout: {exc}")
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        return B2ConnectionBrokenError("connection_broken", None, f"connection broken: {exc}")
    return B2NetworkError("network_error", None, f"network error: {exc}")


def map_b2_error(
    response: httpx.Response,
    request_category: RequestCategory = RequestCategory.OTHER,
) -> B2Error:
    """Build the B2Error for a non-2xx response from its ``{status, code, message}`` body."""
    retry_after = parse_retry_after_seconds(response.headers.get("retry-after"))
    try:
        data = response.json()
    except Exception:
        data = None

    if isinstance(data, dict):
        code = str(data.get("code") or "unknown")
        message = str(data.get("message") or "")
        status = data.get("status")
        if not isinstance(status, int):
            status = response.status_code
    else:
        code = "unknown"
        message = response.text
        status = response.status_code

    if status == B2UnauthorizedError.STATUS:
        return B2UnauthorizedError(code, retry_after, message, request_category)
    return create_error(code, status, retry_after, message)


def decode_json_response(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise B2LocalError("parsing_failed", f"failed to parse response json: {exc}") from exc
    if not isinstance(data, dict):
        raise B2LocalError("parsing_failed", f"expected a json object, got {type(data).__name__}")
    return data


class WebApiClient:
    def __init__(self, transport: BaseTransport) -> None:
        self._transport = transport

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        body: RequestBody = None,
        request_category: RequestCategory,
    ) -> httpx.Response:
        try:
            response = iter_coroutine(
                self._transport.send(method, url, body=body, headers=headers)
            )
        except httpx.TransportError as exc:
            debug(f"{method} {url} failed", str(exc))
            raise map_transport_error(exc) from exc

        if 200 <= response.status_code < 300:
            return response
        error = map_b2_error(response, request_category)
        debug(f"{method} {url} returned {response.status_code}", error.code)
        raise error

    def post_json_return_json(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        request_category: RequestCategory = RequestCategory.OTHER,
    ) -> dict[str, Any]:
        response = self._send(
            "POST",
            url,
            headers=headers,
            body=JSONBody(body),
            request_category=request_category,
        )
        return decode_json_response(response)

    def post_data_return_json(
        self,
        url: str,
        headers: dict[str, str],
        chunks: Iterable[bytes],
        content_length: int,
        content_type: str = "application/octet-stream",
        request_category: RequestCategory = RequestCategory.OTHER,
    ) -> dict[str, Any]:
        response = self._send(
            "POST",
            url,
            headers=headers,
            body=StreamBody(chunks, content_length, content_type),
            request_category=request_category,
        )
        return decode_json_response(response)

    def get_content(
        self,
        url: str,
        headers: dict[str, str],
        handler: Callable[[httpx.Headers, bytes], _T],
    ) -> _T:
        """GET ``url`` and hand the response headers and body to ``handler``."""
        response = self._send("GET", url, headers=headers, request_category=RequestCategory.OTHER)
        return handler(response.headers, response.content)

    def head(self, url: str, headers: dict[str, str]) -> httpx.Headers:
        response = self._send("HEAD", url, headers=headers, request_category=RequestCategory.OTHER)
        return response.headers


__all__ = [
    "WebApiClient",
    "map_transport_error",
    "map_b2_error",
    "decode_json_response",
]

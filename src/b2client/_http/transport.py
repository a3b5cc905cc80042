"""HTTP transport for the blocking client."""

from __future__ import annotations

import abc
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from .clients import create_base_client


@dataclass(frozen=True, slots=True)
class JSONBody:
    """JSON request body - automatically sets Content-Type to application/json."""

    data: Any


@dataclass(frozen=True, slots=True)
class StreamBody:
    """Streamed request body of a known length.

    The explicit length keeps httpx from falling back to chunked encoding,
    which the upload endpoints don't accept.
    """

    chunks: Iterable[bytes]
    length: int
    content_type: str = "application/octet-stream"


RequestBody = JSONBody | StreamBody | None


class BaseTransport(abc.ABC):
    """Abstract transport with async interface."""

    @abc.abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        *,
        body: RequestBody = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response: ...

    @abc.abstractmethod
    def close(self) -> None: ...


class BlockingTransport(BaseTransport):
    """
    Synchronous HTTP transport using httpx.Client.

    Methods are declared async but don't actually await anything,
    allowing them to be executed via iter_coroutine().  One instance is
    shared by every worker thread; httpx.Client is thread-safe.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._headers = headers or {}
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = create_base_client(timeout=self._timeout)
            return self._client

    async def send(
        self,
        method: str,
        url: str,
        *,
        body: RequestBody = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        request_headers = dict(self._headers)
        if headers:
            request_headers.update(headers)

        json_data: Any | None = None
        raw_content: Iterable[bytes] | None = None
        if isinstance(body, JSONBody):
            json_data = body.data
        elif isinstance(body, StreamBody):
            raw_content = body.chunks
            request_headers["Content-Type"] = body.content_type
            request_headers["Content-Length"] = str(body.length)

        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        return self._get_client().request(
            method,
            url,
            json=json_data,
            content=raw_content,
            headers=request_headers,
            **kwargs,
        )

    def close(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        with self._lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None


__all__ = [
    "BaseTransport",
    "BlockingTransport",
    "JSONBody",
    "StreamBody",
    "RequestBody",
]

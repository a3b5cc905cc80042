"""Shared HTTP infrastructure for the B2 client."""

from .clients import create_base_client
from .config import DEFAULT_TIMEOUT, ClientConfig, require_credentials
from .iter_coroutine import iter_coroutine
from .transport import (
    BaseTransport,
    BlockingTransport,
    JSONBody,
    RequestBody,
    StreamBody,
)
from .web_api_client import WebApiClient

__all__ = [
    "DEFAULT_TIMEOUT",
    "ClientConfig",
    "require_credentials",
    "iter_coroutine",
    "BaseTransport",
    "BlockingTransport",
    "JSONBody",
    "StreamBody",
    "RequestBody",
    "create_base_client",
    "WebApiClient",
]

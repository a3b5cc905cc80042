"""Client factory functions for creating pre-configured httpx clients."""

from __future__ import annotations

import httpx

from .config import DEFAULT_TIMEOUT


def create_base_client(timeout: float | None = None) -> httpx.Client:
    """Create a sync httpx client with basic configuration (no auth).

    B2 authorizes each request separately (account token, or an upload
    lease's token), so auth is passed per request rather than via hooks.

    Args:
        timeout: Request timeout in seconds. Defaults to DEFAULT_TIMEOUT.

    Returns:
        An httpx.Client with basic configuration.
    """
    effective_timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
    return httpx.Client(timeout=httpx.Timeout(effective_timeout))


__all__ = ["create_base_client"]

from __future__ import annotations

import os
import sys
import time
from typing import Any
from urllib.parse import quote

DEFAULT_B2_MASTER_URL = "https://api.backblazeb2.com/"
API_VERSION_PATH = "b2api/v2/"
SDK_VERSION = "0.1.0"

# RFC 7230 token characters, which are the only ones allowed in a header name.
_HEADER_NAME_CHARACTERS = frozenset(
    "!#$%&'*+-.^_`|~0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
)


def debug(message: str, *args: Any) -> None:
    debug_env = os.getenv("DEBUG", "")
    if "b2" in debug_env:
        print(f"b2client: {message}", *args, file=sys.stderr)


def get_master_url() -> str:
    url = os.getenv("B2_MASTER_URL") or DEFAULT_B2_MASTER_URL
    return url if url.endswith("/") else url + "/"


def get_user_agent(application: str | None = None) -> str:
    base = f"b2client-python/{SDK_VERSION}"
    return f"{application} {base}" if application else base


def validate_user_agent(user_agent: str) -> str:
    if not user_agent:
        raise ValueError("user_agent must be non-empty")
    if any(ord(c) < 32 for c in user_agent):
        raise ValueError("control character in user-agent!")
    return user_agent


def make_api_url(base_url: str, api_name: str) -> str:
    if not base_url.endswith("/"):
        base_url += "/"
    return f"{base_url}{API_VERSION_PATH}{api_name}"


def percent_encode(value: str) -> str:
    # B2 wants everything but the unreserved set and '/' escaped.
    return quote(value, safe="/")


def validate_file_info_name(name: str) -> None:
    if not name:
        raise ValueError("file info name must be non-empty")
    for char in name:
        if char not in _HEADER_NAME_CHARACTERS:
            raise ValueError(f"illegal file info name character: {char!r} in {name!r}")


def parse_retry_after_seconds(value: str | None) -> int | None:
    """Only the delay-seconds form of Retry-After is honored; dates are ignored."""
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def monotonic_millis() -> int:
    return int(time.monotonic() * 1000)


__all__ = [
    "DEFAULT_B2_MASTER_URL",
    "API_VERSION_PATH",
    "SDK_VERSION",
    "debug",
    "get_master_url",
    "get_user_agent",
    "validate_user_agent",
    "make_api_url",
    "percent_encode",
    "validate_file_info_name",
    "parse_retry_after_seconds",
    "monotonic_millis",
]

"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from ..utils import get_master_url, get_user_agent, validate_user_agent

DEFAULT_TIMEOUT = 60.0


def require_credentials(
    application_key_id: str | None, application_key: str | None
) -> tuple[str, str]:
    """Resolve credentials from arguments or environment, raising if not found."""
    key_id = application_key_id or os.getenv("B2_APPLICATION_KEY_ID")
    key = application_key or os.getenv("B2_APPLICATION_KEY")
    if not key_id or not key:
        raise RuntimeError(
            "Missing B2 credentials. Pass application_key_id=... and application_key=... "
            "or set B2_APPLICATION_KEY_ID and B2_APPLICATION_KEY."
        )
    return key_id, key


@dataclass
class ClientConfig:
    """SDK configuration."""

    application_key_id: str | None = None
    application_key: str | None = None
    master_url: str = field(default_factory=get_master_url)
    user_agent: str = field(default_factory=get_user_agent)
    timeout: float = DEFAULT_TIMEOUT
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_user_agent(self.user_agent)
        if not self.master_url.endswith("/"):
            self.master_url += "/"

    def resolve_credentials(self) -> tuple[str, str]:
        return require_credentials(self.application_key_id, self.application_key)

    def get_default_headers(self) -> dict[str, str]:
        return {"user-agent": self.user_agent, **self.headers}


__all__ = ["ClientConfig", "DEFAULT_TIMEOUT", "require_credentials"]

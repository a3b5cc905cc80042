from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol

from .errors import B2LocalError
from .types import AccountAuthorization
from .utils import debug

if TYPE_CHECKING:
    from .webifier import StorageClientWebifier


class AccountAuthorizer(Protocol):
    def authorize(self, webifier: StorageClientWebifier) -> AccountAuthorization: ...


class SimpleAccountAuthorizer:
    """Authorizes with an application key id and key via b2_authorize_account."""

    def __init__(self, application_key_id: str, application_key: str) -> None:
        if not application_key_id or not application_key:
            raise ValueError("application_key_id and application_key are required")
        self._application_key_id = application_key_id
        self._application_key = application_key

    def authorize(self, webifier: StorageClientWebifier) -> AccountAuthorization:
        return webifier.authorize_account(self._application_key_id, self._application_key)

    def __repr__(self) -> str:
        return f"SimpleAccountAuthorizer(application_key_id={self._application_key_id!r})"


class AccountAuthorizationCache:
    """Holds the current account authorization, fetching it when empty.

    ``get()`` holds the lock for the whole authorize call, so concurrent
    callers wait for one authorization instead of each making their own.
    Retrying a failed authorization is the caller's job.
    """

    def __init__(self, webifier: StorageClientWebifier, authorizer: AccountAuthorizer) -> None:
        self._webifier = webifier
        self._authorizer = authorizer
        self._lock = threading.Lock()
        self._authorization: AccountAuthorization | None = None
        # Set by the first successful authorization and never changed.
        self._account_id: str | None = None

    def get(self) -> AccountAuthorization:
        with self._lock:
            if self._authorization is None:
                debug("authorizing account")
                authorization = self._authorizer.authorize(self._webifier)
                if self._account_id is None:
                    self._account_id = authorization.account_id
                elif self._account_id != authorization.account_id:
                    raise B2LocalError(
                        "unauthorized",
                        f"authorized as {authorization.account_id} but previously "
                        f"authorized as accountId {self._account_id}",
                    )
                self._authorization = authorization
            return self._authorization

    def get_account_id(self) -> str:
        if self._account_id is None:
            self.get()
        assert self._account_id is not None
        return self._account_id

    def clear(self) -> None:
        with self._lock:
            if self._authorization is not None:
                debug("clearing account authorization")
            self._authorization = None


__all__ = [
    "AccountAuthorizer",
    "SimpleAccountAuthorizer",
    "AccountAuthorizationCache",
]

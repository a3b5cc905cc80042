"""Pools of upload leases.

A lease (upload URL plus its token) may only be used by one upload at a
time.  Callers check one out with ``get``, use it, and hand it back with
``unget`` only if the upload succeeded.  A lease that failed is dropped.

Retries always get a fresh lease from the server: many pooled leases can go
stale at once, and retries shouldn't be spent discovering that one by one.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING

from .types import UploadPartUrl, UploadUrl
from .utils import debug

if TYPE_CHECKING:
    from .auth import AccountAuthorizationCache
    from .webifier import StorageClientWebifier


class UploadUrlCache:
    def __init__(
        self,
        webifier: StorageClientWebifier,
        account_auth_cache: AccountAuthorizationCache,
    ) -> None:
        self._webifier = webifier
        self._account_auth_cache = account_auth_cache
        self._lock = threading.Lock()
        self._leases_by_bucket: dict[str, deque[UploadUrl]] = {}

    def get(self, bucket_id: str, is_retry: bool) -> UploadUrl:
        if not is_retry:
            with self._lock:
                leases = self._leases_by_bucket.get(bucket_id)
                if leases:
                    return leases.popleft()

        debug(f"getting a new upload url for bucket {bucket_id}")
        return self._webifier.get_upload_url(self._account_auth_cache.get(), bucket_id)

    def unget(self, lease: UploadUrl) -> None:
        with self._lock:
            self._leases_by_bucket.setdefault(lease.bucket_id, deque()).append(lease)


class UploadPartUrlCache:
    """Upload-part leases for a single large file."""

    def __init__(
        self,
        webifier: StorageClientWebifier,
        account_auth_cache: AccountAuthorizationCache,
        large_file_id: str,
    ) -> None:
        self._webifier = webifier
        self._account_auth_cache = account_auth_cache
        self._large_file_id = large_file_id
        self._lock = threading.Lock()
        self._leases: deque[UploadPartUrl] = deque()

    def get(self, is_retry: bool) -> UploadPartUrl:
        if not is_retry:
            with self._lock:
                if self._leases:
                    return self._leases.popleft()

        debug(f"getting a new upload part url for {self._large_file_id}")
        return self._webifier.get_upload_part_url(
            self._account_auth_cache.get(), self._large_file_id
        )

    def unget(self, lease: UploadPartUrl) -> None:
        with self._lock:
            self._leases.append(lease)


__all__ = ["UploadUrlCache", "UploadPartUrlCache"]

"""Shared fixtures for all tests."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable, Generator
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import pytest

from b2client.auth import AccountAuthorizationCache, SimpleAccountAuthorizer
from b2client.content_sources import ContentSource
from b2client.retry import DefaultRetryPolicy, Retryer, Sleeper
from b2client.types import (
    AccountAuthorization,
    ByteRange,
    FileIdAndName,
    FileVersion,
    ListPartsResponse,
    Part,
    UploadFileRequest,
    UploadPartUrl,
    UploadProgress,
    UploadState,
    UploadUrl,
)

ACCOUNT_ID = "acct_1"
BUCKET_ID = "bucket_1"
LARGE_FILE_ID = "4_large_file_1"
API_URL = "https://api001.backblazeb2.com"
DOWNLOAD_URL = "https://f001.backblazeb2.com"


def make_authorization(
    *,
    account_id: str = ACCOUNT_ID,
    token: str = "auth-token-1",
    minimum_part_size: int = 100,
    recommended_part_size: int = 1000,
) -> AccountAuthorization:
    return AccountAuthorization(
        account_id=account_id,
        authorization_token=token,
        api_url=API_URL,
        download_url=DOWNLOAD_URL,
        recommended_part_size=recommended_part_size,
        absolute_minimum_part_size=minimum_part_size,
    )


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def drain(source: ContentSource, chunk_size: int = 256) -> bytes:
    """Read a fresh stream of ``source`` to EOF in small chunks."""
    chunks = []
    stream = source.create_input_stream()
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        stream.close()
    return b"".join(chunks)


class RecordingSleeper(Sleeper):
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[int] = []

    def sleep_seconds(self, seconds: int) -> bool:
        self.calls.append(seconds)
        return True


class RecordingListener:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[UploadProgress] = []

    def progress(self, progress: UploadProgress) -> None:
        with self._lock:
            self.events.append(progress)

    def for_part(self, part_index: int) -> list[UploadProgress]:
        with self._lock:
            return [event for event in self.events if event.part_index == part_index]

    def states_for_part(self, part_index: int) -> list[UploadState]:
        return [event.state for event in self.for_part(part_index)]


class FakeWebifier:
    """In-memory stand-in for StorageClientWebifier.

    Errors queued with ``fail(key, ...)`` are raised, one per call, by the
    matching method.  Upload methods read the whole content before raising
    so progress events look like a real attempt.
    """

    def __init__(self, authorization: AccountAuthorization | None = None) -> None:
        self.authorization = authorization or make_authorization()
        self.lock = threading.Lock()
        self.calls: list[str] = []
        self.errors: dict[str, list[Exception]] = {}
        self.uploaded_parts: dict[int, bytes] = {}
        self.existing_parts: list[Part] = []
        self.finished: list[list[str]] = []
        self.started_file_info: dict[str, str] | None = None
        self.upload_part_hook: Callable[[int], None] | None = None
        self._lease_counter = 0

    def fail(self, key: str, *errors: Exception) -> None:
        self.errors.setdefault(key, []).extend(errors)

    def count(self, key: str) -> int:
        with self.lock:
            return self.calls.count(key)

    def _record(self, key: str) -> None:
        with self.lock:
            self.calls.append(key)
            queued = self.errors.get(key)
            error = queued.pop(0) if queued else None
        if error is not None:
            raise error

    def _next_lease(self) -> int:
        with self.lock:
            self._lease_counter += 1
            return self._lease_counter

    def authorize_account(
        self, application_key_id: str, application_key: str
    ) -> AccountAuthorization:
        self._record("authorize_account")
        return self.authorization

    def get_upload_url(self, auth: AccountAuthorization, bucket_id: str) -> UploadUrl:
        self._record("get_upload_url")
        n = self._next_lease()
        return UploadUrl(
            bucket_id=bucket_id,
            upload_url=f"https://pod-000-1000-{n:02d}.backblaze.com/b2api/v2/b2_upload_file",
            authorization_token=f"upload-token-{n}",
        )

    def get_upload_part_url(self, auth: AccountAuthorization, file_id: str) -> UploadPartUrl:
        self._record("get_upload_part_url")
        n = self._next_lease()
        return UploadPartUrl(
            file_id=file_id,
            upload_url=f"https://pod-000-1000-{n:02d}.backblaze.com/b2api/v2/b2_upload_part",
            authorization_token=f"part-token-{n}",
        )

    def upload_file(self, upload_url: UploadUrl, request: UploadFileRequest) -> FileVersion:
        data = drain(request.content_source)
        self._record("upload_file")
        return FileVersion(
            file_id="4_small_file_1",
            file_name=request.file_name,
            content_length=len(data),
            content_type=request.content_type,
            content_sha1=sha1_hex(data),
            file_info=dict(request.file_info),
            bucket_id=request.bucket_id,
        )

    def upload_part(
        self, upload_part_url: UploadPartUrl, part_number: int, content_source: ContentSource
    ) -> Part:
        if self.upload_part_hook is not None:
            self.upload_part_hook(part_number)
        data = drain(content_source)
        self._record(f"upload_part:{part_number}")
        with self.lock:
            self.uploaded_parts[part_number] = data
        return Part(
            file_id=upload_part_url.file_id,
            part_number=part_number,
            content_length=len(data),
            content_sha1=sha1_hex(data),
        )

    def copy_part(
        self,
        auth: AccountAuthorization,
        large_file_id: str,
        part_number: int,
        source_file_id: str,
        byte_range: ByteRange | None = None,
    ) -> Part:
        self._record(f"copy_part:{part_number}")
        length = byte_range.end - byte_range.start + 1 if byte_range is not None else 500
        return Part(
            file_id=large_file_id,
            part_number=part_number,
            content_length=length,
            content_sha1=f"copied-sha1-{part_number}",
        )

    def start_large_file(
        self,
        auth: AccountAuthorization,
        bucket_id: str,
        file_name: str,
        content_type: str,
        file_info: dict[str, str] | None = None,
    ) -> FileVersion:
        self._record("start_large_file")
        self.started_file_info = dict(file_info or {})
        return FileVersion(
            file_id=LARGE_FILE_ID,
            file_name=file_name,
            content_type=content_type,
            file_info=dict(file_info or {}),
            action="start",
            bucket_id=bucket_id,
        )

    def finish_large_file(
        self, auth: AccountAuthorization, file_id: str, part_sha1s: list[str]
    ) -> FileVersion:
        self._record("finish_large_file")
        with self.lock:
            self.finished.append(list(part_sha1s))
            total = sum(len(data) for data in self.uploaded_parts.values())
        return FileVersion(
            file_id=file_id,
            file_name="big.bin",
            content_length=total,
            content_sha1="none",
            action="upload",
        )

    def list_parts(
        self,
        auth: AccountAuthorization,
        file_id: str,
        start_part_number: int | None = None,
        max_part_count: int | None = None,
    ) -> ListPartsResponse:
        self._record("list_parts")
        start = start_part_number or 1
        page_size = max_part_count or 1000
        remaining = sorted(
            (part for part in self.existing_parts if part.part_number >= start),
            key=lambda part: part.part_number,
        )
        page, rest = remaining[:page_size], remaining[page_size:]
        return ListPartsResponse(
            parts=page, next_part_number=rest[0].part_number if rest else None
        )

    def cancel_large_file(self, auth: AccountAuthorization, file_id: str) -> FileIdAndName:
        self._record("cancel_large_file")
        return FileIdAndName(file_id=file_id, file_name="big.bin", bucket_id=BUCKET_ID)

    def get_file_info(self, auth: AccountAuthorization, file_id: str) -> FileVersion:
        self._record("get_file_info")
        return FileVersion(file_id=file_id, file_name="big.bin")


class RecordingExecutor(ThreadPoolExecutor):
    """A thread pool that remembers the futures it handed out."""

    def __init__(self, max_workers: int = 4) -> None:
        super().__init__(max_workers=max_workers)
        self.futures: list[Future[Any]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        future = super().submit(fn, *args, **kwargs)
        self.futures.append(future)
        return future


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear B2-related environment variables for testing.

    This ensures tests don't accidentally use real credentials from the environment.
    """
    for var in ("B2_APPLICATION_KEY_ID", "B2_APPLICATION_KEY", "B2_MASTER_URL", "DEBUG"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def webifier() -> FakeWebifier:
    return FakeWebifier()


@pytest.fixture
def account_auth_cache(webifier: FakeWebifier) -> AccountAuthorizationCache:
    return AccountAuthorizationCache(
        webifier,  # type: ignore[arg-type]
        SimpleAccountAuthorizer("test_key_id", "test_key"),
    )


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def retryer(sleeper: RecordingSleeper) -> Retryer:
    return Retryer(sleeper)


@pytest.fixture
def retry_policy_supplier() -> Callable[[], DefaultRetryPolicy]:
    return DefaultRetryPolicy


@pytest.fixture
def executor() -> Generator[RecordingExecutor, None, None]:
    pool = RecordingExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True, cancel_futures=True)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()

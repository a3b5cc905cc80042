"""The B2 storage client."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Executor, Future
from typing import Any, TypeVar

import httpx

from ._http import BlockingTransport, ClientConfig, WebApiClient
from .auth import AccountAuthorizationCache, AccountAuthorizer, SimpleAccountAuthorizer
from .content_sources import ContentSource
from .errors import B2LocalError
from .large_file import LargeFileStorer, LargeFileUploader
from .part_sizes import PartSizes
from .part_storers import PartStorer
from .progress import UploadListener
from .retry import DefaultRetryPolicy, Retryer, RetryPolicy, Sleeper
from .types import (
    AccountAuthorization,
    ByteRange,
    FileIdAndName,
    FileVersion,
    Part,
    StoreLargeFileRequest,
    UploadFileRequest,
    UploadPartUrl,
    UploadUrl,
)
from .url_cache import UploadUrlCache
from .webifier import StorageClientWebifier

_T = TypeVar("_T")


class StorageClient:
    """Synchronous B2 client.

    Safe to share between threads.  Large-file operations run their parts on
    an executor the caller passes in and still owns; the client never shuts
    one down.
    """

    def __init__(
        self,
        *,
        application_key_id: str | None = None,
        application_key: str | None = None,
        master_url: str | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        config: ClientConfig | None = None,
        http_client: httpx.Client | None = None,
        webifier: StorageClientWebifier | None = None,
        authorizer: AccountAuthorizer | None = None,
        retry_policy_supplier: Callable[[], RetryPolicy] | None = None,
        sleeper: Sleeper | None = None,
    ) -> None:
        if config is None:
            overrides: dict[str, Any] = {}
            if master_url is not None:
                overrides["master_url"] = master_url
            if timeout is not None:
                overrides["timeout"] = timeout
            if user_agent is not None:
                overrides["user_agent"] = user_agent
            config = ClientConfig(
                application_key_id=application_key_id,
                application_key=application_key,
                **overrides,
            )
        self._config = config

        self._transport = BlockingTransport(
            http_client, timeout=config.timeout, headers=config.get_default_headers()
        )
        self._webifier = webifier or StorageClientWebifier(
            WebApiClient(self._transport), config.master_url
        )
        if authorizer is None:
            authorizer = SimpleAccountAuthorizer(*config.resolve_credentials())
        self._account_auth_cache = AccountAuthorizationCache(self._webifier, authorizer)
        self._upload_url_cache = UploadUrlCache(self._webifier, self._account_auth_cache)
        self._retryer = Retryer(sleeper)
        self._retry_policy_supplier = retry_policy_supplier or DefaultRetryPolicy.supplier()

    def _retry(self, operation: str, callable_: Callable[[], _T]) -> _T:
        return self._retryer.do_retry_simple(
            operation, self._account_auth_cache, callable_, self._retry_policy_supplier()
        )

    # Account

    def get_account_authorization(self) -> AccountAuthorization:
        return self._retry("b2_authorize_account", self._account_auth_cache.get)

    def invalidate_account_authorization(self) -> None:
        self._account_auth_cache.clear()

    def get_account_id(self) -> str:
        return self._retry("b2_authorize_account", self._account_auth_cache.get_account_id)

    def get_part_sizes(self) -> PartSizes:
        return PartSizes.from_authorization(self.get_account_authorization())

    # Upload leases

    def get_upload_url(self, bucket_id: str) -> UploadUrl:
        return self._retry(
            "b2_get_upload_url",
            lambda: self._webifier.get_upload_url(self._account_auth_cache.get(), bucket_id),
        )

    def get_upload_part_url(self, file_id: str) -> UploadPartUrl:
        return self._retry(
            "b2_get_upload_part_url",
            lambda: self._webifier.get_upload_part_url(self._account_auth_cache.get(), file_id),
        )

    # Uploads

    def upload_small_file(self, request: UploadFileRequest) -> FileVersion:
        def attempt(is_retry: bool) -> FileVersion:
            lease = self._upload_url_cache.get(request.bucket_id, is_retry)
            file_version = self._webifier.upload_file(lease, request)
            self._upload_url_cache.unget(lease)
            return file_version

        return self._retryer.do_retry(
            "b2_upload_file", self._account_auth_cache, attempt, self._retry_policy_supplier()
        )

    def _content_length(self, source: ContentSource) -> int:
        try:
            return source.get_content_length()
        except OSError as exc:
            raise B2LocalError("read_failed", f"failed to get content length: {exc}") from exc

    def _large_file_uploader(
        self, request: UploadFileRequest, executor: Executor
    ) -> LargeFileUploader:
        content_length = self._content_length(request.content_source)
        part_sizes = self.get_part_sizes()
        if not part_sizes.is_big_enough_to_be_large_file(content_length):
            raise ValueError(
                f"file is too small to be a large file: content_length={content_length}, "
                f"minimum_part_size={part_sizes.minimum_part_size}"
            )
        return LargeFileUploader(
            self._retryer,
            self._webifier,
            self._account_auth_cache,
            self._retry_policy_supplier,
            executor,
            part_sizes,
            request,
            content_length,
        )

    def upload_large_file(self, request: UploadFileRequest, executor: Executor) -> FileVersion:
        return self._large_file_uploader(request, executor).upload_large_file()

    def finish_uploading_large_file(
        self, file_version: FileVersion, request: UploadFileRequest, executor: Executor
    ) -> FileVersion:
        """Resume a large file some of whose parts an earlier attempt uploaded."""
        uploader = self._large_file_uploader(request, executor)
        already_uploaded = list(self.parts(file_version.file_id))
        return uploader.finish_uploading_large_file(file_version, already_uploaded)

    def upload_file(self, request: UploadFileRequest, executor: Executor) -> FileVersion:
        """Upload as a small file or a large one, whichever suits the content length."""
        content_length = self._content_length(request.content_source)
        part_sizes = self.get_part_sizes()
        if part_sizes.must_be_large_file(content_length) or part_sizes.should_treat_as_large_file(
            content_length
        ):
            return self.upload_large_file(request, executor)
        return self.upload_small_file(request)

    def _large_file_storer(
        self,
        file_version: FileVersion,
        part_storers: Iterable[PartStorer],
        executor: Executor,
    ) -> LargeFileStorer:
        return LargeFileStorer(
            StoreLargeFileRequest.from_file_version(file_version),
            part_storers,
            self._account_auth_cache,
            self._webifier,
            self._retryer,
            self._retry_policy_supplier,
            executor,
        )

    def store_large_file(
        self,
        file_version: FileVersion,
        part_storers: Iterable[PartStorer],
        listener: UploadListener | None,
        executor: Executor,
    ) -> FileVersion:
        return self._large_file_storer(file_version, part_storers, executor).store_file(listener)

    def store_large_file_async(
        self,
        file_version: FileVersion,
        part_storers: Iterable[PartStorer],
        listener: UploadListener | None,
        executor: Executor,
    ) -> Future[FileVersion]:
        storer = self._large_file_storer(file_version, part_storers, executor)
        return storer.store_file_async(listener)

    def _local_content_storer(
        self,
        file_version: FileVersion,
        content_source: ContentSource,
        executor: Executor,
    ) -> LargeFileStorer:
        return LargeFileStorer.for_local_content(
            StoreLargeFileRequest.from_file_version(file_version),
            content_source,
            self.get_part_sizes(),
            self._account_auth_cache,
            self._webifier,
            self._retryer,
            self._retry_policy_supplier,
            executor,
        )

    def store_large_file_from_local_content(
        self,
        file_version: FileVersion,
        content_source: ContentSource,
        listener: UploadListener | None,
        executor: Executor,
    ) -> FileVersion:
        storer = self._local_content_storer(file_version, content_source, executor)
        return storer.store_file(listener)

    def store_large_file_from_local_content_async(
        self,
        file_version: FileVersion,
        content_source: ContentSource,
        listener: UploadListener | None,
        executor: Executor,
    ) -> Future[FileVersion]:
        storer = self._local_content_storer(file_version, content_source, executor)
        return storer.store_file_async(listener)

    def copy_small_file(
        self,
        source_file_id: str,
        file_name: str,
        *,
        destination_bucket_id: str | None = None,
        byte_range: ByteRange | None = None,
        content_type: str | None = None,
        file_info: dict[str, str] | None = None,
    ) -> FileVersion:
        return self._retry(
            "b2_copy_file",
            lambda: self._webifier.copy_file(
                self._account_auth_cache.get(),
                source_file_id,
                file_name,
                destination_bucket_id=destination_bucket_id,
                byte_range=byte_range,
                content_type=content_type,
                file_info=file_info,
            ),
        )

    # Large-file building blocks

    def start_large_file(
        self,
        bucket_id: str,
        file_name: str,
        content_type: str,
        file_info: dict[str, str] | None = None,
    ) -> FileVersion:
        return self._retry(
            "b2_start_large_file",
            lambda: self._webifier.start_large_file(
                self._account_auth_cache.get(), bucket_id, file_name, content_type, file_info
            ),
        )

    def finish_large_file(self, file_id: str, part_sha1s: list[str]) -> FileVersion:
        return self._retry(
            "b2_finish_large_file",
            lambda: self._webifier.finish_large_file(
                self._account_auth_cache.get(), file_id, part_sha1s
            ),
        )

    def cancel_large_file(self, file_id: str) -> FileIdAndName:
        return self._retry(
            "b2_cancel_large_file",
            lambda: self._webifier.cancel_large_file(self._account_auth_cache.get(), file_id),
        )

    def parts(self, file_id: str, *, batch_size: int | None = None) -> Iterator[Part]:
        """Iterate over the uploaded parts of an unfinished large file, page by page."""
        start_part_number: int | None = None
        while True:
            page_start = start_part_number
            response = self._retry(
                "b2_list_parts",
                lambda: self._webifier.list_parts(
                    self._account_auth_cache.get(), file_id, page_start, batch_size
                ),
            )
            yield from response.parts
            if response.next_part_number is None:
                return
            start_part_number = response.next_part_number

    # Files

    def get_file_info(self, file_id: str) -> FileVersion:
        return self._retry(
            "b2_get_file_info",
            lambda: self._webifier.get_file_info(self._account_auth_cache.get(), file_id),
        )

    def get_file_info_by_name(self, bucket_name: str, file_name: str) -> FileVersion:
        return self._retry(
            "b2_get_file_info_by_name",
            lambda: self._webifier.get_file_info_by_name(
                self._account_auth_cache.get(), bucket_name, file_name
            ),
        )

    def download_by_id(
        self,
        file_id: str,
        handler: Callable[[httpx.Headers, bytes], _T],
        byte_range: ByteRange | None = None,
    ) -> _T:
        return self._retry(
            "b2_download_file_by_id",
            lambda: self._webifier.download_by_id(
                self._account_auth_cache.get(), file_id, handler, byte_range
            ),
        )

    def delete_file_version(self, file_name: str, file_id: str) -> FileIdAndName:
        return self._retry(
            "b2_delete_file_version",
            lambda: self._webifier.delete_file_version(
                self._account_auth_cache.get(), file_name, file_id
            ),
        )

    def close(self) -> None:
        self._retryer.sleeper.interrupt()
        self._transport.close()

    def __enter__(self) -> StorageClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = ["StorageClient"]

"""Large-file orchestration.

A LargeFileStorer takes one PartStorer per part, runs them on a
caller-owned executor, waits for them in part order and then finishes the
file with the parts' SHA1s.  A LargeFileUploader plans the parts for local
content, optionally reusing parts an earlier attempt already uploaded, and
hands them to a LargeFileStorer.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import CancelledError, Executor, Future

from .auth import AccountAuthorizationCache
from .content_sources import (
    CancellableContentSource,
    ContentSource,
    ContentSourceWithByteProgressListener,
    PartOfContentSource,
)
from .errors import B2CannotComputeError, B2Error, B2LocalError
from .part_sizes import PartSizes
from .part_storers import AlreadyStoredPartStorer, PartStorer, UploadingPartStorer
from .progress import (
    DEFAULT_MIN_INTERVAL_SECS,
    ByteProgressFilteringListener,
    UploadListener,
    UploadProgressAdapter,
    noop_listener,
)
from .retry import Retryer, RetryPolicy
from .types import (
    B2_AUTO,
    LARGE_FILE_SHA1,
    UNKNOWN_PART_SIZE_PLACEHOLDER,
    UNKNOWN_PART_START_BYTE,
    ByteRange,
    FileVersion,
    Part,
    PartSpec,
    StoreLargeFileRequest,
    UploadFileRequest,
    UploadProgress,
    UploadState,
)
from .url_cache import UploadPartUrlCache
from .utils import debug
from .webifier import StorageClientWebifier


class CancellationToken:
    """A flag shared by every task of one large-file operation."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise B2LocalError("cancelled", "Request was cancelled by caller")


def create_ranged_content_source(source: ContentSource, start: int, length: int) -> ContentSource:
    ranged = source.create_content_source_with_range_or_none(start, length)
    if ranged is not None:
        return ranged
    return PartOfContentSource(source, start, length)


def _validate_and_sort_part_storers(
    part_storers: Iterable[PartStorer], allow_gaps: bool
) -> list[PartStorer]:
    storers = sorted(part_storers, key=lambda storer: storer.part_number)
    expected_part_number = 0
    for storer in storers:
        expected_part_number += 1
        part_number = storer.part_number
        if part_number < 1:
            raise ValueError(f"invalid part number: {part_number}")
        if part_number < expected_part_number:
            raise ValueError(f"part number {part_number} has multiple part storers")
        if part_number > expected_part_number:
            if not allow_gaps:
                raise ValueError(f"part number {expected_part_number} has no part storers")
            expected_part_number = part_number
    return storers


def _compute_start_bytes(part_storers: Sequence[PartStorer]) -> list[int]:
    # Once one part's size is unknown, every later start is unknown too.
    start_bytes: list[int] = []
    cursor = 0
    try:
        for storer in part_storers:
            start_bytes.append(cursor)
            cursor += storer.get_part_size_or_raise()
    except B2CannotComputeError:
        start_bytes.extend([UNKNOWN_PART_START_BYTE] * (len(part_storers) - len(start_bytes)))
    return start_bytes


def _collect_parts(part_futures: Sequence[Future[Part]]) -> list[Part]:
    parts = []
    for future in part_futures:
        try:
            parts.append(future.result())
        except B2Error:
            raise
        except CancelledError as exc:
            raise B2LocalError("cancelled", "part upload was cancelled") from exc
        except Exception as exc:
            message = f"exception while trying to upload parts: {exc!r}"
            raise B2LocalError("trouble", message) from exc
    return parts


class LargeFileStorer:
    def __init__(
        self,
        request: StoreLargeFileRequest,
        part_storers: Iterable[PartStorer],
        account_auth_cache: AccountAuthorizationCache,
        webifier: StorageClientWebifier,
        retryer: Retryer,
        retry_policy_supplier: Callable[[], RetryPolicy],
        executor: Executor,
        *,
        allow_gaps: bool = False,
        progress_interval_secs: float = DEFAULT_MIN_INTERVAL_SECS,
    ) -> None:
        self._large_file_id = request.file_id
        self._part_storers = _validate_and_sort_part_storers(part_storers, allow_gaps)
        self._start_bytes = _compute_start_bytes(self._part_storers)
        self._indexes_by_part_number = {
            storer.part_number: index for index, storer in enumerate(self._part_storers)
        }

        self._account_auth_cache = account_auth_cache
        self._upload_part_url_cache = UploadPartUrlCache(
            webifier, account_auth_cache, self._large_file_id
        )
        self._webifier = webifier
        self._retryer = retryer
        self._retry_policy_supplier = retry_policy_supplier
        self._executor = executor
        self._progress_interval_secs = progress_interval_secs
        self._cancellation_token = CancellationToken()

    @classmethod
    def for_local_content(
        cls,
        request: StoreLargeFileRequest,
        content_source: ContentSource,
        part_sizes: PartSizes,
        account_auth_cache: AccountAuthorizationCache,
        webifier: StorageClientWebifier,
        retryer: Retryer,
        retry_policy_supplier: Callable[[], RetryPolicy],
        executor: Executor,
        *,
        allow_gaps: bool = False,
    ) -> LargeFileStorer:
        """Plan parts for ``content_source`` and upload each from a ranged view of it."""
        try:
            content_length = content_source.get_content_length()
        except OSError as exc:
            raise B2LocalError("trouble", f"exception working with content source: {exc}") from exc
        part_storers = [
            UploadingPartStorer(
                spec.part_number,
                create_ranged_content_source(content_source, spec.start, spec.length),
            )
            for spec in part_sizes.pick_parts(content_length)
        ]
        return cls(
            request,
            part_storers,
            account_auth_cache,
            webifier,
            retryer,
            retry_policy_supplier,
            executor,
            allow_gaps=allow_gaps,
        )

    @property
    def large_file_id(self) -> str:
        return self._large_file_id

    @property
    def part_storers(self) -> list[PartStorer]:
        return list(self._part_storers)

    @property
    def cancellation_token(self) -> CancellationToken:
        return self._cancellation_token

    def _get_index_for_part_number(self, part_number: int) -> int:
        try:
            return self._indexes_by_part_number[part_number]
        except KeyError:
            raise ValueError(f"invalid part number: {part_number}") from None

    def get_start_byte_or_unknown(self, part_number: int) -> int:
        return self._start_bytes[self._get_index_for_part_number(part_number)]

    def cancel(self) -> None:
        debug(f"cancelling large file {self._large_file_id}")
        self._cancellation_token.cancel()

    def update_progress(
        self,
        listener: UploadListener,
        part_number: int,
        part_length: int,
        bytes_so_far: int,
        state: UploadState,
    ) -> None:
        listener.progress(
            UploadProgress(
                part_index=self._get_index_for_part_number(part_number),
                part_count=len(self._part_storers),
                start_byte=self.get_start_byte_or_unknown(part_number),
                length=part_length,
                bytes_so_far=bytes_so_far,
                state=state,
            )
        )

    def _submit_parts(self, listener: UploadListener) -> list[Future[Part]]:
        for storer in self._part_storers:
            try:
                length = storer.get_part_size_or_raise()
            except B2CannotComputeError:
                length = UNKNOWN_PART_SIZE_PLACEHOLDER
            self.update_progress(
                listener, storer.part_number, length, 0, UploadState.WAITING_TO_START
            )

        futures: list[Future[Part]] = []
        try:
            for storer in self._part_storers:
                futures.append(self._executor.submit(storer.store_part, self, listener))
        except RuntimeError as exc:
            # The executor has been shut down.
            self._cancel_futures(futures)
            raise B2LocalError("trouble", f"executor rejected part task: {exc}") from exc
        return futures

    def _cancel_futures(self, futures: Iterable[Future[Part]]) -> None:
        for future in futures:
            future.cancel()

    def store_parts(self, listener: UploadListener | None = None) -> list[Part]:
        """Store every part and return them in part-number order.

        The first failure, in part order, is raised once seen; parts that
        haven't started are cancelled.
        """
        listener = listener or noop_listener()
        self._cancellation_token.raise_if_cancelled()

        futures = self._submit_parts(listener)
        try:
            return _collect_parts(futures)
        except KeyboardInterrupt as exc:
            self._cancellation_token.cancel()
            raise B2LocalError("interrupted", "interrupted while waiting for parts") from exc
        finally:
            self._cancel_futures(futures)

    def _finish(self, parts: Sequence[Part]) -> FileVersion:
        self._cancellation_token.raise_if_cancelled()
        part_sha1s = [part.content_sha1 for part in parts]

        def finish() -> FileVersion:
            self._cancellation_token.raise_if_cancelled()
            return self._webifier.finish_large_file(
                self._account_auth_cache.get(), self._large_file_id, part_sha1s
            )

        return self._retryer.do_retry_simple(
            "b2_finish_large_file",
            self._account_auth_cache,
            finish,
            self._retry_policy_supplier(),
        )

    def store_file(self, listener: UploadListener | None = None) -> FileVersion:
        return self._finish(self.store_parts(listener))

    def store_file_async(self, listener: UploadListener | None = None) -> Future[FileVersion]:
        """Like store_file, but returns at once.

        Nothing blocks an executor thread waiting on another task: the
        finish call is submitted only after the last part completes.
        Cancelling the returned future cancels the whole operation.
        """
        listener = listener or noop_listener()
        result: Future[FileVersion] = Future()
        part_futures = self._submit_parts(listener)

        def on_result_done(future: Future[FileVersion]) -> None:
            if future.cancelled():
                self.cancel()
                self._cancel_futures(part_futures)

        result.add_done_callback(on_result_done)

        def finish_step() -> None:
            if not result.set_running_or_notify_cancel():
                return
            try:
                result.set_result(self._finish(_collect_parts(part_futures)))
            except Exception as exc:
                result.set_exception(exc)
            finally:
                self._cancel_futures(part_futures)

        def schedule_finish() -> None:
            try:
                self._executor.submit(finish_step)
            except RuntimeError as exc:
                if result.set_running_or_notify_cancel():
                    result.set_exception(
                        B2LocalError("trouble", f"executor rejected finish task: {exc}")
                    )

        remaining = [len(part_futures)]
        remaining_lock = threading.Lock()

        def on_part_done(_: Future[Part]) -> None:
            with remaining_lock:
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                schedule_finish()

        if not part_futures:
            schedule_finish()
        for future in part_futures:
            future.add_done_callback(on_part_done)
        return result

    def upload_part(
        self,
        part_number: int,
        content_source: ContentSource,
        listener: UploadListener,
    ) -> Part:
        """Upload one part, retrying with a fresh lease after failures."""
        self._cancellation_token.raise_if_cancelled()
        try:
            length = content_source.get_content_length()
        except OSError as exc:
            raise B2LocalError("read_failed", f"failed to get part length: {exc}") from exc

        byte_listener = ByteProgressFilteringListener(
            UploadProgressAdapter(
                listener,
                self._get_index_for_part_number(part_number),
                len(self._part_storers),
                self.get_start_byte_or_unknown(part_number),
                length,
            ),
            self._progress_interval_secs,
        )
        source = ContentSourceWithByteProgressListener(
            CancellableContentSource(content_source, self._cancellation_token), byte_listener
        )

        def attempt(is_retry: bool) -> Part:
            self._cancellation_token.raise_if_cancelled()
            lease = self._upload_part_url_cache.get(is_retry)
            self.update_progress(listener, part_number, length, 0, UploadState.STARTING)
            part = self._webifier.upload_part(lease, part_number, source)
            self._upload_part_url_cache.unget(lease)
            self.update_progress(
                listener,
                part_number,
                part.content_length,
                part.content_length,
                UploadState.SUCCEEDED,
            )
            return part

        try:
            return self._retryer.do_retry(
                "b2_upload_part",
                self._account_auth_cache,
                attempt,
                self._retry_policy_supplier(),
            )
        except B2Error:
            self.update_progress(listener, part_number, length, 0, UploadState.FAILED)
            raise

    def copy_part(
        self,
        part_number: int,
        source_file_id: str,
        byte_range: ByteRange | None,
        listener: UploadListener,
    ) -> Part:
        self._cancellation_token.raise_if_cancelled()

        def attempt() -> Part:
            self._cancellation_token.raise_if_cancelled()
            self.update_progress(
                listener, part_number, UNKNOWN_PART_SIZE_PLACEHOLDER, 0, UploadState.STARTING
            )
            part = self._webifier.copy_part(
                self._account_auth_cache.get(),
                self._large_file_id,
                part_number,
                source_file_id,
                byte_range,
            )
            self.update_progress(
                listener,
                part_number,
                part.content_length,
                part.content_length,
                UploadState.SUCCEEDED,
            )
            return part

        try:
            return self._retryer.do_retry_simple(
                "b2_copy_part",
                self._account_auth_cache,
                attempt,
                self._retry_policy_supplier(),
            )
        except B2Error:
            self.update_progress(
                listener, part_number, UNKNOWN_PART_SIZE_PLACEHOLDER, 0, UploadState.FAILED
            )
            raise


def _get_sha1_from_request(request: UploadFileRequest) -> str | None:
    try:
        return request.content_source.get_sha1_or_none()
    except OSError as exc:
        raise B2LocalError("trouble", f"failed to get large file's sha1: {exc}") from exc


def _raise_if_mismatch(name: str, request_value: object, file_version_value: object) -> None:
    if request_value != file_version_value:
        raise B2LocalError(
            "mismatch",
            f"contentSource has {name} '{request_value}', "
            f"but largeFileVersion has '{file_version_value}'",
        )


def raise_if_large_file_version_does_not_match_request(
    file_version: FileVersion, request: UploadFileRequest
) -> None:
    """Refuse to resume ``file_version`` with content that doesn't look like what started it.

    The content length can't be checked: B2 doesn't set it on a large file
    until it is finished.
    """
    _raise_if_mismatch("fileName", request.file_name, file_version.file_name)
    _raise_if_mismatch(
        "sha1", _get_sha1_from_request(request), file_version.large_file_sha1_or_none
    )
    if request.content_type != B2_AUTO:
        _raise_if_mismatch("contentType", request.content_type, file_version.content_type)

    # The client adds large_file_sha1 itself, and it was checked above.
    file_info = {k: v for k, v in file_version.file_info.items() if k != LARGE_FILE_SHA1}
    _raise_if_mismatch(
        "fileInfo", dict(sorted(request.file_info.items())), dict(sorted(file_info.items()))
    )


def _similar_enough(spec: PartSpec, part: Part) -> bool:
    # Start offsets aren't available for uploaded parts, so number and length have to do.
    return spec.part_number == part.part_number and spec.length == part.content_length


def match_already_uploaded_parts(
    part_specs: Sequence[PartSpec], already_uploaded: Iterable[Part]
) -> dict[int, Part]:
    """Map part numbers in ``part_specs`` to reusable parts from an earlier attempt."""
    uploaded = sorted(already_uploaded, key=lambda part: part.part_number)
    matched: dict[int, Part] = {}
    spec_index = 0
    part_index = 0
    while spec_index < len(part_specs) and part_index < len(uploaded):
        spec = part_specs[spec_index]
        part = uploaded[part_index]
        if _similar_enough(spec, part):
            matched[spec.part_number] = part
            part_index += 1
        elif part.part_number < spec.part_number:
            # Nothing left in the plan can match this one.
            part_index += 1
            continue
        spec_index += 1
    return matched


class LargeFileUploader:
    def __init__(
        self,
        retryer: Retryer,
        webifier: StorageClientWebifier,
        account_auth_cache: AccountAuthorizationCache,
        retry_policy_supplier: Callable[[], RetryPolicy],
        executor: Executor,
        part_sizes: PartSizes,
        request: UploadFileRequest,
        content_length: int,
    ) -> None:
        self._retryer = retryer
        self._webifier = webifier
        self._account_auth_cache = account_auth_cache
        self._retry_policy_supplier = retry_policy_supplier
        self._executor = executor
        self._part_sizes = part_sizes
        self._request = request
        self._content_length = content_length

    def upload_large_file(self) -> FileVersion:
        part_specs = self._part_sizes.pick_parts(self._content_length)

        file_info = dict(self._request.file_info)
        sha1 = _get_sha1_from_request(self._request)
        if sha1 is not None:
            file_info[LARGE_FILE_SHA1] = sha1

        large_file_version = self._retryer.do_retry_simple(
            "b2_start_large_file",
            self._account_auth_cache,
            lambda: self._webifier.start_large_file(
                self._account_auth_cache.get(),
                self._request.bucket_id,
                self._request.file_name,
                self._request.content_type,
                file_info,
            ),
            self._retry_policy_supplier(),
        )
        return self._upload_parts_and_finish(large_file_version, part_specs, {})

    def finish_uploading_large_file(
        self, file_version: FileVersion, already_uploaded_parts: Iterable[Part]
    ) -> FileVersion:
        raise_if_large_file_version_does_not_match_request(file_version, self._request)

        # If the recommended part size changed since the first attempt, nothing
        # will match and every part gets uploaded again.
        part_specs = self._part_sizes.pick_parts(self._content_length)
        matched = match_already_uploaded_parts(part_specs, already_uploaded_parts)
        debug(f"resuming {file_version.file_id}: reusing {len(matched)} of {len(part_specs)} parts")
        return self._upload_parts_and_finish(file_version, part_specs, matched)

    def _upload_parts_and_finish(
        self,
        large_file_version: FileVersion,
        part_specs: Sequence[PartSpec],
        already_uploaded: dict[int, Part],
    ) -> FileVersion:
        source = self._request.content_source
        part_storers: list[PartStorer] = []
        for spec in part_specs:
            part = already_uploaded.get(spec.part_number)
            if part is not None:
                part_storers.append(AlreadyStoredPartStorer(part))
            else:
                part_storers.append(
                    UploadingPartStorer(
                        spec.part_number,
                        create_ranged_content_source(source, spec.start, spec.length),
                    )
                )

        storer = LargeFileStorer(
            StoreLargeFileRequest.from_file_version(large_file_version),
            part_storers,
            self._account_auth_cache,
            self._webifier,
            self._retryer,
            self._retry_policy_supplier,
            self._executor,
        )
        return storer.store_file(self._request.listener)


__all__ = [
    "CancellationToken",
    "LargeFileStorer",
    "LargeFileUploader",
    "create_ranged_content_source",
    "match_already_uploaded_parts",
    "raise_if_large_file_version_does_not_match_request",
]

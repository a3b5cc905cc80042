"""Upload progress reporting.

Listeners are called from worker threads, possibly several at once, and the
events for different parts arrive in no particular order.  Listener
implementations must be thread-safe.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

from .types import PartSpec, UploadProgress, UploadState

DEFAULT_MIN_INTERVAL_SECS = 5.0


class UploadListener(Protocol):
    def progress(self, progress: UploadProgress) -> None: ...


class ByteProgressListener(Protocol):
    def progress(self, bytes_so_far: int) -> None: ...

    def hit_exception(self, exc: BaseException, bytes_so_far: int) -> None: ...

    def reached_eof(self, bytes_so_far: int) -> None: ...


class _NoopListener:
    def progress(self, progress: UploadProgress) -> None:
        pass


_NOOP_LISTENER = _NoopListener()


def noop_listener() -> UploadListener:
    return _NOOP_LISTENER


class CallbackListener:
    """Adapts a plain ``on_progress(UploadProgress)`` callable to UploadListener."""

    def __init__(self, callback: Callable[[UploadProgress], None]) -> None:
        self._callback = callback

    def progress(self, progress: UploadProgress) -> None:
        self._callback(progress)


class UploadProgressAdapter:
    """Turns byte-level updates for one part into UploadProgress events."""

    def __init__(
        self,
        listener: UploadListener,
        part_index: int,
        part_count: int,
        start_byte: int,
        length: int,
    ) -> None:
        self._listener = listener
        self._part_index = part_index
        self._part_count = part_count
        self._start_byte = start_byte
        self._length = length

    def _notify(self, length: int, bytes_so_far: int, state: UploadState) -> None:
        self._listener.progress(
            UploadProgress(
                part_index=self._part_index,
                part_count=self._part_count,
                start_byte=self._start_byte,
                length=length,
                bytes_so_far=bytes_so_far,
                state=state,
            )
        )

    def progress(self, bytes_so_far: int) -> None:
        self._notify(self._length, bytes_so_far, UploadState.UPLOADING)

    def hit_exception(self, exc: BaseException, bytes_so_far: int) -> None:
        self._notify(self._length, bytes_so_far, UploadState.FAILED)

    def reached_eof(self, bytes_so_far: int) -> None:
        self._notify(bytes_so_far, bytes_so_far, UploadState.UPLOADING)


class ByteProgressFilteringListener:
    """Forwards at most one ``progress`` call per interval.

    The first call is always forwarded.  ``hit_exception`` and
    ``reached_eof`` are always forwarded.
    """

    def __init__(
        self,
        listener: ByteProgressListener,
        min_interval_secs: float = DEFAULT_MIN_INTERVAL_SECS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._listener = listener
        self._min_interval_secs = min_interval_secs
        self._clock = clock
        self._lock = threading.Lock()
        self._next_send_at: float | None = None

    def progress(self, bytes_so_far: int) -> None:
        with self._lock:
            now = self._clock()
            if self._next_send_at is not None and now < self._next_send_at:
                return
            self._next_send_at = now + self._min_interval_secs
        self._listener.progress(bytes_so_far)

    def hit_exception(self, exc: BaseException, bytes_so_far: int) -> None:
        self._listener.hit_exception(exc, bytes_so_far)

    def reached_eof(self, bytes_so_far: int) -> None:
        self._listener.reached_eof(bytes_so_far)


def upload_progress_for_part(
    part_spec: PartSpec,
    part_count: int,
    bytes_so_far: int,
    state: UploadState,
) -> UploadProgress:
    return UploadProgress(
        part_index=part_spec.part_number - 1,
        part_count=part_count,
        start_byte=part_spec.start,
        length=part_spec.length,
        bytes_so_far=bytes_so_far,
        state=state,
    )


def upload_progress_for_part_succeeded(part_spec: PartSpec, part_count: int) -> UploadProgress:
    return upload_progress_for_part(part_spec, part_count, part_spec.length, UploadState.SUCCEEDED)


def upload_progress_for_part_failed(part_spec: PartSpec, part_count: int) -> UploadProgress:
    return upload_progress_for_part(part_spec, part_count, 0, UploadState.FAILED)


# A small file is reported as a single part covering the whole content.


def upload_progress_for_small_file(
    length: int, bytes_so_far: int, state: UploadState
) -> UploadProgress:
    return upload_progress_for_part(PartSpec(1, 0, length), 1, bytes_so_far, state)


def upload_progress_for_small_file_succeeded(length: int) -> UploadProgress:
    return upload_progress_for_part_succeeded(PartSpec(1, 0, length), 1)


def upload_progress_for_small_file_failed(length: int) -> UploadProgress:
    return upload_progress_for_part_failed(PartSpec(1, 0, length), 1)


__all__ = [
    "DEFAULT_MIN_INTERVAL_SECS",
    "UploadListener",
    "ByteProgressListener",
    "noop_listener",
    "CallbackListener",
    "UploadProgressAdapter",
    "ByteProgressFilteringListener",
    "upload_progress_for_part",
    "upload_progress_for_part_succeeded",
    "upload_progress_for_part_failed",
    "upload_progress_for_small_file",
    "upload_progress_for_small_file_succeeded",
    "upload_progress_for_small_file_failed",
]

"""Content sources: where the bytes of an upload come from.

A content source can be asked for its length and (maybe) its SHA1 without
reading it, and can open a fresh stream as many times as needed, which is what
lets a failed part upload be retried from the beginning.
"""

from __future__ import annotations

import abc
import hashlib
import io
import os
from collections.abc import Iterator
from typing import TYPE_CHECKING, BinaryIO

from .errors import B2LocalError

if TYPE_CHECKING:
    from .large_file import CancellationToken
    from .progress import ByteProgressListener

HEX_DIGITS_AT_END = "hex_digits_at_end"
_SHA1_HEX_LENGTH = 40
_SKIP_CHUNK_SIZE = 64 * 1024


class ContentSource(abc.ABC):
    @abc.abstractmethod
    def get_content_length(self) -> int: ...

    def get_sha1_or_none(self) -> str | None:
        return None

    def get_src_last_modified_millis_or_none(self) -> int | None:
        return None

    @abc.abstractmethod
    def create_input_stream(self) -> BinaryIO:
        """Return a new stream positioned at the first byte of the content."""
        ...

    def create_content_source_with_range_or_none(
        self, start: int, length: int
    ) -> ContentSource | None:
        """Return a source for just [start, start+length), or None if unsupported."""
        return None


class BytesContentSource(ContentSource):
    def __init__(
        self,
        data: bytes,
        *,
        sha1: str | None = None,
        src_last_modified_millis: int | None = None,
    ) -> None:
        self._data = bytes(data)
        self._sha1 = sha1
        self._src_last_modified_millis = src_last_modified_millis

    def get_content_length(self) -> int:
        return len(self._data)

    def get_sha1_or_none(self) -> str | None:
        return self._sha1

    def get_src_last_modified_millis_or_none(self) -> int | None:
        return self._src_last_modified_millis

    def create_input_stream(self) -> BinaryIO:
        return io.BytesIO(self._data)

    def create_content_source_with_range_or_none(
        self, start: int, length: int
    ) -> ContentSource | None:
        return BytesContentSource(self._data[start : start + length])

    def __repr__(self) -> str:
        return f"BytesContentSource(length={len(self._data)})"


class FileContentSource(ContentSource):
    def __init__(self, path: str | os.PathLike[str], *, sha1: str | None = None) -> None:
        self._path = os.fspath(path)
        self._sha1 = sha1

    def get_content_length(self) -> int:
        try:
            return os.path.getsize(self._path)
        except OSError as exc:
            message = f"failed to get length of {self._path}: {exc}"
            raise B2LocalError("read_failed", message) from exc

    def get_sha1_or_none(self) -> str | None:
        return self._sha1

    def get_src_last_modified_millis_or_none(self) -> int | None:
        try:
            return int(os.path.getmtime(self._path) * 1000)
        except OSError:
            return None

    def create_input_stream(self) -> BinaryIO:
        try:
            return open(self._path, "rb")
        except OSError as exc:
            raise B2LocalError("read_failed", f"failed to open {self._path}: {exc}") from exc

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FileContentSource) and other._path == self._path

    def __hash__(self) -> int:
        return hash(self._path)

    def __repr__(self) -> str:
        return f"FileContentSource({self._path!r})"


class _LimitedStream(io.RawIOBase):
    """Reads at most ``limit`` bytes from ``source`` after skipping ``skip`` bytes."""

    def __init__(self, source: BinaryIO, skip: int, limit: int) -> None:
        self._source = source
        self._remaining = limit
        self._skip(skip)

    def _skip(self, n: int) -> None:
        if n <= 0:
            return
        if self._source.seekable():
            self._source.seek(n, io.SEEK_CUR)
            return
        while n > 0:
            chunk = self._source.read(min(n, _SKIP_CHUNK_SIZE))
            if not chunk:
                raise B2LocalError(
                    "read_failed", "content source ended while skipping to part start"
                )
            n -= len(chunk)

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._source.read(size)
        if not data and size > 0:
            raise B2LocalError(
                "read_failed", f"content source ended with {self._remaining} bytes still expected"
            )
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        try:
            self._source.close()
        finally:
            super().close()


class PartOfContentSource(ContentSource):
    """A ranged view built by skipping the leading bytes of a full stream."""

    def __init__(self, source: ContentSource, start: int, length: int) -> None:
        self._source = source
        self._start = start
        self._length = length

    def get_content_length(self) -> int:
        return self._length

    def create_input_stream(self) -> BinaryIO:
        return _LimitedStream(self._source.create_input_stream(), self._start, self._length)  # type: ignore[return-value]

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, PartOfContentSource)
            and other._source == self._source
            and other._start == self._start
            and other._length == self._length
        )

    def __hash__(self) -> int:
        return hash((self._source, self._start, self._length))


class _CancellableStream(io.RawIOBase):
    def __init__(self, source: BinaryIO, cancellation_token: CancellationToken) -> None:
        self._source = source
        self._token = cancellation_token

    def _raise_if_cancelled(self) -> None:
        if self._token.is_cancelled():
            raise B2LocalError("cancelled", "Request was cancelled by caller")

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self._raise_if_cancelled()
        return self._source.read(size)

    def close(self) -> None:
        try:
            self._source.close()
        finally:
            super().close()


class CancellableContentSource(ContentSource):
    """Streams from this source fail fast on the next read once the token is set."""

    def __init__(self, source: ContentSource, cancellation_token: CancellationToken) -> None:
        self._source = source
        self._token = cancellation_token

    def get_content_length(self) -> int:
        return self._source.get_content_length()

    def get_sha1_or_none(self) -> str | None:
        return self._source.get_sha1_or_none()

    def get_src_last_modified_millis_or_none(self) -> int | None:
        return self._source.get_src_last_modified_millis_or_none()

    def create_input_stream(self) -> BinaryIO:
        return _CancellableStream(self._source.create_input_stream(), self._token)  # type: ignore[return-value]


class _ByteProgressStream(io.RawIOBase):
    def __init__(self, source: BinaryIO, listener: ByteProgressListener) -> None:
        self._source = source
        self._listener = listener
        self._bytes_so_far = 0
        self._eof_reported = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        try:
            data = self._source.read(size)
        except Exception as exc:
            self._listener.hit_exception(exc, self._bytes_so_far)
            raise
        if data:
            self._bytes_so_far += len(data)
            self._listener.progress(self._bytes_so_far)
        elif size != 0 and not self._eof_reported:
            self._eof_reported = True
            self._listener.reached_eof(self._bytes_so_far)
        return data

    def close(self) -> None:
        try:
            self._source.close()
        finally:
            super().close()


class ContentSourceWithByteProgressListener(ContentSource):
    def __init__(self, source: ContentSource, listener: ByteProgressListener) -> None:
        self._source = source
        self._listener = listener

    def get_content_length(self) -> int:
        return self._source.get_content_length()

    def get_sha1_or_none(self) -> str | None:
        return self._source.get_sha1_or_none()

    def get_src_last_modified_millis_or_none(self) -> int | None:
        return self._source.get_src_last_modified_millis_or_none()

    def create_input_stream(self) -> BinaryIO:
        return _ByteProgressStream(self._source.create_input_stream(), self._listener)  # type: ignore[return-value]


class _Sha1AppendingStream(io.RawIOBase):
    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._digest = hashlib.sha1()
        self._trailer: bytes | None = None

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self._trailer is None:
            data = self._source.read(size)
            if data:
                self._digest.update(data)
                return data
            self._trailer = self._digest.hexdigest().encode("ascii")
        if size is None or size < 0:
            size = len(self._trailer)
        data, self._trailer = self._trailer[:size], self._trailer[size:]
        return data

    def close(self) -> None:
        try:
            self._source.close()
        finally:
            super().close()


class ContentDetailsForUpload:
    """Length, SHA1 header and stream to send for one upload attempt.

    When the source doesn't know its SHA1, the digest is computed while
    streaming and appended as 40 hex digits, which B2 accepts when the header
    says ``hex_digits_at_end``.
    """

    def __init__(self, source: ContentSource) -> None:
        try:
            self._content_length = source.get_content_length()
            sha1 = source.get_sha1_or_none()
            stream = source.create_input_stream()
        except B2LocalError:
            raise
        except OSError as exc:
            raise B2LocalError("read_failed", f"failed to read content source: {exc}") from exc

        if sha1 is not None:
            self.content_sha1_header_value = sha1
            self.content_length = self._content_length
            self.stream: BinaryIO = stream
        else:
            self.content_sha1_header_value = HEX_DIGITS_AT_END
            self.content_length = self._content_length + _SHA1_HEX_LENGTH
            self.stream = _Sha1AppendingStream(stream)  # type: ignore[assignment]

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        while True:
            try:
                chunk = self.stream.read(chunk_size)
            except OSError as exc:
                raise B2LocalError("read_failed", f"failed to read content source: {exc}") from exc
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> ContentDetailsForUpload:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = [
    "HEX_DIGITS_AT_END",
    "ContentSource",
    "BytesContentSource",
    "FileContentSource",
    "PartOfContentSource",
    "CancellableContentSource",
    "ContentSourceWithByteProgressListener",
    "ContentDetailsForUpload",
]

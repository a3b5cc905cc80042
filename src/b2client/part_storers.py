"""One PartStorer per part of a large file says how that part gets stored."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import B2CannotComputeError, B2LocalError
from .types import ByteRange, Part, UploadState

if TYPE_CHECKING:
    from .content_sources import ContentSource
    from .large_file import LargeFileStorer
    from .progress import UploadListener


class PartStorer(abc.ABC):
    part_number: int

    @abc.abstractmethod
    def get_part_size_or_raise(self) -> int:
        """Return the part's size in bytes.

        Raises:
            B2CannotComputeError: If the size isn't known on the client.
        """
        ...

    @abc.abstractmethod
    def store_part(self, large_file_storer: LargeFileStorer, listener: UploadListener) -> Part:
        """Store the part and return what the server recorded for it."""
        ...


@dataclass(frozen=True)
class UploadingPartStorer(PartStorer):
    """Uploads the part's bytes from a content source."""

    part_number: int
    content_source: ContentSource

    def get_part_size_or_raise(self) -> int:
        try:
            return self.content_source.get_content_length()
        except (OSError, B2LocalError) as exc:
            raise B2CannotComputeError("error computing content source's length") from exc

    def store_part(self, large_file_storer: LargeFileStorer, listener: UploadListener) -> Part:
        return large_file_storer.upload_part(self.part_number, self.content_source, listener)


@dataclass(frozen=True)
class CopyingPartStorer(PartStorer):
    """Copies the part server-side from (a range of) an existing file."""

    part_number: int
    source_file_id: str
    byte_range: ByteRange | None = None

    def get_part_size_or_raise(self) -> int:
        raise B2CannotComputeError("cannot determine copied part size")

    def store_part(self, large_file_storer: LargeFileStorer, listener: UploadListener) -> Part:
        return large_file_storer.copy_part(
            self.part_number, self.source_file_id, self.byte_range, listener
        )


@dataclass(frozen=True)
class AlreadyStoredPartStorer(PartStorer):
    """A part the server already has, from an earlier attempt at the file."""

    part: Part

    @property
    def part_number(self) -> int:  # type: ignore[override]
        return self.part.part_number

    def get_part_size_or_raise(self) -> int:
        return self.part.content_length

    def store_part(self, large_file_storer: LargeFileStorer, listener: UploadListener) -> Part:
        large_file_storer.update_progress(
            listener,
            self.part.part_number,
            self.part.content_length,
            self.part.content_length,
            UploadState.SUCCEEDED,
        )
        return self.part


__all__ = [
    "PartStorer",
    "UploadingPartStorer",
    "CopyingPartStorer",
    "AlreadyStoredPartStorer",
]

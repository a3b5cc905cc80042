from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .content_sources import ContentSource
    from .progress import UploadListener


B2_AUTO = "b2/x-auto"
LARGE_FILE_SHA1 = "large_file_sha1"

UNKNOWN_PART_START_BYTE = -1
UNKNOWN_PART_SIZE_PLACEHOLDER = -1


# Response models mirror the JSON the B2 API returns.


class Allowed(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    capabilities: list[str] = Field(default_factory=list)
    bucket_id: str | None = Field(default=None, alias="bucketId")
    bucket_name: str | None = Field(default=None, alias="bucketName")
    name_prefix: str | None = Field(default=None, alias="namePrefix")


class AccountAuthorization(BaseModel):
    """The result of b2_authorize_account.  Replaced wholesale, never edited."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    account_id: str = Field(alias="accountId")
    authorization_token: str = Field(alias="authorizationToken")
    api_url: str = Field(alias="apiUrl")
    download_url: str = Field(alias="downloadUrl")
    recommended_part_size: int = Field(alias="recommendedPartSize")
    absolute_minimum_part_size: int = Field(alias="absoluteMinimumPartSize")
    allowed: Allowed | None = None


class UploadUrl(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    bucket_id: str = Field(alias="bucketId")
    upload_url: str = Field(alias="uploadUrl")
    authorization_token: str = Field(alias="authorizationToken")


class UploadPartUrl(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    upload_url: str = Field(alias="uploadUrl")
    authorization_token: str = Field(alias="authorizationToken")


class Part(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    part_number: int = Field(alias="partNumber")
    content_length: int = Field(alias="contentLength")
    content_sha1: str = Field(alias="contentSha1")
    upload_timestamp: int = Field(default=0, alias="uploadTimestamp")


class FileVersion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    file_name: str = Field(alias="fileName")
    content_length: int = Field(default=0, alias="contentLength")
    content_type: str | None = Field(default=None, alias="contentType")
    content_sha1: str | None = Field(default=None, alias="contentSha1")
    content_md5: str | None = Field(default=None, alias="contentMd5")
    file_info: dict[str, str] = Field(default_factory=dict, alias="fileInfo")
    action: str = "upload"
    upload_timestamp: int = Field(default=0, alias="uploadTimestamp")
    bucket_id: str | None = Field(default=None, alias="bucketId")
    account_id: str | None = Field(default=None, alias="accountId")

    @property
    def large_file_sha1_or_none(self) -> str | None:
        return self.file_info.get(LARGE_FILE_SHA1)


class FileIdAndName(BaseModel):
    """What b2_delete_file_version and b2_cancel_large_file return."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    file_name: str = Field(alias="fileName")
    bucket_id: str | None = Field(default=None, alias="bucketId")
    account_id: str | None = Field(default=None, alias="accountId")


class ListPartsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parts: list[Part] = Field(default_factory=list)
    next_part_number: int | None = Field(default=None, alias="nextPartNumber")


# Client-side values.


@dataclass(frozen=True, slots=True)
class PartSpec:
    part_number: int
    start: int
    length: int


@dataclass(frozen=True, slots=True)
class ByteRange:
    start: int
    end: int

    def __str__(self) -> str:
        return f"bytes={self.start}-{self.end}"


class UploadState(Enum):
    WAITING_TO_START = "waiting_to_start"
    STARTING = "starting"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class UploadProgress:
    """A snapshot of one part's progress.

    ``part_index`` is 0-based.  ``start_byte`` is UNKNOWN_PART_START_BYTE when
    an earlier part is a server-side copy, and ``length`` is
    UNKNOWN_PART_SIZE_PLACEHOLDER for a copy that hasn't finished yet.
    """

    part_index: int
    part_count: int
    start_byte: int
    length: int
    bytes_so_far: int
    state: UploadState


@dataclass(slots=True)
class UploadFileRequest:
    bucket_id: str
    file_name: str
    content_type: str
    content_source: ContentSource
    file_info: dict[str, str] = field(default_factory=dict)
    listener: UploadListener | None = None


@dataclass(frozen=True, slots=True)
class StoreLargeFileRequest:
    file_id: str

    @classmethod
    def from_file_version(cls, file_version: FileVersion) -> StoreLargeFileRequest:
        return cls(file_id=file_version.file_id)


__all__ = [
    "B2_AUTO",
    "LARGE_FILE_SHA1",
    "UNKNOWN_PART_START_BYTE",
    "UNKNOWN_PART_SIZE_PLACEHOLDER",
    "Allowed",
    "AccountAuthorization",
    "UploadUrl",
    "UploadPartUrl",
    "Part",
    "FileVersion",
    "FileIdAndName",
    "ListPartsResponse",
    "PartSpec",
    "ByteRange",
    "UploadState",
    "UploadProgress",
    "UploadFileRequest",
    "StoreLargeFileRequest",
]

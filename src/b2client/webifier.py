"""Typed calls onto the B2 web API.

Each method makes exactly one HTTP request and never retries; retrying is the
Retryer's job.  Unauthorized responses from b2_authorize_account are tagged
ACCOUNT_AUTHORIZATION, and those from the upload endpoints are tagged
UPLOADING, so the Retryer knows what to refresh.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from typing import Any, TypeVar
from urllib.parse import unquote

import httpx
from pydantic import BaseModel, ValidationError

from ._http import WebApiClient
from .content_sources import (
    ContentDetailsForUpload,
    ContentSource,
    ContentSourceWithByteProgressListener,
)
from .errors import B2Error, B2LocalError, RequestCategory
from .progress import (
    ByteProgressFilteringListener,
    UploadProgressAdapter,
    noop_listener,
    upload_progress_for_small_file,
    upload_progress_for_small_file_failed,
    upload_progress_for_small_file_succeeded,
)
from .types import (
    AccountAuthorization,
    ByteRange,
    FileIdAndName,
    FileVersion,
    ListPartsResponse,
    Part,
    UploadFileRequest,
    UploadPartUrl,
    UploadState,
    UploadUrl,
)
from .utils import (
    API_VERSION_PATH,
    make_api_url,
    percent_encode,
    validate_file_info_name,
)

_M = TypeVar("_M", bound=BaseModel)
_T = TypeVar("_T")

FILE_INFO_PREFIX = "X-Bz-Info-"
SRC_LAST_MODIFIED_MILLIS = "src_last_modified_millis"


def _parse(model: type[_M], data: dict[str, Any]) -> _M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        message = f"unexpected {model.__name__} response: {exc}"
        raise B2LocalError("parsing_failed", message) from exc


def _file_version_from_headers(headers: httpx.Headers) -> FileVersion:
    prefix = FILE_INFO_PREFIX.lower()
    file_info = {
        name[len(prefix) :]: unquote(value)
        for name, value in headers.items()
        if name.lower().startswith(prefix)
    }
    sha1 = headers.get("x-bz-content-sha1")
    return FileVersion(
        file_id=headers.get("x-bz-file-id", ""),
        file_name=unquote(headers.get("x-bz-file-name", "")),
        content_length=int(headers.get("content-length", "0")),
        content_type=headers.get("content-type"),
        content_sha1=None if sha1 in (None, "none") else sha1,
        file_info=file_info,
        upload_timestamp=int(headers.get("x-bz-upload-timestamp", "0")),
    )


class StorageClientWebifier:
    def __init__(
        self,
        web_api_client: WebApiClient,
        master_url: str,
        *,
        progress_interval_secs: float = 5.0,
    ) -> None:
        self._web_api_client = web_api_client
        self._master_url = master_url if master_url.endswith("/") else master_url + "/"
        self._progress_interval_secs = progress_interval_secs

    @staticmethod
    def _auth_headers(auth: AccountAuthorization) -> dict[str, str]:
        return {"Authorization": auth.authorization_token}

    def _post(
        self,
        auth: AccountAuthorization,
        api_name: str,
        body: dict[str, Any],
        model: type[_M],
    ) -> _M:
        data = self._web_api_client.post_json_return_json(
            make_api_url(auth.api_url, api_name),
            self._auth_headers(auth),
            {k: v for k, v in body.items() if v is not None},
        )
        return _parse(model, data)

    def authorize_account(
        self, application_key_id: str, application_key: str
    ) -> AccountAuthorization:
        credentials = f"{application_key_id}:{application_key}".encode()
        headers = {"Authorization": "Basic " + base64.b64encode(credentials).decode("ascii")}
        data = self._web_api_client.post_json_return_json(
            f"{self._master_url}{API_VERSION_PATH}b2_authorize_account",
            headers,
            {},
            request_category=RequestCategory.ACCOUNT_AUTHORIZATION,
        )
        return _parse(AccountAuthorization, data)

    def get_upload_url(self, auth: AccountAuthorization, bucket_id: str) -> UploadUrl:
        return self._post(auth, "b2_get_upload_url", {"bucketId": bucket_id}, UploadUrl)

    def get_upload_part_url(self, auth: AccountAuthorization, file_id: str) -> UploadPartUrl:
        return self._post(auth, "b2_get_upload_part_url", {"fileId": file_id}, UploadPartUrl)

    def upload_file(self, upload_url: UploadUrl, request: UploadFileRequest) -> FileVersion:
        """Upload a whole file in one request, reporting progress as a one-part upload."""
        listener = request.listener or noop_listener()
        source = request.content_source

        headers = {
            "Authorization": upload_url.authorization_token,
            "X-Bz-File-Name": percent_encode(request.file_name),
        }
        last_modified_millis = source.get_src_last_modified_millis_or_none()
        if last_modified_millis is not None:
            headers[FILE_INFO_PREFIX + SRC_LAST_MODIFIED_MILLIS] = str(last_modified_millis)
        for name, value in request.file_info.items():
            validate_file_info_name(name)
            headers[FILE_INFO_PREFIX + name] = percent_encode(value)

        content_length = source.get_content_length()
        for state in (UploadState.WAITING_TO_START, UploadState.STARTING):
            listener.progress(upload_progress_for_small_file(content_length, 0, state))

        byte_listener = ByteProgressFilteringListener(
            UploadProgressAdapter(listener, 0, 1, 0, content_length),
            self._progress_interval_secs,
        )
        try:
            with ContentDetailsForUpload(
                ContentSourceWithByteProgressListener(source, byte_listener)
            ) as details:
                headers["X-Bz-Content-Sha1"] = details.content_sha1_header_value
                data = self._web_api_client.post_data_return_json(
                    upload_url.upload_url,
                    headers,
                    details.iter_chunks(),
                    details.content_length,
                    content_type=request.content_type,
                    request_category=RequestCategory.UPLOADING,
                )
        except B2Error:
            listener.progress(upload_progress_for_small_file_failed(content_length))
            raise

        listener.progress(upload_progress_for_small_file_succeeded(content_length))
        return _parse(FileVersion, data)

    def upload_part(
        self,
        upload_part_url: UploadPartUrl,
        part_number: int,
        content_source: ContentSource,
    ) -> Part:
        with ContentDetailsForUpload(content_source) as details:
            headers = {
                "Authorization": upload_part_url.authorization_token,
                "X-Bz-Part-Number": str(part_number),
                "X-Bz-Content-Sha1": details.content_sha1_header_value,
            }
            data = self._web_api_client.post_data_return_json(
                upload_part_url.upload_url,
                headers,
                details.iter_chunks(),
                details.content_length,
                request_category=RequestCategory.UPLOADING,
            )
        return _parse(Part, data)

    def copy_part(
        self,
        auth: AccountAuthorization,
        large_file_id: str,
        part_number: int,
        source_file_id: str,
        byte_range: ByteRange | None = None,
    ) -> Part:
        body = {
            "sourceFileId": source_file_id,
            "largeFileId": large_file_id,
            "partNumber": part_number,
            "range": str(byte_range) if byte_range is not None else None,
        }
        return self._post(auth, "b2_copy_part", body, Part)

    def start_large_file(
        self,
        auth: AccountAuthorization,
        bucket_id: str,
        file_name: str,
        content_type: str,
        file_info: dict[str, str] | None = None,
    ) -> FileVersion:
        for name in file_info or {}:
            validate_file_info_name(name)
        body = {
            "bucketId": bucket_id,
            "fileName": file_name,
            "contentType": content_type,
            "fileInfo": file_info or {},
        }
        return self._post(auth, "b2_start_large_file", body, FileVersion)

    def finish_large_file(
        self, auth: AccountAuthorization, file_id: str, part_sha1s: list[str]
    ) -> FileVersion:
        body = {"fileId": file_id, "partSha1Array": part_sha1s}
        return self._post(auth, "b2_finish_large_file", body, FileVersion)

    def list_parts(
        self,
        auth: AccountAuthorization,
        file_id: str,
        start_part_number: int | None = None,
        max_part_count: int | None = None,
    ) -> ListPartsResponse:
        body = {
            "fileId": file_id,
            "startPartNumber": start_part_number,
            "maxPartCount": max_part_count,
        }
        return self._post(auth, "b2_list_parts", body, ListPartsResponse)

    def cancel_large_file(self, auth: AccountAuthorization, file_id: str) -> FileIdAndName:
        return self._post(auth, "b2_cancel_large_file", {"fileId": file_id}, FileIdAndName)

    def get_file_info(self, auth: AccountAuthorization, file_id: str) -> FileVersion:
        return self._post(auth, "b2_get_file_info", {"fileId": file_id}, FileVersion)

    def delete_file_version(
        self, auth: AccountAuthorization, file_name: str, file_id: str
    ) -> FileIdAndName:
        body = {"fileName": file_name, "fileId": file_id}
        return self._post(auth, "b2_delete_file_version", body, FileIdAndName)

    def copy_file(
        self,
        auth: AccountAuthorization,
        source_file_id: str,
        file_name: str,
        *,
        destination_bucket_id: str | None = None,
        byte_range: ByteRange | None = None,
        content_type: str | None = None,
        file_info: dict[str, str] | None = None,
    ) -> FileVersion:
        # Replacing metadata requires both a content type and file info.
        replace = content_type is not None or file_info is not None
        body = {
            "sourceFileId": source_file_id,
            "fileName": file_name,
            "destinationBucketId": destination_bucket_id,
            "range": str(byte_range) if byte_range is not None else None,
            "metadataDirective": "REPLACE" if replace else "COPY",
            "contentType": content_type if replace else None,
            "fileInfo": (file_info or {}) if replace else None,
        }
        return self._post(auth, "b2_copy_file", body, FileVersion)

    def download_by_id(
        self,
        auth: AccountAuthorization,
        file_id: str,
        handler: Callable[[httpx.Headers, bytes], _T],
        byte_range: ByteRange | None = None,
    ) -> _T:
        url = make_api_url(auth.download_url, "b2_download_file_by_id")
        url += "?fileId=" + percent_encode(file_id)
        headers = self._auth_headers(auth)
        if byte_range is not None:
            headers["Range"] = str(byte_range)
        return self._web_api_client.get_content(url, headers, handler)

    def get_file_info_by_name(
        self, auth: AccountAuthorization, bucket_name: str, file_name: str
    ) -> FileVersion:
        download_url = auth.download_url.rstrip("/")
        url = f"{download_url}/file/{bucket_name}/{percent_encode(file_name)}"
        headers = self._web_api_client.head(url, self._auth_headers(auth))
        return _file_version_from_headers(headers)


__all__ = ["StorageClientWebifier", "FILE_INFO_PREFIX"]

from .errors import (
    B2Error,
    B2LocalError,
    RequestCategory,
    B2UnauthorizedError,
    B2BadRequestError,
    B2ForbiddenError,
    B2NotFoundError,
    B2RequestTimeoutError,
    B2TooManyRequestsError,
    B2InternalError,
    B2ServiceUnavailableError,
    B2NetworkBaseError,
    B2NetworkError,
    B2NetworkTimeoutError,
    B2ConnectionBrokenError,
    B2CannotComputeError,
)

from .client import StorageClient
from .content_sources import (
    ContentSource,
    BytesContentSource,
    FileContentSource,
)
from .large_file import CancellationToken, LargeFileStorer
from .part_sizes import PartSizes
from .part_storers import (
    PartStorer,
    UploadingPartStorer,
    CopyingPartStorer,
    AlreadyStoredPartStorer,
)
from .progress import UploadListener, CallbackListener
from .retry import RetryPolicy, DefaultRetryPolicy, Sleeper
from .types import (
    B2_AUTO,
    AccountAuthorization,
    ByteRange,
    FileIdAndName,
    FileVersion,
    Part,
    PartSpec,
    UploadFileRequest,
    UploadProgress,
    UploadState,
)

__all__ = [
    "B2Error",
    "B2LocalError",
    "RequestCategory",
    "B2UnauthorizedError",
    "B2BadRequestError",
    "B2ForbiddenError",
    "B2NotFoundError",
    "B2RequestTimeoutError",
    "B2TooManyRequestsError",
    "B2InternalError",
    "B2ServiceUnavailableError",
    "B2NetworkBaseError",
    "B2NetworkError",
    "B2NetworkTimeoutError",
    "B2ConnectionBrokenError",
    "B2CannotComputeError",
    "StorageClient",
    "ContentSource",
    "BytesContentSource",
    "FileContentSource",
    "CancellationToken",
    "LargeFileStorer",
    "PartSizes",
    "PartStorer",
    "UploadingPartStorer",
    "CopyingPartStorer",
    "AlreadyStoredPartStorer",
    "UploadListener",
    "CallbackListener",
    "RetryPolicy",
    "DefaultRetryPolicy",
    "Sleeper",
    "B2_AUTO",
    "AccountAuthorization",
    "ByteRange",
    "FileIdAndName",
    "FileVersion",
    "Part",
    "PartSpec",
    "UploadFileRequest",
    "UploadProgress",
    "UploadState",
]

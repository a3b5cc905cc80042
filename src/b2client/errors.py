from __future__ import annotations

from enum import Enum


class B2Error(Exception):
    """Base class for every error the client raises about a B2 operation."""

    def __init__(
        self,
        code: str,
        status: int,
        retry_after_seconds: int | None,
        message: str,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.retry_after_seconds = retry_after_seconds
        self.message = message

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.status} {self.code}: {self.message}>"


class B2LocalError(B2Error):
    """Trouble on the client side: I/O, mismatched content, interruption, misuse."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, 0, None, message)


class RequestCategory(Enum):
    ACCOUNT_AUTHORIZATION = "account_authorization"
    UPLOADING = "uploading"
    OTHER = "other"


class B2UnauthorizedError(B2Error):
    STATUS = 401

    def __init__(
        self,
        code: str,
        retry_after_seconds: int | None,
        message: str,
        request_category: RequestCategory = RequestCategory.OTHER,
    ) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)
        self.request_category = request_category


class B2BadRequestError(B2Error):
    STATUS = 400

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2ForbiddenError(B2Error):
    STATUS = 403

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2NotFoundError(B2Error):
    STATUS = 404

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2RequestTimeoutError(B2Error):
    STATUS = 408

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2TooManyRequestsError(B2Error):
    STATUS = 429

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2InternalError(B2Error):
    STATUS = 500

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2ServiceUnavailableError(B2Error):
    STATUS = 503

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, self.STATUS, retry_after_seconds, message)


class B2NetworkBaseError(B2Error):
    """We never got a usable HTTP response."""

    def __init__(self, code: str, retry_after_seconds: int | None, message: str) -> None:
        super().__init__(code, 0, retry_after_seconds, message)


class B2NetworkError(B2NetworkBaseError):
    pass


class B2NetworkTimeoutError(B2NetworkBaseError):
    pass


class B2ConnectionBrokenError(B2NetworkBaseError):
    pass


class B2CannotComputeError(Exception):
    """A value (such as a copied part's size) is not knowable on the client."""


_ERRORS_BY_STATUS: dict[int, type[B2Error]] = {
    B2BadRequestError.STATUS: B2BadRequestError,
    B2UnauthorizedError.STATUS: B2UnauthorizedError,
    B2ForbiddenError.STATUS: B2ForbiddenError,
    B2NotFoundError.STATUS: B2NotFoundError,
    B2RequestTimeoutError.STATUS: B2RequestTimeoutError,
    B2TooManyRequestsError.STATUS: B2TooManyRequestsError,
    B2InternalError.STATUS: B2InternalError,
    B2ServiceUnavailableError.STATUS: B2ServiceUnavailableError,
}


def create_error(
    code: str,
    status: int,
    retry_after_seconds: int | None,
    message: str,
) -> B2Error:
    """Build the most specific B2Error subclass for an HTTP status."""
    error_class = _ERRORS_BY_STATUS.get(status)
    if error_class is None:
        return B2Error(code, status, retry_after_seconds, message)
    return error_class(code, retry_after_seconds, message)  # type: ignore[call-arg]


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
    "create_error",
]

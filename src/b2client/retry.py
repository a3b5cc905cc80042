"""Retry engine.

``Retryer.do_retry`` is the only place the client decides whether to try a
call again.  The RetryPolicy it is handed decides how many times and how
long to wait; a fresh policy is built for each logical operation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, TypeVar

from .errors import (
    B2Error,
    B2InternalError,
    B2NetworkBaseError,
    B2RequestTimeoutError,
    B2ServiceUnavailableError,
    B2TooManyRequestsError,
    B2UnauthorizedError,
    RequestCategory,
)
from .utils import debug, monotonic_millis

if TYPE_CHECKING:
    from .auth import AccountAuthorizationCache

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_RETRYABLE_AFTER_DELAY = (
    B2TooManyRequestsError,
    B2ServiceUnavailableError,
    B2InternalError,
    B2RequestTimeoutError,
    B2NetworkBaseError,
)


class RetryPolicy(Protocol):
    """Told about every attempt of one operation; decides whether to go again."""

    def succeeded(self, operation: str, attempts_so_far: int, took_millis: int) -> None: ...

    def got_retryable_immediately(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> bool: ...

    def got_retryable_after_delay(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> int | None:
        """Return seconds to wait before the next attempt, or None to give up."""
        ...

    def got_unretryable(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> None: ...

    def got_unexpected_unretryable(
        self, operation: str, attempts_so_far: int, took_millis: int, error: Exception
    ) -> None: ...


class DefaultRetryPolicy:
    """Up to MAX_ATTEMPTS tries, waiting 1, 2, 4, ... 64 seconds in between.

    A Retry-After from the server is obeyed as-is and resets the backoff.
    Holds mutable state, so an instance belongs to exactly one operation and
    refuses to be copied.
    """

    MAX_ATTEMPTS = 8

    def __init__(self) -> None:
        self._wait_between_retry_secs = 1

    @classmethod
    def supplier(cls) -> Callable[[], RetryPolicy]:
        return cls

    def __copy__(self) -> DefaultRetryPolicy:
        raise TypeError("retry policies hold per-operation state; build a new one instead")

    def __deepcopy__(self, memo: dict) -> DefaultRetryPolicy:
        raise TypeError("retry policies hold per-operation state; build a new one instead")

    def succeeded(self, operation: str, attempts_so_far: int, took_millis: int) -> None:
        pass

    def got_retryable_immediately(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> bool:
        return attempts_so_far < self.MAX_ATTEMPTS

    def got_retryable_after_delay(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> int | None:
        if attempts_so_far >= self.MAX_ATTEMPTS:
            return None
        if error.retry_after_seconds is not None:
            self._wait_between_retry_secs = 1
            return error.retry_after_seconds
        secs_to_sleep = self._wait_between_retry_secs
        self._wait_between_retry_secs *= 2
        return secs_to_sleep

    def got_unretryable(
        self, operation: str, attempts_so_far: int, took_millis: int, error: B2Error
    ) -> None:
        pass

    def got_unexpected_unretryable(
        self, operation: str, attempts_so_far: int, took_millis: int, error: Exception
    ) -> None:
        pass


class Sleeper:
    """Sleeps between attempts.  Never raises; may return early.

    ``interrupt()`` wakes every current sleeper, which is how closing the
    client cuts a backoff short.  The next attempt then runs immediately.
    """

    def __init__(self) -> None:
        self._interrupted = threading.Event()

    def sleep_seconds(self, seconds: int) -> bool:
        """Return True if the whole interval elapsed."""
        return not self._interrupted.wait(seconds)

    def interrupt(self) -> None:
        self._interrupted.set()


class Retryer:
    def __init__(self, sleeper: Sleeper | None = None) -> None:
        self._sleeper = sleeper if sleeper is not None else Sleeper()

    @property
    def sleeper(self) -> Sleeper:
        return self._sleeper

    def do_retry_simple(
        self,
        operation: str,
        account_auth_cache: AccountAuthorizationCache,
        callable_: Callable[[], _T],
        retry_policy: RetryPolicy,
    ) -> _T:
        """Like do_retry, for calls that don't care whether they are a retry."""
        return self.do_retry(
            operation, account_auth_cache, lambda is_retry: callable_(), retry_policy
        )

    def do_retry(
        self,
        operation: str,
        account_auth_cache: AccountAuthorizationCache,
        callable_: Callable[[bool], _T],
        retry_policy: RetryPolicy,
    ) -> _T:
        """Call ``callable_(is_retry)`` until it succeeds or the policy gives up.

        Raises the most recent B2Error when giving up.  Anything that isn't a
        B2Error is reported as unexpected and raised as a B2Error chained
        from it.
        """
        attempts_so_far = 0
        while True:
            before_millis = monotonic_millis()
            is_retry = attempts_so_far != 0
            attempts_so_far += 1
            try:
                try:
                    value = callable_(is_retry)
                finally:
                    took_millis = monotonic_millis() - before_millis
                retry_policy.succeeded(operation, attempts_so_far, took_millis)
                return value
            except B2UnauthorizedError as e:
                if e.request_category is RequestCategory.ACCOUNT_AUTHORIZATION:
                    retry_policy.got_unretryable(operation, attempts_so_far, took_millis, e)
                    raise
                if e.request_category is RequestCategory.OTHER:
                    account_auth_cache.clear()
                if not retry_policy.got_retryable_immediately(
                    operation, attempts_so_far, took_millis, e
                ):
                    raise
                debug(f"{operation}: retrying immediately after {e.code}", attempts_so_far)
            except _RETRYABLE_AFTER_DELAY as e:
                wait_seconds = retry_policy.got_retryable_after_delay(
                    operation, attempts_so_far, took_millis, e
                )
                if wait_seconds is None:
                    raise
                debug(f"{operation}: retrying in {wait_seconds}s after {e.code}", attempts_so_far)
                self._sleeper.sleep_seconds(wait_seconds)
            except B2Error as e:
                retry_policy.got_unretryable(operation, attempts_so_far, took_millis, e)
                raise
            except Exception as e:
                logger.warning(
                    "%s: unexpected error on attempt %d: %r", operation, attempts_so_far, e
                )
                retry_policy.got_unexpected_unretryable(operation, attempts_so_far, took_millis, e)
                raise B2Error("unexpected", 500, None, f"unexpected: {e}") from e


__all__ = [
    "RetryPolicy",
    "DefaultRetryPolicy",
    "Sleeper",
    "Retryer",
]

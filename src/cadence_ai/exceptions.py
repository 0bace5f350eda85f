"""Exception hierarchy for cadence-ai.

Remote failures are raised by the dispatcher as ``APIError`` subclasses.
``is_retryable`` decides whether a failure counts toward circuit breaker
accounting; authentication and validation errors pass straight through.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class CadenceError(Exception):
    """Base exception for all cadence-ai errors."""


class ConfigurationError(CadenceError):
    """Raised when settings are inconsistent or a component is misconfigured."""


class OperationCancelledError(CadenceError):
    """Raised inside an operation whose cancellation token fired."""


class CircuitOpenError(CadenceError):
    """The circuit breaker is OPEN and rejected the call without running it."""

    def __init__(self, message: str, *, breaker: str = "default", retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.breaker = breaker
        self.retry_after = retry_after


class QueueTimeoutError(CadenceError):
    """A deferred operation waited in the admission queue past its timeout."""


class QueueClosedError(CadenceError):
    """The admission queue was cleared or disposed while an operation waited."""


# ── Remote API errors ────────────────────────────────────────────────


class ErrorCode(str, Enum):
    NETWORK_ERROR = "E001"
    AUTH_FAILED = "E002"
    RATE_LIMITED = "E003"
    SERVER_ERROR = "E004"
    INVALID_REQUEST = "E005"
    TIMEOUT = "E006"
    UNKNOWN = "E999"


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class APIError(CadenceError):
    """Typed failure reported by the completion service."""

    code: ErrorCode = ErrorCode.UNKNOWN
    category: ErrorCategory = ErrorCategory.UNKNOWN
    default_status: Optional[int] = None
    retryable: bool = False
    default_user_message: str = "An unexpected error occurred. Please try again later."

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.user_message = user_message or self._default_user_message()
        self.timestamp = time.time()

    @property
    def is_retryable(self) -> bool:
        return self.retryable

    def _default_user_message(self) -> str:
        return self.default_user_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "category": self.category.value,
            "status_code": self.status_code,
            "is_retryable": self.is_retryable,
            "user_message": self.user_message,
            "timestamp": self.timestamp,
        }


class NetworkError(APIError):
    """Offline, DNS or connection failure."""

    code = ErrorCode.NETWORK_ERROR
    category = ErrorCategory.NETWORK
    retryable = True
    default_user_message = "Unable to reach the completion service. Check your internet connection."


class AuthenticationError(APIError):
    """Expired or invalid credential. Surfaced to the caller, never retried here."""

    code = ErrorCode.AUTH_FAILED
    category = ErrorCategory.AUTHENTICATION
    default_status = 401
    default_user_message = "Authentication expired. Sign in again."


@dataclass(frozen=True)
class RateLimitInfo:
    """Server-side limit snapshot taken from ``x-ratelimit-*`` headers."""

    limit: int = 0
    remaining: int = 0
    reset: int = 0


class RateLimitError(APIError):
    """The service answered 429."""

    code = ErrorCode.RATE_LIMITED
    category = ErrorCategory.RATE_LIMIT
    default_status = 429
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        limit_info: Optional[RateLimitInfo] = None,
        user_message: Optional[str] = None,
    ) -> None:
        self.retry_after = retry_after
        self.limit_info = limit_info
        super().__init__(message, user_message=user_message)

    def _default_user_message(self) -> str:
        if self.retry_after:
            return f"You've reached the rate limit. Please wait {self.retry_after:g} seconds."
        return "You've reached your usage limit. Completions may be limited."

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        data["limit_info"] = asdict(self.limit_info) if self.limit_info else None
        return data


class ServerError(APIError):
    """5xx from the service."""

    code = ErrorCode.SERVER_ERROR
    category = ErrorCategory.SERVER
    default_status = 500
    retryable = True
    default_user_message = "The completion service is experiencing issues."


class InvalidRequestError(APIError):
    """4xx validation failure. Not retryable."""

    code = ErrorCode.INVALID_REQUEST
    category = ErrorCategory.CLIENT
    default_status = 400
    default_user_message = "Invalid request. Please check your input and try again."

    def __init__(
        self,
        message: str,
        *,
        validation_errors: Optional[Mapping[str, list[str]]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.validation_errors = dict(validation_errors or {})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["validation_errors"] = self.validation_errors
        return data


class APITimeoutError(APIError):
    """The request did not complete in time."""

    code = ErrorCode.TIMEOUT
    category = ErrorCategory.NETWORK
    retryable = True

    def __init__(self, message: str, *, timeout_seconds: float = 30.0) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(message)

    def _default_user_message(self) -> str:
        return f"Request timed out after {self.timeout_seconds:g} seconds. Please try again."

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["timeout_seconds"] = self.timeout_seconds
        return data


class UnknownError(APIError):
    """Catch-all for failures that could not be classified."""


def _header_int(headers: Mapping[str, str], name: str, default: int = 0) -> int:
    raw = headers.get(name)
    if raw is None:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def parse_error_response(
    error: BaseException | None = None,
    *,
    status_code: Optional[int] = None,
    headers: Optional[Mapping[str, str]] = None,
    body: Optional[Mapping[str, Any]] = None,
) -> APIError:
    """Classify an arbitrary failure into an ``APIError``.

    ``APIError`` instances pass through unchanged. Otherwise the HTTP status
    (when the transport has one) wins, then the exception type and message.
    """
    if isinstance(error, APIError):
        return error

    headers = {k.lower(): v for k, v in (headers or {}).items()}
    detail = (body or {}).get("error") or {}
    message = detail.get("message") if isinstance(detail, Mapping) else None

    if status_code is not None:
        if status_code == 401 or status_code == 403:
            return AuthenticationError(message or "Unauthorized", status_code=status_code)
        if status_code == 429:
            return RateLimitError(
                message or "Rate limit exceeded",
                retry_after=float(_header_int(headers, "retry-after", 60)),
                limit_info=RateLimitInfo(
                    limit=_header_int(headers, "x-ratelimit-limit"),
                    remaining=_header_int(headers, "x-ratelimit-remaining"),
                    reset=_header_int(headers, "x-ratelimit-reset"),
                ),
            )
        if 400 <= status_code < 500:
            details = detail.get("details") if isinstance(detail, Mapping) else None
            return InvalidRequestError(
                message or "Bad request",
                validation_errors=details if isinstance(details, Mapping) else None,
                status_code=status_code,
            )
        if status_code >= 500:
            return ServerError(message or "Server error", status_code=status_code)

    if error is not None:
        text = str(error)
        lowered = text.lower()
        # asyncio.TimeoutError is distinct from the builtin before 3.11
        if (
            isinstance(error, (TimeoutError, asyncio.TimeoutError))
            or "timeout" in lowered
            or "timed out" in lowered
        ):
            return APITimeoutError(text or "Request timed out")
        if isinstance(error, (ConnectionError, OSError)) or "network" in lowered:
            return NetworkError(text or "Network error")
        return UnknownError(text or type(error).__name__)

    return UnknownError(message or "Unknown error", status_code=status_code)


def counts_as_breaker_failure(error: BaseException) -> bool:
    """Only retryable remote failures trip the circuit breaker."""
    return isinstance(error, APIError) and error.is_retryable


__all__ = [
    "CadenceError",
    "ConfigurationError",
    "OperationCancelledError",
    "CircuitOpenError",
    "QueueTimeoutError",
    "QueueClosedError",
    "ErrorCode",
    "ErrorCategory",
    "APIError",
    "NetworkError",
    "AuthenticationError",
    "RateLimitInfo",
    "RateLimitError",
    "ServerError",
    "InvalidRequestError",
    "APITimeoutError",
    "UnknownError",
    "parse_error_response",
    "counts_as_breaker_failure",
]

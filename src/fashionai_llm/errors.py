from __future__ import annotations

from enum import Enum
from typing import Any


class LLMErrorKind(str, Enum):
    AUTHENTICATION = "authentication_error"
    RATE_LIMIT = "rate_limit_error"
    CONTEXT_LENGTH = "context_length_error"
    INVALID_REQUEST = "invalid_request_error"
    API_ERROR = "api_error"
    TIMEOUT = "timeout_error"
    CONNECTIVITY = "connectivity_error"
    SAFETY = "safety_error"
    UNKNOWN = "unknown_error"


class LLMError(Exception):
    """Base error for provider failures.

    ``retryable`` is decided when the error is classified and is never
    re-inferred by callers.
    """

    kind: LLMErrorKind = LLMErrorKind.UNKNOWN
    default_status_code: int | None = None
    default_retryable: bool = False

    def __init__(
        self,
        message: str = "",
        *,
        kind: LLMErrorKind | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.status_code = status_code if status_code is not None else self.default_status_code
        self.retryable = self.default_retryable if retryable is None else retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "type": self.kind.value,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, kind={self.kind.value}, "
            f"status_code={self.status_code}, retryable={self.retryable})"
        )


class AuthenticationError(LLMError):
    kind = LLMErrorKind.AUTHENTICATION
    default_status_code = 401


class RateLimitError(LLMError):
    kind = LLMErrorKind.RATE_LIMIT
    default_status_code = 429
    default_retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded, please try again later",
        *,
        retry_after_seconds: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after_seconds = retry_after_seconds


class ContextLengthError(LLMError):
    kind = LLMErrorKind.CONTEXT_LENGTH
    default_status_code = 400


class InvalidRequestError(LLMError):
    kind = LLMErrorKind.INVALID_REQUEST
    default_status_code = 400


class ApiError(LLMError):
    """Backend failure that fits no narrower kind."""

    kind = LLMErrorKind.API_ERROR
    default_status_code = 500
    default_retryable = True


class RequestTimeoutError(LLMError):
    kind = LLMErrorKind.TIMEOUT
    default_status_code = 408
    default_retryable = True


class ConnectivityError(LLMError):
    kind = LLMErrorKind.CONNECTIVITY
    default_status_code = 503
    default_retryable = True


class SafetyError(LLMError):
    kind = LLMErrorKind.SAFETY
    default_status_code = 400

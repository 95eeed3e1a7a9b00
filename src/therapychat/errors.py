"""Error taxonomy, API error codes and stream error classification.

Everything raised by the chat pipeline before the response starts is a
``ChatError`` subclass carrying an ``ApiErrorCode``; the API layer turns it into
the JSON error envelope. Failures after streaming has started are passed
through ``classify_stream_error()`` instead, which yields a sentence that is
safe to show the user.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ApiErrorCode(str, Enum):
    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_REQUEST_FORMAT = "INVALID_REQUEST_FORMAT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    # 401 / 404
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    # 429
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    # 5xx
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    DATABASE_WRITE_FAILED = "DATABASE_WRITE_FAILED"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    CHAT_PROCESSING_FAILED = "CHAT_PROCESSING_FAILED"


@dataclass(frozen=True)
class ErrorCodeInfo:
    description: str
    suggested_action: str
    http_status: int


_CODE_INFO: dict[ApiErrorCode, ErrorCodeInfo] = {
    ApiErrorCode.VALIDATION_ERROR: ErrorCodeInfo(
        "Request data failed validation",
        "Please check your input data and try again",
        400,
    ),
    ApiErrorCode.INVALID_INPUT: ErrorCodeInfo(
        "One or more input values are invalid",
        "Please verify all input values match the expected format",
        415,
    ),
    ApiErrorCode.INVALID_REQUEST_FORMAT: ErrorCodeInfo(
        "Request format is invalid or malformed",
        "Please ensure your request follows the correct format",
        400,
    ),
    ApiErrorCode.PAYLOAD_TOO_LARGE: ErrorCodeInfo(
        "Request body exceeds the allowed size",
        "Please shorten your message and try again",
        413,
    ),
    ApiErrorCode.AUTHENTICATION_ERROR: ErrorCodeInfo(
        "Authentication is required but missing or invalid",
        "Please verify your authentication credentials and try again",
        401,
    ),
    ApiErrorCode.SESSION_NOT_FOUND: ErrorCodeInfo(
        "The requested session was not found",
        "Please verify the session ID and try again",
        404,
    ),
    ApiErrorCode.RATE_LIMIT_EXCEEDED: ErrorCodeInfo(
        "Too many requests made in a short period",
        "Please wait a moment before making another request",
        429,
    ),
    ApiErrorCode.INTERNAL_SERVER_ERROR: ErrorCodeInfo(
        "An unexpected server error occurred",
        "Please try again later or contact support if the issue persists",
        500,
    ),
    ApiErrorCode.DATABASE_WRITE_FAILED: ErrorCodeInfo(
        "Failed to save data",
        "Please try again later or contact support if the issue persists",
        500,
    ),
    ApiErrorCode.AI_SERVICE_ERROR: ErrorCodeInfo(
        "The AI service returned an error",
        "Please try again in a few moments",
        502,
    ),
    ApiErrorCode.AI_SERVICE_UNAVAILABLE: ErrorCodeInfo(
        "The AI service is temporarily unavailable",
        "Please try again in a few moments",
        503,
    ),
    ApiErrorCode.CHAT_PROCESSING_FAILED: ErrorCodeInfo(
        "Failed to process chat request",
        "Please try again or contact support if the issue persists",
        500,
    ),
}


def get_error_info(code: ApiErrorCode) -> ErrorCodeInfo:
    return _CODE_INFO.get(code, _CODE_INFO[ApiErrorCode.INTERNAL_SERVER_ERROR])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ChatError(Exception):
    """Base class for errors with a user-safe message and an API error code."""

    code: ApiErrorCode = ApiErrorCode.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        code: ApiErrorCode | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    @property
    def status_code(self) -> int:
        return get_error_info(self.code).http_status

    @property
    def suggested_action(self) -> str:
        return get_error_info(self.code).suggested_action


class ValidationError(ChatError):
    """Malformed, empty or oversized client input."""

    code = ApiErrorCode.VALIDATION_ERROR


class PayloadTooLargeError(ValidationError):
    code = ApiErrorCode.PAYLOAD_TOO_LARGE


class UnsupportedMediaTypeError(ValidationError):
    code = ApiErrorCode.INVALID_INPUT


class AuthenticationError(ChatError):
    code = ApiErrorCode.AUTHENTICATION_ERROR


class RateLimitError(ChatError):
    code = ApiErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, message: str = "Too many requests", *, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ServiceUnavailableError(ChatError):
    """A dependent service (local model, hosted provider) cannot be reached."""

    code = ApiErrorCode.AI_SERVICE_UNAVAILABLE


class ProviderError(ChatError):
    """The model backend answered with an HTTP failure or a malformed stream."""

    code = ApiErrorCode.AI_SERVICE_ERROR

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message, details=body or None)
        self.provider_status = status_code
        self.body = body


class PersistenceError(ChatError):
    """The session store rejected a write. Logged, never sent mid-stream."""

    code = ApiErrorCode.DATABASE_WRITE_FAILED


# ---------------------------------------------------------------------------
# Mid-stream classification
# ---------------------------------------------------------------------------

RATE_LIMIT_MESSAGE = "I received too many requests. Please wait a moment and try again."
TOOL_CONFLICT_MESSAGE = (
    "I encountered a configuration issue. Let me try again without additional tools."
)
WEB_SEARCH_MESSAGE = (
    "I encountered an issue with web search functionality. "
    "Let me help you with the information I have available."
)
SERVICE_MESSAGE = "The AI service is temporarily unavailable. Please try again in a few moments."
GENERIC_MESSAGE = (
    "An unexpected error occurred. Please try again or contact support if the issue persists."
)

_TOOL_CONFLICT_PHRASES = (
    "tool choice is none, but model called a tool",
    "tool choice is required, but model did not call a tool",
)


@dataclass(frozen=True)
class StreamErrorClass:
    error_type: str  # rate_limit | tool_choice_conflict | web_search_error | ai_service_error | unknown
    user_message: str


def classify_stream_error(error: BaseException | str | None) -> StreamErrorClass:
    """Map a mid-stream failure to a user-safe sentence. First match wins."""
    if isinstance(error, BaseException):
        # Transport errors (httpx.ReadTimeout, ...) often have an empty message.
        text = f"{type(error).__name__}: {error}"
    else:
        text = error or ""
    lower = text.lower()

    if "rate limit" in lower:
        return StreamErrorClass("rate_limit", RATE_LIMIT_MESSAGE)
    if any(phrase in lower for phrase in _TOOL_CONFLICT_PHRASES):
        return StreamErrorClass("tool_choice_conflict", TOOL_CONFLICT_MESSAGE)
    if "browser_search" in lower or "web search" in lower or "tool" in lower:
        return StreamErrorClass("web_search_error", WEB_SEARCH_MESSAGE)
    if "unavailable" in lower or "timeout" in lower or "service" in lower:
        return StreamErrorClass("ai_service_error", SERVICE_MESSAGE)
    return StreamErrorClass("unknown", GENERIC_MESSAGE)

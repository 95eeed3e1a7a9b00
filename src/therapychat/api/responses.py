# Error envelope helpers for the API layer.
#
# Every failure that happens before a stream starts is returned as
#   {"success": false, "error": {code, message, details?, suggestedAction?},
#    "meta": {timestamp, requestId}}
# Internal details (tracebacks, paths, provider bodies) stay in the server log.

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi.responses import JSONResponse

from therapychat.api.v1.schemas.common import ErrorDetail, ErrorEnvelope, ErrorMeta
from therapychat.errors import (
    ApiErrorCode,
    ChatError,
    ProviderError,
    RateLimitError,
    get_error_info,
)

logger = logging.getLogger(__name__)


def create_error_response(
    message: str,
    status_code: int,
    *,
    code: ApiErrorCode | str = ApiErrorCode.INTERNAL_SERVER_ERROR,
    details: str | None = None,
    suggested_action: str | None = None,
    request_id: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorDetail(
            code=code.value if isinstance(code, ApiErrorCode) else code,
            message=message,
            details=details,
            suggested_action=suggested_action,
        ),
        meta=ErrorMeta(timestamp=datetime.now(UTC).isoformat(), request_id=request_id),
    )
    response_headers = dict(headers or {})
    if request_id:
        response_headers.setdefault("X-Request-Id", request_id)
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(by_alias=True, exclude_none=True),
        headers=response_headers,
    )


def error_response_from_exception(
    exc: Exception,
    request_id: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Map any exception to the error envelope without leaking internals."""
    if not isinstance(exc, ChatError):
        logger.error(
            "Unhandled API error: %s",
            exc,
            exc_info=exc,
            extra={"request_id": request_id},
        )
        info = get_error_info(ApiErrorCode.INTERNAL_SERVER_ERROR)
        return create_error_response(
            "Failed to process request",
            info.http_status,
            code=ApiErrorCode.INTERNAL_SERVER_ERROR,
            suggested_action=info.suggested_action,
            request_id=request_id,
            headers=headers,
        )

    response_headers = dict(headers or {})
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        response_headers["Retry-After"] = str(exc.retry_after)

    details = exc.details
    if isinstance(exc, ProviderError):
        # Provider bodies can echo prompts or keys.
        logger.warning(
            "Provider error (status=%s): %s",
            exc.provider_status,
            exc.body[:500],
            extra={"request_id": request_id},
        )
        details = None
    elif exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc, exc_info=exc, extra={"request_id": request_id})
        details = None
    else:
        logger.info("%s: %s", type(exc).__name__, exc.message, extra={"request_id": request_id})

    return create_error_response(
        exc.message,
        exc.status_code,
        code=exc.code,
        details=details,
        suggested_action=exc.suggested_action,
        request_id=request_id,
        headers=response_headers,
    )

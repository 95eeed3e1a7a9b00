# Chat router: POST /chat, streamed as Server-Sent Events.
#
# Pipeline: content-type -> auth -> rate limit -> bounded body read ->
# normalize -> session ownership -> history -> model resolve -> stream.
# Anything that fails before the stream starts returns the JSON error
# envelope; failures after that are reported inside the stream.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from therapychat.api.deps import (
    get_registry,
    get_request_context,
    get_settings,
    get_store,
    rate_limit,
    require_json_content,
)
from therapychat.auth import RequestContext
from therapychat.chat.history import load_session_history, resolve_session_ownership
from therapychat.chat.pipeline import build_chat_stream
from therapychat.chat.prompts import locale_from_accept_language
from therapychat.chat.request import forwarded_messages, normalize_chat_request, read_request_body
from therapychat.errors import ApiErrorCode, ChatError, PayloadTooLargeError
from therapychat.security.rate_limiter import RateLimitInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

BYOK_HEADER = "X-BYOK-Key"


def _check_declared_length(request: Request, max_bytes: int) -> None:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError("Request too large", details=f"Body exceeds {max_bytes} bytes")


@router.post("/chat", dependencies=[Depends(require_json_content)])
async def chat(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    limit: RateLimitInfo | None = Depends(rate_limit("chat")),
):
    """Send a message and receive the assistant reply as an SSE stream."""
    settings = get_settings(request)
    store = get_store(request)
    registry = get_registry(request)

    _check_declared_length(request, settings.chat_input_max_bytes)
    body = read_request_body(await request.body(), settings.chat_input_max_bytes)
    chat_request = normalize_chat_request(body)

    byok_header = request.headers.get(BYOK_HEADER)
    if byok_header and not chat_request.byok_key:
        chat_request = chat_request.model_copy(update={"byok_key": byok_header.strip()})

    try:
        ownership = await resolve_session_ownership(store, chat_request.session_id, ctx.principal)
        history = await load_session_history(store, ownership)
        resolved = registry.resolve(chat_request)
        stream = await build_chat_stream(
            request=chat_request,
            forwarded=forwarded_messages(body, chat_request),
            history=history,
            ownership=ownership,
            resolved=resolved,
            request_id=ctx.request_id,
            settings=settings,
            store=store,
            locale=locale_from_accept_language(request.headers.get("accept-language")),
            observer_tasks=request.app.state.observer_tasks,
        )
    except ChatError:
        raise
    except Exception as exc:
        logger.error(
            "Failed to start chat stream",
            exc_info=True,
            extra={"request_id": ctx.request_id},
        )
        raise ChatError(
            "Failed to process request", code=ApiErrorCode.CHAT_PROCESSING_FAILED
        ) from exc

    headers = dict(stream.headers)
    if limit is not None:
        headers.update(limit.headers())

    return StreamingResponse(stream.body, media_type="text/event-stream", headers=headers)

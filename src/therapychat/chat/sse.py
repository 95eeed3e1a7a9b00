# Client stream encoder turning model events into UI-message SSE frames.
#
# Frames: start, text-start, text-delta, text-end, message-metadata, finish,
# then "data: [DONE]". Once headers are sent the status cannot change, so
# failures are classified and delivered once as an ordinary text-delta.

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from therapychat.errors import classify_stream_error
from therapychat.llm.protocol import FinishReason, StreamEvent, Usage

logger = logging.getLogger(__name__)

ERROR_TEXT_ID = "error-0"


def sse_frame(payload: dict[str, Any] | str) -> bytes:
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {data}\n\n".encode()


async def encode_ui_stream(
    events: AsyncIterator[StreamEvent],
    *,
    message_id: str,
    model_id: str,
    request_id: str = "",
) -> AsyncIterator[bytes]:
    """Encode a model event stream as SSE bytes for the chat client."""
    current_model = model_id
    finish_reason: FinishReason = "other"
    usage = Usage()
    text_emitted = False
    error_emitted = False

    def error_frames(error: Any) -> list[bytes]:
        nonlocal error_emitted
        classified = classify_stream_error(error)
        log_extra = {
            "request_id": request_id,
            "model_id": current_model,
            "error_type": classified.error_type,
        }
        if error_emitted:
            logger.warning("Additional chat stream error: %s", error, extra=log_extra)
            return []
        error_emitted = True
        logger.error(
            "Chat stream error: %s",
            error,
            exc_info=error if isinstance(error, BaseException) else None,
            extra=log_extra,
        )
        text = f"\n\n{classified.user_message}" if text_emitted else classified.user_message
        return [
            sse_frame({"type": "text-start", "id": ERROR_TEXT_ID}),
            sse_frame({"type": "text-delta", "id": ERROR_TEXT_ID, "text": text}),
            sse_frame({"type": "text-end", "id": ERROR_TEXT_ID}),
        ]

    yield sse_frame(
        {"type": "start", "messageId": message_id, "messageMetadata": {"modelId": current_model}}
    )

    try:
        async for event in events:
            if event.type == "response-metadata":
                if event.model_id and event.model_id != current_model:
                    current_model = event.model_id
                    yield sse_frame(
                        {"type": "message-metadata", "messageMetadata": {"modelId": current_model}}
                    )
            elif event.type == "text-start":
                yield sse_frame({"type": "text-start", "id": event.id})
            elif event.type == "text-delta":
                if event.delta:
                    text_emitted = True
                    yield sse_frame({"type": "text-delta", "id": event.id, "text": event.delta})
            elif event.type == "text-end":
                yield sse_frame({"type": "text-end", "id": event.id})
            elif event.type == "finish":
                finish_reason = event.finish_reason or finish_reason
                if event.usage is not None:
                    usage = event.usage
            elif event.type == "error":
                for frame in error_frames(event.error):
                    yield frame
    except Exception as exc:
        finish_reason = "error"
        for frame in error_frames(exc):
            yield frame

    yield sse_frame(
        {
            "type": "finish",
            "finishReason": finish_reason,
            "messageMetadata": {"modelId": current_model, "usage": usage.to_dict()},
        }
    )
    yield sse_frame("[DONE]")

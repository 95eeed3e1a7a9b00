# Chat stream builder: prompt assembly, model call, client encoding and
# persistence wiring for one /api/chat request.
#
# Ordering per request: ownership -> history -> model resolve (done by the
# caller) -> model stream -> split into client + persistence branches.

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import httpx
import openai

from therapychat.chat.collector import AssistantResponseCollector, collect_sse
from therapychat.chat.history import HistoryMessage, SessionOwnership
from therapychat.chat.prompts import Locale, build_system_prompt
from therapychat.chat.request import ChatRequest, ForwardedMessage
from therapychat.chat.sse import encode_ui_stream
from therapychat.chat.streams import ObserverTasks, attach_response_headers, choose_splitter
from therapychat.config import Settings
from therapychat.errors import ChatError, ProviderError, RateLimitError, ServiceUnavailableError
from therapychat.llm.protocol import CallOptions, PromptMessage, StreamEvent, StreamResult
from therapychat.llm.registry import ResolvedModel
from therapychat.store.models import generate_id
from therapychat.store.protocol import SessionStoreProtocol

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass
class ChatStream:
    body: AsyncIterator[bytes]
    headers: dict[str, str]
    collector: AssistantResponseCollector | None = None


def build_prompt(
    system_prompt: str,
    history: list[HistoryMessage],
    forwarded: list[ForwardedMessage],
) -> list[PromptMessage]:
    prompt = [PromptMessage.text("system", system_prompt)]
    prompt.extend(PromptMessage.text(m.role, m.content) for m in history)
    prompt.extend(PromptMessage.text(m.role, m.content) for m in forwarded)
    return prompt


async def start_model_stream(resolved: ResolvedModel, call: CallOptions) -> StreamResult:
    """Open the model stream, mapping failures before the first byte to ChatErrors."""
    model = resolved.model_to_use
    try:
        return await model.stream(call)
    except ChatError:
        raise
    except openai.RateLimitError as exc:
        raise RateLimitError("The AI provider is rate limiting requests") from exc
    except (httpx.TransportError, openai.APIConnectionError) as exc:
        raise ServiceUnavailableError(
            "The AI service is unavailable", details=type(exc).__name__
        ) from exc
    except openai.APIStatusError as exc:
        raise ProviderError(
            "The AI service returned an error", status_code=exc.status_code
        ) from exc


async def _close_after(
    events: AsyncIterator[StreamEvent], resolved: ResolvedModel
) -> AsyncIterator[StreamEvent]:
    try:
        async for event in events:
            yield event
    finally:
        await resolved.model_to_use.aclose()


async def build_chat_stream(
    *,
    request: ChatRequest,
    forwarded: list[ForwardedMessage],
    history: list[HistoryMessage],
    ownership: SessionOwnership,
    resolved: ResolvedModel,
    request_id: str,
    settings: Settings,
    store: SessionStoreProtocol,
    locale: Locale = "en",
    observer_tasks: ObserverTasks | None = None,
) -> ChatStream:
    """Start the model stream and return the client body plus response headers.

    Raises ``ChatError`` subclasses when the model cannot be started; once the
    body is being consumed, failures are reported inside the stream instead.
    """
    model_id = resolved.effective_model_id
    tool_choice = resolved.tool_choice_header

    logger.info(
        "Model selection for chat request",
        extra={
            "request_id": request_id,
            "model_id": model_id,
            "tool_choice": tool_choice,
            "web_search": resolved.has_web_search,
            "selected_model_provided": bool(request.model),
        },
    )

    system_prompt = build_system_prompt(locale, resolved.has_web_search)
    call = CallOptions(
        prompt=build_prompt(system_prompt, history, forwarded),
        web_search=resolved.has_web_search,
    )
    try:
        result = await start_model_stream(resolved, call)
    except Exception:
        if resolved.request_scoped:
            await resolved.model_to_use.aclose()
        raise
    events = result.events
    if resolved.request_scoped:
        events = _close_after(events, resolved)
    for warning in result.warnings:
        logger.warning(
            "Model call warning (%s): %s",
            warning.setting,
            warning.details,
            extra={"request_id": request_id, "model_id": model_id},
        )

    body = encode_ui_stream(
        events,
        message_id=generate_id(),
        model_id=model_id,
        request_id=request_id,
    )
    headers = dict(SSE_HEADERS)

    collector = None
    if request.session_id:
        collector = AssistantResponseCollector(
            session_id=request.session_id,
            ownership=ownership,
            model_id=model_id,
            request_id=request_id,
            max_chars=settings.chat_response_max_chars,
            store=store,
        )
        splitter = choose_splitter(settings, body, observer_tasks)
        body = await splitter.split(body, lambda chunks: collect_sse(chunks, collector))

    attach_response_headers(headers, request_id, model_id, tool_choice)
    return ChatStream(body=body, headers=headers, collector=collector)

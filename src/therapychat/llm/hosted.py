"""Hosted and bring-your-own-key backends on an OpenAI-compatible API.

The system models run on Groq's OpenAI-compatible endpoint; BYOK requests use
the caller's key against the configured BYOK base URL. Both translate the
provider's chunk stream into the shared ``StreamEvent`` vocabulary.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from therapychat.llm.protocol import (
    CallOptions,
    FinishReason,
    GenerateResult,
    PromptMessage,
    StreamEvent,
    StreamResult,
    Usage,
)

logger = logging.getLogger(__name__)

TEXT_ID = "txt-0"
WEB_SEARCH_TOOL = {"type": "browser_search"}

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def _to_openai_messages(prompt: list[PromptMessage]) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for msg in prompt:
        if isinstance(msg.content, str):
            text = msg.content
        else:
            text = "".join(p.text for p in msg.content if p.type == "text")
        if msg.role == "system" and not text.strip():
            continue
        if msg.role == "tool":
            # Tool results are only produced by tool calls, which we never request.
            continue
        messages.append({"role": msg.role, "content": text})
    return messages


def _usage(raw: Any) -> Usage:
    if raw is None:
        return Usage()
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", None),
        output_tokens=getattr(raw, "completion_tokens", None),
        total_tokens=getattr(raw, "total_tokens", None),
    )


class HostedChatModel:
    """``LanguageModel`` backed by ``openai.AsyncOpenAI``."""

    provider = "hosted"

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str | None,
        base_url: str,
        provider_model: str | None = None,
        client: Any = None,
    ):
        self.model_id = model_id
        self.provider_model = provider_model or model_id
        self.base_url = base_url
        self._api_key = api_key
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self._api_key or "missing",
                base_url=self.base_url,
                timeout=60.0,
                max_retries=2,
            )
        return self._client

    def _request_kwargs(self, call: CallOptions) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.provider_model,
            "messages": _to_openai_messages(call.prompt),
        }
        if call.max_output_tokens is not None:
            kwargs["max_tokens"] = call.max_output_tokens
        if call.temperature is not None:
            kwargs["temperature"] = call.temperature
        if call.top_p is not None:
            kwargs["top_p"] = call.top_p
        if call.stop_sequences:
            kwargs["stop"] = call.stop_sequences
        if call.seed is not None:
            kwargs["seed"] = call.seed
        if call.web_search:
            kwargs["tools"] = [WEB_SEARCH_TOOL]
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def generate(self, call: CallOptions) -> GenerateResult:
        completion = await self._get_client().chat.completions.create(
            **self._request_kwargs(call)
        )
        choice = completion.choices[0]
        return GenerateResult(
            text=choice.message.content or "",
            finish_reason=_FINISH_REASONS.get(choice.finish_reason or "", "other"),
            usage=_usage(completion.usage),
            model_id=getattr(completion, "model", None) or self.model_id,
        )

    async def stream(self, call: CallOptions) -> StreamResult:
        provider_stream = await self._get_client().chat.completions.create(
            **self._request_kwargs(call),
            stream=True,
            stream_options={"include_usage": True},
        )
        return StreamResult(events=self._iter_events(provider_stream))

    async def _iter_events(self, provider_stream: Any) -> AsyncIterator[StreamEvent]:
        finish_reason: FinishReason = "other"
        usage = Usage()
        text_started = False
        metadata_sent = False
        try:
            async for chunk in provider_stream:
                if not metadata_sent and getattr(chunk, "model", None):
                    metadata_sent = True
                    yield StreamEvent(type="response-metadata", model_id=chunk.model)
                if getattr(chunk, "usage", None) is not None:
                    usage = _usage(chunk.usage)
                for choice in chunk.choices or []:
                    content = getattr(choice.delta, "content", None)
                    if content:
                        if not text_started:
                            text_started = True
                            yield StreamEvent(type="text-start", id=TEXT_ID)
                        yield StreamEvent(type="text-delta", id=TEXT_ID, delta=content)
                    if choice.finish_reason:
                        finish_reason = _FINISH_REASONS.get(choice.finish_reason, "other")
        finally:
            close = getattr(provider_stream, "close", None)
            if close is not None:
                await close()
        if text_started:
            yield StreamEvent(type="text-end", id=TEXT_ID)
        yield StreamEvent(type="finish", finish_reason=finish_reason, usage=usage)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class BYOKChatModel(HostedChatModel):
    """Hosted model created per request with the caller's own API key."""

    provider = "byok"

"""Local model adapter for an Ollama-style ``/api/chat`` endpoint.

Implements the same ``generate`` / ``stream`` contract as the hosted backends
but speaks the local newline-delimited JSON chat protocol:

- ``POST {base}/api/chat`` with ``{model, messages, options, stream}``
- non-streaming: one JSON object with ``message.content``, ``done_reason``,
  ``prompt_eval_count`` and ``eval_count``
- streaming: one JSON object per line, the last one carrying ``done: true``

``check_health()`` probes ``GET {base}/api/tags`` for diagnostics.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from therapychat.errors import ProviderError
from therapychat.llm.protocol import (
    CallOptions,
    CallWarning,
    FinishReason,
    GenerateResult,
    MessagePart,
    PromptMessage,
    StreamEvent,
    StreamResult,
    Usage,
)

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0
TEXT_ID = "txt-0"

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "tool-calls": "tool-calls",
    "content_filter": "content-filter",
    "content-filter": "content-filter",
}


def map_finish_reason(done_reason: Any) -> FinishReason:
    if done_reason is None:
        return "stop"
    return _FINISH_REASONS.get(str(done_reason), "other")


def map_usage(payload: dict[str, Any]) -> Usage:
    prompt = payload.get("prompt_eval_count")
    completion = payload.get("eval_count")
    prompt = prompt if isinstance(prompt, int) else None
    completion = completion if isinstance(completion, int) else None
    total = prompt + completion if prompt is not None and completion is not None else None
    return Usage(input_tokens=prompt, output_tokens=completion, total_tokens=total)


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def _part_text(parts: list[MessagePart], allowed: tuple[str, ...]) -> str:
    return "".join(p.text for p in parts if p.type in allowed and p.text)


def _tool_output_text(output: dict[str, Any] | None) -> str:
    if not output:
        return ""
    kind = output.get("type")
    value = output.get("value")
    if kind in ("text", "error-text") and isinstance(value, str):
        return value
    return json.dumps(value)


def convert_messages(prompt: list[PromptMessage]) -> list[dict[str, Any]]:
    """Flatten role-tagged prompt messages into ``[{role, content}]``."""
    messages: list[dict[str, Any]] = []
    for msg in prompt:
        content = msg.content
        if msg.role == "system":
            text = content if isinstance(content, str) else _part_text(content, ("text",))
            if text.strip():
                messages.append({"role": "system", "content": text})
        elif msg.role == "user":
            text = content if isinstance(content, str) else _part_text(content, ("text",))
            messages.append({"role": "user", "content": text})
        elif msg.role == "assistant":
            text = content if isinstance(content, str) else _part_text(content, ("text", "reasoning"))
            messages.append({"role": "assistant", "content": text})
        elif msg.role == "tool":
            parts = content if isinstance(content, list) else []
            for part in parts:
                if part.type != "tool-result":
                    continue
                messages.append(
                    {
                        "role": "tool",
                        "content": _tool_output_text(part.output),
                        "tool_call_id": part.tool_call_id,
                    }
                )
    return messages


def build_options(call: CallOptions) -> dict[str, Any]:
    options = {
        "num_predict": call.max_output_tokens,
        "temperature": call.temperature,
        "top_p": call.top_p,
        "top_k": call.top_k,
        "stop": call.stop_sequences,
        "seed": call.seed,
    }
    return {k: v for k, v in options.items() if v is not None}


def collect_warnings(call: CallOptions) -> list[CallWarning]:
    warnings: list[CallWarning] = []
    if call.tools:
        warnings.append(
            CallWarning("unsupported-setting", "tools", "Tool calling is not supported")
        )
    if call.tool_choice and call.tool_choice != "none":
        warnings.append(
            CallWarning("unsupported-setting", "toolChoice", f"tool_choice={call.tool_choice}")
        )
    if call.response_format is not None:
        warnings.append(
            CallWarning("unsupported-setting", "responseFormat", "Structured output is not supported")
        )
    return warnings


# ---------------------------------------------------------------------------
# NDJSON stream parser
# ---------------------------------------------------------------------------


class NDJSONStreamParser:
    """Incremental state machine for the newline-delimited chat stream.

    ``feed()`` accepts arbitrary text chunks and returns the events produced by
    every complete line; ``close()`` flushes a trailing partial line and emits
    ``text-end`` (if text was started) followed by exactly one ``finish``.
    """

    def __init__(self) -> None:
        self.finish_reason: FinishReason = "other"
        self.usage = Usage()
        self.text_started = False
        self.done = False
        self._buffer = ""
        self._closed = False

    def feed(self, chunk: str) -> list[StreamEvent]:
        self._buffer += chunk
        events: list[StreamEvent] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            events.extend(self._parse_line(line))
        return events

    def close(self) -> list[StreamEvent]:
        if self._closed:
            return []
        self._closed = True
        events: list[StreamEvent] = []
        if self._buffer:
            events.extend(self._parse_line(self._buffer))
            self._buffer = ""
        if self.text_started:
            events.append(StreamEvent(type="text-end", id=TEXT_ID))
        events.append(
            StreamEvent(type="finish", finish_reason=self.finish_reason, usage=self.usage)
        )
        return events

    def _parse_line(self, line: str) -> list[StreamEvent]:
        line = line.strip()
        if not line or self.done:
            return []

        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            return [StreamEvent(type="error", error=exc)]

        if not isinstance(payload, dict) or "error" in payload:
            self.finish_reason = "error"
            error = payload.get("error") if isinstance(payload, dict) else payload
            return [StreamEvent(type="error", error=error)]

        if payload.get("done") is True:
            self.done = True
            self.finish_reason = map_finish_reason(payload.get("done_reason"))
            self.usage = map_usage(payload)
            return []

        message = payload.get("message")
        if not isinstance(message, dict):
            self.finish_reason = "error"
            return [StreamEvent(type="error", error=f"Unrecognized chunk: {line[:200]}")]

        content = message.get("content")
        if not isinstance(content, str) or not content:
            return []

        events: list[StreamEvent] = []
        if not self.text_started:
            self.text_started = True
            events.append(StreamEvent(type="text-start", id=TEXT_ID))
        events.append(StreamEvent(type="text-delta", id=TEXT_ID, delta=content))
        return events


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@dataclass
class LocalModelHealth:
    status: str  # ok | model_missing | http_error | timeout | network_error
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


def _model_listed(model: str, names: list[str]) -> bool:
    if model in names:
        return True
    if ":" not in model:
        return f"{model}:latest" in names
    return False


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class OllamaChatModel:
    """``LanguageModel`` backed by a local Ollama server."""

    provider = "ollama"

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        url = httpx.URL(base_url)
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Invalid local model base URL: {base_url!r}")
        if not model:
            raise ValueError("A local model id is required")

        self.base_url = base_url.rstrip("/")
        self.model_id = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(None, connect=10.0),
        )

    def _body(self, call: CallOptions, *, stream: bool) -> dict[str, Any]:
        return {
            "model": self.model_id,
            "messages": convert_messages(call.prompt),
            "options": build_options(call),
            "stream": stream,
        }

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            await response.aread()
            body = response.text
        except httpx.HTTPError:
            body = ""
        await response.aclose()
        raise ProviderError(
            f"Local model request failed with status {response.status_code}",
            status_code=response.status_code,
            body=body,
        )

    async def generate(self, call: CallOptions) -> GenerateResult:
        warnings = collect_warnings(call)
        response = await self._client.post(
            f"{self.base_url}/api/chat", json=self._body(call, stream=False)
        )
        await self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Local model returned invalid JSON", body=response.text) from exc

        message = payload.get("message") or {}
        content = message.get("content")
        return GenerateResult(
            text=content if isinstance(content, str) else "",
            finish_reason=map_finish_reason(payload.get("done_reason")),
            usage=map_usage(payload),
            warnings=warnings,
            model_id=self.model_id,
        )

    async def stream(self, call: CallOptions) -> StreamResult:
        warnings = collect_warnings(call)
        request = self._client.build_request(
            "POST", f"{self.base_url}/api/chat", json=self._body(call, stream=True)
        )
        response = await self._client.send(request, stream=True)
        await self._raise_for_status(response)
        return StreamResult(events=self._iter_events(response), warnings=warnings)

    async def _iter_events(self, response: httpx.Response) -> AsyncIterator[StreamEvent]:
        parser = NDJSONStreamParser()
        try:
            yield StreamEvent(type="response-metadata", model_id=self.model_id)
            async for chunk in response.aiter_text():
                for event in parser.feed(chunk):
                    yield event
            for event in parser.close():
                yield event
        finally:
            # Runs on normal completion and when the consumer closes us early.
            await response.aclose()

    async def check_health(self, timeout: float = HEALTH_CHECK_TIMEOUT) -> LocalModelHealth:
        """Probe the model listing endpoint and classify the outcome."""
        url = f"{self.base_url}/api/tags"
        try:
            response = await asyncio.wait_for(
                self._client.get(url, timeout=timeout), timeout=timeout
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return LocalModelHealth(
                status="timeout",
                code="LOCAL_MODEL_TIMEOUT",
                message=f"Local model endpoint did not answer within {timeout:g}s",
                details={"model": self.model_id, "baseUrl": self.base_url},
            )
        except httpx.HTTPError as exc:
            return LocalModelHealth(
                status="network_error",
                code="LOCAL_MODEL_UNREACHABLE",
                message=f"Cannot connect to local model endpoint: {type(exc).__name__}",
                details={"model": self.model_id, "baseUrl": self.base_url},
            )

        if not response.is_success:
            return LocalModelHealth(
                status="http_error",
                code="LOCAL_MODEL_HTTP_ERROR",
                message=f"Local model endpoint returned HTTP {response.status_code}",
                details={"model": self.model_id, "status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        raw_models = payload.get("models") if isinstance(payload, dict) else None
        names = [
            m["name"]
            for m in raw_models or []
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        ]

        if not _model_listed(self.model_id, names):
            return LocalModelHealth(
                status="model_missing",
                code="LOCAL_MODEL_MISSING",
                message=f"Model '{self.model_id}' is not available on the local endpoint",
                details={"model": self.model_id, "available": names},
            )

        return LocalModelHealth(
            status="ok",
            code="LOCAL_MODEL_OK",
            message=f"Local model '{self.model_id}' is available",
            details={"model": self.model_id, "available": names},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

# Language model protocol: shared call/result/event types for every backend.
# Hosted, BYOK and local adapters all implement LanguageModel.

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

FinishReason = Literal["stop", "length", "tool-calls", "content-filter", "error", "other"]

StreamEventType = Literal[
    "response-metadata",
    "text-start",
    "text-delta",
    "text-end",
    "finish",
    "error",
]


@dataclass
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    def to_dict(self) -> dict[str, int | None]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class MessagePart:
    """One part of a prompt message.

    ``type`` is ``text``, ``reasoning`` or ``tool-result``. Tool results carry
    ``tool_call_id`` and ``output = {"type": "text"|"error-text"|"json", "value": ...}``.
    """

    type: str
    text: str = ""
    tool_call_id: str | None = None
    output: dict[str, Any] | None = None


@dataclass
class PromptMessage:
    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[MessagePart]

    @classmethod
    def text(cls, role: str, content: str) -> PromptMessage:
        return cls(role=role, content=[MessagePart(type="text", text=content)])  # type: ignore[arg-type]


@dataclass
class CallOptions:
    """Backend-independent generation request."""

    prompt: list[PromptMessage]
    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] | None = None
    seed: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | None = None  # "auto" | "none" | "required"
    response_format: dict[str, Any] | None = None
    web_search: bool = False


@dataclass
class CallWarning:
    type: Literal["unsupported-setting", "other"]
    setting: str
    details: str = ""


@dataclass
class GenerateResult:
    text: str
    finish_reason: FinishReason
    usage: Usage
    warnings: list[CallWarning] = field(default_factory=list)
    model_id: str | None = None


@dataclass
class StreamEvent:
    type: StreamEventType
    id: str | None = None
    delta: str = ""
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    error: Any = None
    model_id: str | None = None


@dataclass
class StreamResult:
    """Result of ``LanguageModel.stream()``: warnings plus the event iterator."""

    events: AsyncIterator[StreamEvent]
    warnings: list[CallWarning] = field(default_factory=list)


@runtime_checkable
class LanguageModel(Protocol):
    """Capability contract shared by hosted, BYOK and local backends."""

    provider: str
    model_id: str

    async def generate(self, call: CallOptions) -> GenerateResult: ...

    async def stream(self, call: CallOptions) -> StreamResult: ...

# Request normalizer: turns a raw chat body into a validated ChatRequest.
#
# Accepts both the client shape ({sessionId, message | messages, selectedModel,
# webSearchEnabled, byokKey}) and the normalized snake_case shape, so running
# a normalized request through again yields the same ChatRequest.

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from therapychat.errors import ApiErrorCode, PayloadTooLargeError, ValidationError

MAX_MESSAGE_CHARS = 10_000
SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"


class ChatRequest(BaseModel):
    """A validated, normalized chat request."""

    model_config = ConfigDict(frozen=True)

    session_id: str | None = Field(default=None, pattern=SESSION_ID_PATTERN)
    message: str = Field(..., max_length=MAX_MESSAGE_CHARS)
    model: str | None = None
    web_search_requested: bool = False
    byok_key: str | None = Field(default=None, repr=False)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message must not be empty")
        return value


class ForwardedMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    id: str | None = None


def read_request_body(raw: bytes, max_bytes: int) -> dict[str, Any]:
    """Parse a JSON object body, rejecting oversized payloads before parsing."""
    if len(raw) > max_bytes:
        raise PayloadTooLargeError(
            "Request too large", details=f"Body exceeds {max_bytes} bytes"
        )
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(
            "Invalid JSON body", details=str(exc), code=ApiErrorCode.INVALID_REQUEST_FORMAT
        ) from exc
    if not isinstance(body, dict):
        raise ValidationError(
            "Request body must be a JSON object", code=ApiErrorCode.INVALID_REQUEST_FORMAT
        )
    return body


def _message_text(entry: dict[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, str):
        return content
    parts = entry.get("parts")
    if isinstance(parts, list):
        return "".join(
            p["text"]
            for p in parts
            if isinstance(p, dict) and p.get("type") == "text" and isinstance(p.get("text"), str)
        )
    return ""


def extract_message(body: dict[str, Any]) -> str:
    """Flat ``message`` first, else the first user entry of ``messages``."""
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    messages = body.get("messages")
    if isinstance(messages, list):
        for entry in messages:
            if isinstance(entry, dict) and entry.get("role") == "user":
                return _message_text(entry)
    return ""


def _first_str(body: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_chat_request(body: dict[str, Any]) -> ChatRequest:
    """Validate and normalize a parsed chat body. Pure, no side effects."""
    try:
        return ChatRequest(
            session_id=_first_str(body, "sessionId", "session_id"),
            message=extract_message(body),
            model=_first_str(body, "selectedModel", "model"),
            web_search_requested=bool(
                body.get("webSearchEnabled", body.get("web_search_requested", False))
            ),
            byok_key=_first_str(body, "byokKey", "byok_key"),
        )
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError("Invalid request data", details=details) from exc


def forwarded_messages(body: dict[str, Any], request: ChatRequest) -> list[ForwardedMessage]:
    """Conversation turns to forward to the model for this request.

    Prefers the client's ``messages`` list (user/assistant entries only, ids
    kept); otherwise a single user turn built from the normalized message.
    """
    messages = body.get("messages")
    if not isinstance(messages, list):
        return [ForwardedMessage(role="user", content=request.message)]

    forwarded: list[ForwardedMessage] = []
    for entry in messages:
        if not isinstance(entry, dict) or entry.get("role") not in ("user", "assistant"):
            continue
        msg_id = entry.get("id")
        forwarded.append(
            ForwardedMessage(
                role=entry["role"],
                content=_message_text(entry),
                id=msg_id if isinstance(msg_id, str) else None,
            )
        )
    return forwarded or [ForwardedMessage(role="user", content=request.message)]

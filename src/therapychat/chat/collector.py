"""Server-side capture of the assistant reply.

The collector reads the same SSE bytes the client receives, accumulates the
text up to a character cap and writes exactly one assistant message when the
stream ends. Store failures are logged and swallowed: the client stream has
already been delivered and must not break because persistence did.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from therapychat.chat.history import SessionOwnership
from therapychat.store.models import ChatMessage
from therapychat.store.protocol import SessionStoreProtocol

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


def extract_chunk(payload: Any) -> str:
    """Pull the text out of one streaming payload.

    Supported shapes: ``{"text": ...}``, ``{"parts": [{"type": "text", "text": ...}]}``
    and ``{"delta": {"text": ...}}``. Anything else contributes nothing.
    """
    if not isinstance(payload, dict):
        return ""

    text = payload.get("text")
    if isinstance(text, str):
        return text

    parts = payload.get("parts")
    if isinstance(parts, list):
        return "".join(
            part["text"]
            for part in parts
            if isinstance(part, dict)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        )

    delta = payload.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]

    return ""


def append_with_limit(current: str, addition: str, limit: int) -> tuple[str, bool]:
    """Append without exceeding ``limit`` characters.

    Returns the new value and whether anything had to be dropped.
    """
    if len(current) >= limit:
        return current, bool(addition)
    remaining = limit - len(current)
    if len(addition) <= remaining:
        return current + addition, False
    return current + addition[:remaining], True


class AssistantResponseCollector:
    """Accumulates one assistant reply and persists it once."""

    def __init__(
        self,
        *,
        session_id: str | None,
        ownership: SessionOwnership,
        model_id: str,
        request_id: str,
        max_chars: int,
        store: SessionStoreProtocol,
    ):
        self.session_id = session_id
        self.ownership = ownership
        self.model_id = model_id
        self.request_id = request_id
        self.max_chars = max_chars
        self._store = store
        self._text = ""
        self._truncated = False
        self._persisted = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def was_truncated(self) -> bool:
        return self._truncated

    def set_model_id(self, model_id: str) -> None:
        if model_id:
            self.model_id = model_id

    def append(self, chunk: str) -> bool:
        """Add text to the buffer. Returns True once the cap has been hit."""
        if self._truncated:
            return True
        if not chunk:
            return False
        self._text, truncated = append_with_limit(self._text, chunk, self.max_chars)
        if truncated:
            self._truncated = True
            logger.warning(
                "Assistant response truncated at %d characters",
                self.max_chars,
                extra={"request_id": self.request_id, "session_id": self.session_id},
            )
        return self._truncated

    async def persist(self) -> bool:
        """Write the assistant message. Returns True if a row was written.

        Only the first call does anything; later calls are no-ops.
        """
        if self._persisted:
            return False
        self._persisted = True

        if not self.session_id or not self.ownership.valid:
            return False
        content = self._text.strip()
        if not content:
            return False

        message = ChatMessage(
            session_id=self.session_id,
            role="assistant",
            content=content,
            model_used=self.model_id,
        )
        try:
            await self._store.create_message(message)
        except Exception:
            logger.error(
                "Failed to persist assistant response",
                exc_info=True,
                extra={
                    "request_id": self.request_id,
                    "session_id": self.session_id,
                    "model_id": self.model_id,
                    "error_type": "persistence_error",
                },
            )
            return False

        logger.debug(
            "Persisted assistant response (%d chars%s)",
            len(self._text),
            ", truncated" if self._truncated else "",
            extra={"request_id": self.request_id, "session_id": self.session_id},
        )
        return True


def _handle_line(line: str, collector: AssistantResponseCollector) -> bool:
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return False
    data = line[len(DATA_PREFIX):].strip()
    if not data or data == "[DONE]":
        return False
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return False
    if isinstance(payload, dict):
        metadata = payload.get("messageMetadata")
        if isinstance(metadata, dict) and isinstance(metadata.get("modelId"), str):
            collector.set_model_id(metadata["modelId"])
    return collector.append(extract_chunk(payload))


async def collect_sse(
    chunks: AsyncIterator[bytes], collector: AssistantResponseCollector
) -> None:
    """Feed an SSE byte stream into ``collector`` and persist at the end.

    Reading stops as soon as the cap is reached. ``persist()`` runs however
    the stream ends, including errors and cancellation.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    try:
        async for chunk in chunks:
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            for line in lines:
                if _handle_line(line, collector):
                    return
        buffer += decoder.decode(b"", final=True)
        if buffer:
            _handle_line(buffer, collector)
    finally:
        await collector.persist()

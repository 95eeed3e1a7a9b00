"""In-memory session store for development and tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from therapychat.store.models import ChatMessage, SessionRecord, generate_id


class InMemorySessionStore:
    """Dict-backed implementation of ``SessionStoreProtocol``."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    async def create_session(
        self, user_id: str, title: str | None = None, *, session_id: str | None = None
    ) -> SessionRecord:
        async with self._lock:
            record = SessionRecord(id=session_id or generate_id(), user_id=user_id)
            if title:
                record.title = title
            self._sessions[record.id] = record
            self._messages.setdefault(record.id, [])
            return replace(record)

    async def get_session_for_user(
        self, session_id: str, user_id: str, *, include_messages: bool = False
    ) -> SessionRecord | None:
        record = self._sessions.get(session_id)
        if record is None or record.user_id != user_id:
            return None
        messages = list(self._messages.get(session_id, [])) if include_messages else None
        return replace(record, messages=messages)

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        messages = self._messages.get(session_id, [])
        return sorted(messages, key=lambda m: m.created_at)

    async def create_message(self, message: ChatMessage) -> str:
        async with self._lock:
            if message.session_id not in self._sessions:
                raise KeyError(f"Unknown session: {message.session_id}")
            self._messages.setdefault(message.session_id, []).append(message)
            return message.id

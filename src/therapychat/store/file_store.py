"""File-based session store.

Storage layout::

    <base_path>/
        sessions.json       # All session records
        messages.json       # All messages (indexed by session_id in memory)

Design notes:
- Single JSON file per entity type, loaded into in-memory indexes on start
- Atomic writes using temp file + rename
- Suitable for a single-process personal deployment
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from therapychat.store.models import ChatMessage, SessionRecord, generate_id

logger = logging.getLogger(__name__)


class FileSessionStore:
    """JSON-file implementation of ``SessionStoreProtocol``."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

        self._sessions_file = self.base_path / "sessions.json"
        self._messages_file = self.base_path / "messages.json"

        self._sessions: dict[str, SessionRecord] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._lock = asyncio.Lock()

        self._load_all()

    # =========================================================================
    # File I/O Helpers
    # =========================================================================

    def _load_json(self, path: Path) -> list[dict[str, Any]]:
        """Load a JSON file, returning empty list if not found."""
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Error loading %s: %s", path, e)
            return []

    def _save_json(self, path: Path, data: list[dict[str, Any]]) -> None:
        """Save data to JSON file atomically. Raises ``OSError`` on failure."""
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def _load_all(self) -> None:
        for data in self._load_json(self._sessions_file):
            record = SessionRecord.from_dict(data)
            self._sessions[record.id] = record
        for data in self._load_json(self._messages_file):
            message = ChatMessage.from_dict(data)
            self._messages.setdefault(message.session_id, []).append(message)

    def _save_sessions(self) -> None:
        self._save_json(self._sessions_file, [s.to_dict() for s in self._sessions.values()])

    def _save_messages(self) -> None:
        flat = [m.to_dict() for msgs in self._messages.values() for m in msgs]
        self._save_json(self._messages_file, flat)

    # =========================================================================
    # SessionStoreProtocol
    # =========================================================================

    async def create_session(self, user_id: str, title: str | None = None) -> SessionRecord:
        async with self._lock:
            record = SessionRecord(id=generate_id(), user_id=user_id)
            if title:
                record.title = title
            self._sessions[record.id] = record
            self._save_sessions()
            return replace(record)

    async def get_session_for_user(
        self, session_id: str, user_id: str, *, include_messages: bool = False
    ) -> SessionRecord | None:
        record = self._sessions.get(session_id)
        if record is None or record.user_id != user_id:
            return None
        messages = await self.list_messages(session_id) if include_messages else None
        return replace(record, messages=messages)

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        return sorted(self._messages.get(session_id, []), key=lambda m: m.created_at)

    async def create_message(self, message: ChatMessage) -> str:
        async with self._lock:
            if message.session_id not in self._sessions:
                raise KeyError(f"Unknown session: {message.session_id}")
            self._messages.setdefault(message.session_id, []).append(message)
            try:
                self._save_messages()
            except OSError:
                self._messages[message.session_id].remove(message)
                raise
            return message.id

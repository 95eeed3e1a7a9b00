"""Session store records.

Timestamps are ISO 8601 strings (UTC) so records round-trip through JSON
without custom encoders. ``ChatMessage`` is immutable once written.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

Role = Literal["user", "assistant"]


def generate_id() -> str:
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ChatMessage:
    session_id: str
    role: Role
    content: str
    model_used: str | None = None
    id: str = field(default_factory=generate_id)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role,
            "content": self.content,
            "model_used": self.model_used,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            id=data.get("id", generate_id()),
            session_id=data["session_id"],
            role=data.get("role", "user"),
            content=data.get("content", ""),
            model_used=data.get("model_used"),
            created_at=data.get("created_at", now_iso()),
        )


@dataclass
class SessionRecord:
    id: str
    user_id: str
    title: str = "New conversation"
    created_at: str = field(default_factory=now_iso)
    # Populated only when the store preloads history alongside the session.
    messages: list[ChatMessage] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionRecord:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title", "New conversation"),
            created_at=data.get("created_at", now_iso()),
        )

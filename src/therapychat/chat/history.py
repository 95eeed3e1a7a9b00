# Session history loader: ownership check, then prior turns oldest first.
# Ownership always resolves before history is read; an invalid session never
# loads any messages.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from therapychat.auth import Principal
from therapychat.store.models import SessionRecord
from therapychat.store.protocol import SessionStoreProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionOwnership:
    valid: bool
    session: SessionRecord | None = None


@dataclass(frozen=True)
class HistoryMessage:
    role: Literal["user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


NO_SESSION = SessionOwnership(valid=False)


async def resolve_session_ownership(
    store: SessionStoreProtocol,
    session_id: str | None,
    principal: Principal,
) -> SessionOwnership:
    """Check that ``session_id`` belongs to ``principal``.

    No session id means a new conversation: invalid ownership, no store query.
    """
    if not session_id:
        return NO_SESSION

    session = await store.get_session_for_user(
        session_id, principal.clerk_id, include_messages=True
    )
    if session is None:
        logger.info(
            "Session not found or not owned by caller",
            extra={"session_id": session_id},
        )
        return NO_SESSION
    return SessionOwnership(valid=True, session=session)


async def load_session_history(
    store: SessionStoreProtocol,
    ownership: SessionOwnership,
) -> list[HistoryMessage]:
    if not ownership.valid or ownership.session is None:
        return []

    messages = ownership.session.messages
    if messages is None:
        messages = await store.list_messages(ownership.session.id)

    return [
        HistoryMessage(role=m.role, content=m.content)
        for m in sorted(messages, key=lambda m: m.created_at)
    ]

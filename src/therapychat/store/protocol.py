# Session store protocol: the narrow interface the chat core needs from storage.
# Implement this to plug in a database-backed store.

from typing import Protocol

from therapychat.store.models import ChatMessage, SessionRecord


class SessionStoreProtocol(Protocol):
    async def create_session(self, user_id: str, title: str | None = None) -> SessionRecord:
        """Create an empty session owned by ``user_id``."""
        ...

    async def get_session_for_user(
        self, session_id: str, user_id: str, *, include_messages: bool = False
    ) -> SessionRecord | None:
        """Return the session only if it exists and belongs to ``user_id``."""
        ...

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """All messages of a session, oldest first."""
        ...

    async def create_message(self, message: ChatMessage) -> str:
        """Append a message, return its ID."""
        ...

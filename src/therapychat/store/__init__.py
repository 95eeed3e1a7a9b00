"""Session and message storage."""

from therapychat.config import Settings
from therapychat.store.file_store import FileSessionStore
from therapychat.store.memory import InMemorySessionStore
from therapychat.store.models import ChatMessage, SessionRecord
from therapychat.store.protocol import SessionStoreProtocol


def create_store(settings: Settings) -> SessionStoreProtocol:
    """Build the configured store backend."""
    if settings.store_backend == "file":
        return FileSessionStore(settings.store_path)
    return InMemorySessionStore()


__all__ = [
    "ChatMessage",
    "FileSessionStore",
    "InMemorySessionStore",
    "SessionRecord",
    "SessionStoreProtocol",
    "create_store",
]

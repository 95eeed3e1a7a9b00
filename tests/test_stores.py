# Tests for the in-memory and file-backed session stores.

import json

import pytest

from therapychat.store import FileSessionStore, InMemorySessionStore, create_store
from therapychat.store.models import ChatMessage, SessionRecord


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return FileSessionStore(tmp_path / "store")


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_create_session(self, any_store):
        session = await any_store.create_session("u1", "First talk")
        assert session.user_id == "u1"
        assert session.title == "First talk"

    @pytest.mark.asyncio
    async def test_default_title(self, any_store):
        session = await any_store.create_session("u1")
        assert session.title == "New conversation"

    @pytest.mark.asyncio
    async def test_ownership_enforced(self, any_store):
        session = await any_store.create_session("u1")
        assert await any_store.get_session_for_user(session.id, "u1") is not None
        assert await any_store.get_session_for_user(session.id, "u2") is None
        assert await any_store.get_session_for_user("missing", "u1") is None

    @pytest.mark.asyncio
    async def test_messages_preloaded_on_request(self, any_store):
        session = await any_store.create_session("u1")
        await any_store.create_message(ChatMessage(session.id, "user", "hi"))

        plain = await any_store.get_session_for_user(session.id, "u1")
        loaded = await any_store.get_session_for_user(session.id, "u1", include_messages=True)
        assert plain.messages is None
        assert [m.content for m in loaded.messages] == ["hi"]

    @pytest.mark.asyncio
    async def test_messages_oldest_first(self, any_store):
        session = await any_store.create_session("u1")
        late = ChatMessage(session.id, "assistant", "b", created_at="2026-01-02T00:00:00+00:00")
        early = ChatMessage(session.id, "user", "a", created_at="2026-01-01T00:00:00+00:00")
        await any_store.create_message(late)
        message_id = await any_store.create_message(early)

        assert message_id == early.id
        messages = await any_store.list_messages(session.id)
        assert [m.content for m in messages] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_message_for_unknown_session(self, any_store):
        with pytest.raises(KeyError):
            await any_store.create_message(ChatMessage("missing", "user", "hi"))


class TestFileSessionStore:
    @pytest.mark.asyncio
    async def test_survives_restart(self, tmp_path):
        path = tmp_path / "store"
        store = FileSessionStore(path)
        session = await store.create_session("u1", "Persisted")
        await store.create_message(ChatMessage(session.id, "user", "remember me", model_used=None))
        await store.create_message(
            ChatMessage(session.id, "assistant", "I will.", model_used="default")
        )

        reopened = FileSessionStore(path)
        record = await reopened.get_session_for_user(session.id, "u1", include_messages=True)
        assert record.title == "Persisted"
        assert [(m.role, m.content, m.model_used) for m in record.messages] == [
            ("user", "remember me", None),
            ("assistant", "I will.", "default"),
        ]

    @pytest.mark.asyncio
    async def test_write_failure_rolls_back(self, tmp_path, monkeypatch):
        store = FileSessionStore(tmp_path / "store")
        session = await store.create_session("u1")

        def broken(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(store, "_save_json", broken)
        with pytest.raises(OSError):
            await store.create_message(ChatMessage(session.id, "user", "lost"))
        assert await store.list_messages(session.id) == []

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "store"
        path.mkdir()
        (path / "sessions.json").write_text("{not json", encoding="utf-8")
        store = FileSessionStore(path)
        assert store._sessions == {}

    def test_files_are_plain_json(self, tmp_path):
        path = tmp_path / "store"
        FileSessionStore(path)._save_json(path / "sessions.json", [{"id": "s"}])
        assert json.loads((path / "sessions.json").read_text()) == [{"id": "s"}]


class TestRecords:
    def test_message_round_trip(self):
        message = ChatMessage("s1", "assistant", "text", model_used="local")
        assert ChatMessage.from_dict(message.to_dict()) == message

    def test_session_to_dict_omits_messages(self):
        record = SessionRecord(id="s1", user_id="u1", messages=[])
        assert "messages" not in record.to_dict()


class TestCreateStore:
    def test_memory_default(self, settings):
        assert isinstance(create_store(settings), InMemorySessionStore)

    def test_file_backend(self, settings):
        settings.store_backend = "file"
        store = create_store(settings)
        assert isinstance(store, FileSessionStore)
        assert store.base_path == settings.store_path

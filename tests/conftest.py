# Shared fixtures: test settings, a scripted language model and a registry
# wired to it.

from __future__ import annotations

import pytest

from therapychat.config import Settings
from therapychat.llm.protocol import CallOptions, StreamEvent, StreamResult, Usage
from therapychat.llm.registry import ModelRegistry, ModelSpec
from therapychat.store.memory import InMemorySessionStore


class ScriptedModel:
    """LanguageModel double that replays a fixed list of stream events."""

    provider = "scripted"

    def __init__(self, model_id: str, events: list[StreamEvent] | None = None, *, fail=None):
        self.model_id = model_id
        self.events = events if events is not None else text_events("Hello there.")
        self.fail = fail
        self.calls: list[CallOptions] = []
        self.closed = False

    async def generate(self, call):
        raise NotImplementedError

    async def aclose(self):
        self.closed = True

    async def stream(self, call: CallOptions) -> StreamResult:
        self.calls.append(call)
        if self.fail is not None:
            raise self.fail

        async def _events():
            for event in self.events:
                if isinstance(event, Exception):
                    raise event
                yield event

        return StreamResult(events=_events())


def text_events(*chunks: str, finish_reason: str = "stop") -> list[StreamEvent]:
    events = [StreamEvent(type="text-start", id="txt-0")]
    events += [StreamEvent(type="text-delta", id="txt-0", delta=c) for c in chunks]
    events += [
        StreamEvent(type="text-end", id="txt-0"),
        StreamEvent(
            type="finish",
            finish_reason=finish_reason,
            usage=Usage(input_tokens=3, output_tokens=len(chunks), total_tokens=3 + len(chunks)),
        ),
    ]
    return events


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        environment="test",
        default_model_id="default",
        analytical_model_id="analytical",
        local_model_id="local",
        byok_model_id="byok",
        await_persistence=True,
        store_path=tmp_path / "sessions",
    )


@pytest.fixture
def models():
    return {
        "default": ScriptedModel("default"),
        "analytical": ScriptedModel("analytical"),
        "local": ScriptedModel("local"),
    }


@pytest.fixture
def registry(settings, models):
    specs = [
        ModelSpec("default", "Default", "hosted"),
        ModelSpec("analytical", "Analytical (web search)", "hosted", supports_web_search=True),
        ModelSpec("byok", "Your own key", "byok"),
        ModelSpec("local", "Local", "local"),
    ]
    return ModelRegistry(settings, specs, dict(models))


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def app(settings, store, registry):
    from therapychat.api.serve import create_api_app

    return create_api_app(settings, store=store, registry=registry)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)

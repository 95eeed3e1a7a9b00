# Tests for the UI-message SSE encoder.

import json

import pytest

from therapychat.chat.sse import ERROR_TEXT_ID, encode_ui_stream, sse_frame
from therapychat.errors import GENERIC_MESSAGE, RATE_LIMIT_MESSAGE, SERVICE_MESSAGE
from therapychat.llm.protocol import StreamEvent, Usage


def text_events(*chunks):
    events = [StreamEvent(type="text-start", id="txt-0")]
    events += [StreamEvent(type="text-delta", id="txt-0", delta=c) for c in chunks]
    events += [
        StreamEvent(type="text-end", id="txt-0"),
        StreamEvent(
            type="finish",
            finish_reason="stop",
            usage=Usage(input_tokens=3, output_tokens=len(chunks), total_tokens=3 + len(chunks)),
        ),
    ]
    return events


async def _events(items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


async def _encode(items, model_id="default"):
    frames = [
        frame
        async for frame in encode_ui_stream(
            _events(items), message_id="msg-1", model_id=model_id, request_id="req-1"
        )
    ]
    assert frames[-1] == b"data: [DONE]\n\n"
    return [json.loads(f[len(b"data: ") :]) for f in frames[:-1]]


class TestSseFrame:
    def test_json_payload(self):
        assert sse_frame({"type": "text-delta", "text": "é"}) == (
            'data: {"type": "text-delta", "text": "é"}\n\n'.encode()
        )

    def test_raw_string(self):
        assert sse_frame("[DONE]") == b"data: [DONE]\n\n"


class TestEncodeUiStream:
    @pytest.mark.asyncio
    async def test_happy_path(self):
        payloads = await _encode(text_events("Hello ", "there."))

        assert payloads[0] == {
            "type": "start",
            "messageId": "msg-1",
            "messageMetadata": {"modelId": "default"},
        }
        assert [p["type"] for p in payloads] == [
            "start",
            "text-start",
            "text-delta",
            "text-delta",
            "text-end",
            "finish",
        ]
        assert "".join(p.get("text", "") for p in payloads) == "Hello there."
        finish = payloads[-1]
        assert finish["finishReason"] == "stop"
        assert finish["messageMetadata"] == {
            "modelId": "default",
            "usage": {"inputTokens": 3, "outputTokens": 2, "totalTokens": 5},
        }

    @pytest.mark.asyncio
    async def test_metadata_frame_on_model_change(self):
        payloads = await _encode(
            [
                StreamEvent(type="response-metadata", model_id="default"),
                StreamEvent(type="response-metadata", model_id="provider-x"),
                *text_events("hi"),
            ]
        )
        meta = [p for p in payloads if p["type"] == "message-metadata"]
        assert meta == [{"type": "message-metadata", "messageMetadata": {"modelId": "provider-x"}}]
        assert payloads[-1]["messageMetadata"]["modelId"] == "provider-x"

    @pytest.mark.asyncio
    async def test_error_event_after_text(self):
        payloads = await _encode(
            [
                StreamEvent(type="text-start", id="txt-0"),
                StreamEvent(type="text-delta", id="txt-0", delta="Partial"),
                StreamEvent(type="error", error="Rate limit reached for model"),
                StreamEvent(type="error", error="service unavailable"),
                StreamEvent(type="text-end", id="txt-0"),
                StreamEvent(type="finish", finish_reason="error", usage=Usage()),
            ]
        )
        errors = [p for p in payloads if p.get("id") == ERROR_TEXT_ID]
        assert [p["type"] for p in errors] == ["text-start", "text-delta", "text-end"]
        assert errors[1]["text"] == "\n\n" + RATE_LIMIT_MESSAGE
        assert SERVICE_MESSAGE not in json.dumps(payloads)
        assert payloads[-1]["finishReason"] == "error"

    @pytest.mark.asyncio
    async def test_exception_before_text(self):
        payloads = await _encode([TimeoutError("read timeout")])
        deltas = [p for p in payloads if p["type"] == "text-delta"]
        assert deltas == [{"type": "text-delta", "id": ERROR_TEXT_ID, "text": SERVICE_MESSAGE}]
        assert payloads[-1]["finishReason"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_exception_is_generic(self):
        payloads = await _encode([*text_events("ok")[:2], ValueError("boom")])
        deltas = [p["text"] for p in payloads if p["type"] == "text-delta"]
        assert deltas == ["ok", "\n\n" + GENERIC_MESSAGE]

    @pytest.mark.asyncio
    async def test_no_finish_event(self):
        payloads = await _encode([StreamEvent(type="text-delta", id="t", delta="x")])
        assert payloads[-1]["finishReason"] == "other"
        assert payloads[-1]["messageMetadata"]["usage"] == {
            "inputTokens": None,
            "outputTokens": None,
            "totalTokens": None,
        }

    @pytest.mark.asyncio
    async def test_empty_delta_skipped(self):
        payloads = await _encode([StreamEvent(type="text-delta", id="t", delta="")])
        assert [p["type"] for p in payloads] == ["start", "finish"]

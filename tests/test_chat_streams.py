# Tests for stream splitting (tee / buffered replay) and response headers.

import asyncio

import pytest

from therapychat.chat.streams import (
    BufferedReplaySplitter,
    ObserverTasks,
    TeeSplitter,
    attach_response_headers,
    choose_splitter,
)

CHUNKS = [b"data: one\n\n", b"data: tw", b"o\n\ndata: three\n\n"]


async def _source(chunks=CHUNKS):
    for chunk in chunks:
        yield chunk


class Recorder:
    def __init__(self):
        self.chunks: list[bytes] = []
        self.done = asyncio.Event()

    async def __call__(self, stream):
        try:
            async for chunk in stream:
                self.chunks.append(chunk)
        finally:
            self.done.set()


class TestTeeSplitter:
    @pytest.mark.asyncio
    async def test_both_branches_see_same_bytes(self):
        recorder = Recorder()
        body = await TeeSplitter(await_observer=True).split(_source(), recorder)
        received = [chunk async for chunk in body]

        assert received == CHUNKS
        assert b"".join(recorder.chunks) == b"".join(CHUNKS)

    @pytest.mark.asyncio
    async def test_observer_does_not_block_client(self):
        release = asyncio.Event()
        seen = []

        async def slow_observer(stream):
            await release.wait()
            async for chunk in stream:
                seen.append(chunk)

        tasks = ObserverTasks()
        body = await TeeSplitter(tasks).split(_source(), slow_observer)
        received = [chunk async for chunk in body]

        assert received == CHUNKS
        assert seen == []
        release.set()
        await tasks.drain()
        assert b"".join(seen) == b"".join(CHUNKS)

    @pytest.mark.asyncio
    async def test_source_error_reaches_client_and_observer_finishes(self):
        recorder = Recorder()

        async def failing():
            yield b"data: a\n\n"
            raise ConnectionError("upstream gone")

        body = await TeeSplitter(await_observer=True).split(failing(), recorder)
        received = []
        with pytest.raises(ConnectionError):
            async for chunk in body:
                received.append(chunk)

        await asyncio.wait_for(recorder.done.wait(), 1)
        assert received == [b"data: a\n\n"]
        assert recorder.chunks == [b"data: a\n\n"]

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_upstream_and_observer_flushes(self):
        recorder = Recorder()
        produced = []

        async def endless():
            i = 0
            while True:
                produced.append(i)
                yield f"data: {i}\n\n".encode()
                i += 1
                await asyncio.sleep(0)

        body = await TeeSplitter().split(endless(), recorder)
        first = await body.__anext__()
        await body.aclose()

        await asyncio.wait_for(recorder.done.wait(), 1)
        assert first == b"data: 0\n\n"
        count = len(produced)
        await asyncio.sleep(0.01)
        assert len(produced) == count

    @pytest.mark.asyncio
    async def test_observer_failure_is_logged_not_raised(self, caplog):
        async def broken(stream):
            raise RuntimeError("observer crashed")

        body = await TeeSplitter(await_observer=True).split(_source(), broken)
        received = [chunk async for chunk in body]
        assert received == CHUNKS
        assert any("observer failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_sync_iterable_source(self):
        recorder = Recorder()
        body = await TeeSplitter(await_observer=True).split(list(CHUNKS), recorder)
        assert [chunk async for chunk in body] == CHUNKS


class TestBufferedReplaySplitter:
    @pytest.mark.asyncio
    async def test_observer_finishes_before_return(self):
        recorder = Recorder()
        body = await BufferedReplaySplitter().split(_source(), recorder)

        assert recorder.done.is_set()
        # Observer receives whole lines.
        assert recorder.chunks == [
            b"data: one\n",
            b"\n",
            b"data: two\n",
            b"\n",
            b"data: three\n",
            b"\n",
        ]
        assert [chunk async for chunk in body] == CHUNKS

    @pytest.mark.asyncio
    async def test_observer_failure_still_replays(self):
        async def broken(stream):
            raise RuntimeError("nope")

        body = await BufferedReplaySplitter().split(_source(), broken)
        assert [chunk async for chunk in body] == CHUNKS


class TestObserverTasks:
    @pytest.mark.asyncio
    async def test_tracks_until_done(self):
        tasks = ObserverTasks()
        gate = asyncio.Event()
        task = asyncio.create_task(gate.wait())
        tasks.track(task)
        assert len(tasks) == 1
        gate.set()
        await tasks.drain()
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        tasks = ObserverTasks()
        task = asyncio.create_task(asyncio.sleep(60))
        tasks.track(task)
        await tasks.drain(timeout=0.01)
        await asyncio.gather(task, return_exceptions=True)
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_drain_empty(self):
        await ObserverTasks().drain()


class TestChooseSplitter:
    def test_tee_for_async_source(self, settings):
        settings.stream_strategy = "tee"
        splitter = choose_splitter(settings, _source())
        assert isinstance(splitter, TeeSplitter)
        assert splitter.await_observer is True

    def test_buffer_when_configured(self, settings):
        settings.stream_strategy = "buffer"
        assert isinstance(choose_splitter(settings, _source()), BufferedReplaySplitter)

    def test_buffer_for_sync_source(self, settings):
        assert isinstance(choose_splitter(settings, list(CHUNKS)), BufferedReplaySplitter)

    def test_shares_task_tracker(self, settings):
        tasks = ObserverTasks()
        splitter = choose_splitter(settings, _source(), tasks)
        assert splitter.tasks is tasks


class TestResponseHeaders:
    def test_headers_set(self):
        headers = {"Cache-Control": "no-cache"}
        attach_response_headers(headers, "req-1", "analytical", "auto")
        assert headers == {
            "Cache-Control": "no-cache",
            "X-Request-Id": "req-1",
            "X-Model-Id": "analytical",
            "X-Tool-Choice": "auto",
        }

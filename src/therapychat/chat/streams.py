"""Splitting the client stream into a client branch and an observer branch.

Two strategies share one interface:

- ``TeeSplitter`` duplicates the stream as it flows. A pump task fans each
  chunk into two queues, so the client branch never waits on the observer.
- ``BufferedReplaySplitter`` reads the whole stream first, replays it line by
  line to the observer (which finishes before anything is returned) and then
  replays it to the client.

The observer (normally ``collect_sse``) is written once against this
interface and sees the same bytes under either strategy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    MutableMapping,
)
from typing import Protocol

from therapychat.config import Settings

logger = logging.getLogger(__name__)

Observer = Callable[[AsyncIterator[bytes]], Awaitable[None]]

_END = object()


class StreamSplitter(Protocol):
    async def split(
        self, source: AsyncIterable[bytes] | Iterable[bytes], observer: Observer
    ) -> AsyncIterator[bytes]:
        """Wire ``observer`` to a copy of ``source`` and return the client branch."""
        ...


class ObserverTasks:
    """Keeps fire-and-forget observer tasks alive until they finish.

    ``drain()`` is registered as a shutdown hook so in-flight persistence
    completes before the process exits.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 10.0) -> None:
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d unfinished persistence task(s)", len(pending))


async def _drain_queue(queue: asyncio.Queue) -> AsyncIterator[bytes]:
    while True:
        item = await queue.get()
        if item is _END:
            return
        if isinstance(item, BaseException):
            raise item
        yield item


class TeeSplitter:
    """Concurrent duplication of the stream.

    Args:
        tasks: Tracker that keeps the observer task referenced.
        await_observer: Wait for the observer to finish before the client
            branch completes. Used for tests and deterministic evals.
    """

    def __init__(self, tasks: ObserverTasks | None = None, *, await_observer: bool = False):
        self.tasks = tasks if tasks is not None else ObserverTasks()
        self.await_observer = await_observer

    async def split(
        self, source: AsyncIterable[bytes] | Iterable[bytes], observer: Observer
    ) -> AsyncIterator[bytes]:
        client_q: asyncio.Queue = asyncio.Queue()
        observer_q: asyncio.Queue = asyncio.Queue()

        async def pump() -> None:
            try:
                async for chunk in _aiter(source):
                    client_q.put_nowait(chunk)
                    observer_q.put_nowait(chunk)
            except Exception as exc:
                client_q.put_nowait(exc)
            finally:
                client_q.put_nowait(_END)
                observer_q.put_nowait(_END)

        async def observe() -> None:
            try:
                await observer(_drain_queue(observer_q))
            except Exception:
                logger.error("Stream observer failed", exc_info=True)

        pump_task = asyncio.create_task(pump())
        observer_task = asyncio.create_task(observe())
        self.tasks.track(observer_task)

        async def client_branch() -> AsyncIterator[bytes]:
            completed = False
            try:
                async for chunk in _drain_queue(client_q):
                    yield chunk
                completed = True
            finally:
                if not pump_task.done():
                    # Client went away: stop reading upstream, the observer
                    # still receives _END and flushes what it has.
                    pump_task.cancel()
            if completed and self.await_observer:
                await observer_task

        return client_branch()


class BufferedReplaySplitter:
    """Buffer everything, let the observer finish, then replay to the client."""

    async def split(
        self, source: AsyncIterable[bytes] | Iterable[bytes], observer: Observer
    ) -> AsyncIterator[bytes]:
        chunks = [chunk async for chunk in _aiter(source)]
        lines = b"".join(chunks).splitlines(keepends=True)
        try:
            await observer(_replay(lines))
        except Exception:
            logger.error("Stream observer failed", exc_info=True)
        return _replay(chunks)


async def _replay(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def _aiter(source: AsyncIterable[bytes] | Iterable[bytes]) -> AsyncIterator[bytes]:
    if isinstance(source, AsyncIterable):
        async for chunk in source:
            yield chunk
    else:
        for chunk in source:
            yield chunk


def choose_splitter(
    settings: Settings,
    source: AsyncIterable[bytes] | Iterable[bytes],
    tasks: ObserverTasks | None = None,
) -> StreamSplitter:
    """Tee for async sources unless buffering is configured."""
    if settings.stream_strategy == "tee" and isinstance(source, AsyncIterable):
        return TeeSplitter(tasks, await_observer=settings.await_persistence)
    return BufferedReplaySplitter()


def attach_response_headers(
    headers: MutableMapping[str, str],
    request_id: str,
    model_id: str,
    tool_choice: str,
) -> None:
    headers["X-Request-Id"] = request_id
    headers["X-Model-Id"] = model_id
    headers["X-Tool-Choice"] = tool_choice

# Tests for the LifecycleManager.

import pytest

from therapychat.lifecycle import LifecycleManager


class TestLifecycleManager:
    @pytest.mark.asyncio
    async def test_start_in_order_shutdown_in_reverse(self):
        calls = []
        manager = LifecycleManager()

        async def start_a():
            calls.append("start a")

        def start_b():
            calls.append("start b")

        async def stop_a():
            calls.append("stop a")

        async def stop_b():
            calls.append("stop b")

        manager.register("a", start=start_a, shutdown=stop_a)
        manager.register("b", start=start_b, shutdown=stop_b)
        assert manager.names == ["a", "b"]

        await manager.start_all()
        await manager.shutdown_all()
        assert calls == ["start a", "start b", "stop b", "stop a"]

    @pytest.mark.asyncio
    async def test_failed_start_skips_shutdown(self):
        stopped = []
        manager = LifecycleManager()

        async def boom():
            raise RuntimeError("cannot start")

        manager.register("broken", start=boom, shutdown=lambda: stopped.append("broken"))
        manager.register("ok", shutdown=lambda: stopped.append("ok"))

        await manager.start_all()
        await manager.shutdown_all()
        assert stopped == ["ok"]

    @pytest.mark.asyncio
    async def test_shutdown_errors_do_not_stop_others(self):
        stopped = []
        manager = LifecycleManager()

        async def fail():
            raise RuntimeError("cannot stop")

        manager.register("first", shutdown=lambda: stopped.append("first"))
        manager.register("second", shutdown=fail)

        await manager.start_all()
        await manager.shutdown_all()
        assert stopped == ["first"]

    @pytest.mark.asyncio
    async def test_start_all_is_idempotent(self):
        starts = []
        manager = LifecycleManager()
        manager.register("a", start=lambda: starts.append(1))
        await manager.start_all()
        await manager.start_all()
        assert starts == [1]

    @pytest.mark.asyncio
    async def test_shutdown_without_start(self):
        stopped = []
        manager = LifecycleManager()
        manager.register("a", shutdown=lambda: stopped.append("a"))
        await manager.shutdown_all()
        assert stopped == []

"""Explicit lifecycle management for long-lived components.

Components that own background work (the rate limiter sweep, HTTP clients
held by model adapters) register start/shutdown callbacks with a
``LifecycleManager``. The FastAPI lifespan owns one manager per app, so
nothing is started as a side effect of importing a module.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Ordered registry of start/shutdown callbacks.

    Components start in registration order and shut down in reverse.
    """

    def __init__(self) -> None:
        self._registry: dict[str, tuple[Callable | None, Callable | None]] = {}
        self._started: list[str] = []

    def register(
        self,
        name: str,
        *,
        start: Callable[[], Any] | None = None,
        shutdown: Callable[[], Any] | None = None,
    ) -> None:
        """Register a component's lifecycle callbacks.

        Args:
            name: Unique identifier (e.g. ``"rate_limiter"``).
            start: Async or sync callable run by ``start_all()``.
            shutdown: Async or sync callable run by ``shutdown_all()``.
        """
        self._registry[name] = (start, shutdown)

    @property
    def names(self) -> list[str]:
        return list(self._registry)

    async def start_all(self) -> None:
        """Start every registered component.

        A failing start is logged and the component is skipped at shutdown.
        """
        for name, (start_cb, _) in list(self._registry.items()):
            if name in self._started:
                continue
            try:
                if start_cb is not None:
                    await _maybe_await(start_cb())
                self._started.append(name)
                logger.debug("Started %s", name)
            except Exception:
                logger.warning("Error starting %s", name, exc_info=True)

    async def shutdown_all(self) -> None:
        """Shut down started components in reverse order.

        Errors are logged but don't prevent other shutdowns from running.
        """
        for name in reversed(self._started):
            _, shutdown_cb = self._registry.get(name, (None, None))
            if shutdown_cb is None:
                continue
            try:
                await _maybe_await(shutdown_cb())
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)
        self._started.clear()


async def _maybe_await(result: Any) -> Any:
    if asyncio.iscoroutine(result):
        return await result
    return result

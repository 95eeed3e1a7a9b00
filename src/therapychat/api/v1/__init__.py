# API v1 router aggregation.
#
# mount_v1_routers(app) registers all domain routers at /api/v1/ (canonical)
# and again at /api/ so existing clients keep working (POST /api/chat).

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("therapychat.api.v1.chat", "router", "Chat"),
    ("therapychat.api.v1.sessions", "router", "Sessions"),
    ("therapychat.api.v1.health", "router", "Health"),
]

API_PREFIXES = ("/api/v1", "/api")


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 domain routers on *app*.

    Each router is mounted at ``/api/v1/<prefix>`` and ``/api/<prefix>``.
    The ``/api`` alias is left out of the OpenAPI schema.
    """
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix="/api/v1")
        app.include_router(router, prefix="/api", include_in_schema=False)
        logger.debug("Mounted v1 router: %s (%s)", module_path, tag)

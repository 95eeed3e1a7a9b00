"""API server for ``therapychat serve``.

``create_api_app()`` builds the FastAPI application: CORS, request ids, the
error envelope handlers and the ``/api/v1`` (+ ``/api``) routers. Long-lived
components (model registry, rate limiter, session store, in-flight
persistence tasks) are owned by the app's lifespan through a
``LifecycleManager``; nothing starts at import time.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from therapychat.config import Settings
from therapychat.errors import ApiErrorCode, ChatError, get_error_info
from therapychat.lifecycle import LifecycleManager
from therapychat.llm.registry import ModelRegistry
from therapychat.store.protocol import SessionStoreProtocol

logger = logging.getLogger(__name__)

_BUILTIN_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:4000",
]


def create_api_app(
    settings: Settings | None = None,
    *,
    store: SessionStoreProtocol | None = None,
    registry: ModelRegistry | None = None,
) -> FastAPI:
    """Build the chat API application.

    ``store`` and ``registry`` may be injected (tests); otherwise they are
    built from ``settings``.
    """
    from fastapi.middleware.cors import CORSMiddleware

    from therapychat.api.responses import create_error_response, error_response_from_exception
    from therapychat.api.v1 import mount_v1_routers
    from therapychat.chat.streams import ObserverTasks
    from therapychat.security.rate_limiter import RateLimiter
    from therapychat.store import create_store

    settings = settings or Settings.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        lifecycle = LifecycleManager()
        app.state.lifecycle = lifecycle

        if owns_registry:
            lifecycle.register("model_registry", shutdown=app.state.registry.aclose)
        if settings.probe_local_on_startup:
            lifecycle.register("local_model_probe", start=app.state.registry.probe_local)

        lifecycle.register(
            "rate_limiter",
            start=app.state.rate_limiter.start,
            shutdown=app.state.rate_limiter.stop,
        )
        lifecycle.register("persistence_tasks", shutdown=app.state.observer_tasks.drain)

        await lifecycle.start_all()
        logger.info(
            "Chat API ready (models: %s)",
            ", ".join(spec.id for spec in app.state.registry.specs),
        )
        try:
            yield
        finally:
            await lifecycle.shutdown_all()

    app = FastAPI(
        title="therapychat API",
        description="Streaming therapeutic chat API.",
        version="1.0.0",
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store if store is not None else create_store(settings)
    owns_registry = registry is None
    app.state.registry = registry if registry is not None else ModelRegistry.from_settings(settings)
    app.state.rate_limiter = RateLimiter.from_settings(settings)
    app.state.observer_tasks = ObserverTasks()

    # --- CORS -----------------------------------------------------------
    origins = list(dict.fromkeys(_BUILTIN_ORIGINS + settings.api_cors_allowed_origins))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Clerk-User-Id", "X-BYOK-Key"],
        expose_headers=["X-Request-Id", "X-Model-Id", "X-Tool-Choice", "Retry-After"],
    )

    # --- Request ids ----------------------------------------------------
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    # --- Error envelope -------------------------------------------------
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return error_response_from_exception(exc, getattr(request.state, "request_id", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        info = get_error_info(ApiErrorCode.VALIDATION_ERROR)
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return create_error_response(
            "Invalid request data",
            info.http_status,
            code=ApiErrorCode.VALIDATION_ERROR,
            details=details,
            suggested_action=info.suggested_action,
            request_id=getattr(request.state, "request_id", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return error_response_from_exception(exc, getattr(request.state, "request_id", None))

    # --- Routers --------------------------------------------------------
    mount_v1_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8888,
    dev: bool = False,
) -> None:
    """Start the chat API server."""
    import uvicorn

    print("\n" + "=" * 50)
    print("THERAPYCHAT API SERVER")
    print("=" * 50)
    print(f"\nAPI docs: http://localhost:{port}/api/v1/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "therapychat.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port, log_config=None)

# Health router: liveness plus model and rate-limit diagnostics.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from therapychat.api.deps import get_rate_limiter, get_registry, get_settings
from therapychat.api.v1.schemas.health import (
    HealthSummary,
    LocalModelHealthResponse,
    ModelSummary,
    RateLimitReport,
    SuspiciousClient,
)
from therapychat.config import Settings
from therapychat.llm.ollama import OllamaChatModel
from therapychat.llm.registry import ModelRegistry
from therapychat.security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthSummary)
async def get_health(
    settings: Settings = Depends(get_settings),
    registry: ModelRegistry = Depends(get_registry),
):
    """Service liveness and the models a client can select."""
    return HealthSummary(
        environment=settings.environment,
        default_model=registry.default_model_id,
        local_model_available=registry.local_available,
        models=[
            ModelSummary(
                id=spec.id,
                label=spec.label,
                kind=spec.kind,
                supports_web_search=spec.supports_web_search,
                available=registry.is_available(spec.id),
            )
            for spec in registry.specs
        ],
    )


@router.get("/health/local-model", response_model=LocalModelHealthResponse)
async def get_local_model_health(
    settings: Settings = Depends(get_settings),
    registry: ModelRegistry = Depends(get_registry),
):
    """Probe the local model endpoint. 200 when usable, 503 otherwise."""
    if not settings.local_model_enabled:
        return JSONResponse(
            status_code=503,
            content=LocalModelHealthResponse(
                status="disabled",
                code="LOCAL_MODEL_DISABLED",
                message="Local model support is disabled",
                details={"model": settings.ollama_model},
            ).model_dump(),
        )

    adapter = registry.local_model
    temporary = adapter is None
    if temporary:
        # The registry dropped the adapter at startup; probe with a fresh one.
        try:
            adapter = OllamaChatModel(settings.ollama_base_url, settings.ollama_model)
        except ValueError as exc:
            return JSONResponse(
                status_code=503,
                content=LocalModelHealthResponse(
                    status="misconfigured",
                    code="LOCAL_MODEL_MISCONFIGURED",
                    message=str(exc),
                    details={"model": settings.ollama_model},
                ).model_dump(),
            )

    try:
        health = await adapter.check_health()
    finally:
        if temporary:
            await adapter.aclose()

    if not health.ok:
        logger.warning("Local model health check failed: %s", health.code)
    return JSONResponse(status_code=200 if health.ok else 503, content=health.to_dict())


@router.get("/health/rate-limits", response_model=RateLimitReport)
async def get_rate_limit_report(limiter: RateLimiter = Depends(get_rate_limiter)):
    """Blocked clients by IP fingerprint. Raw addresses are never stored."""
    return RateLimitReport(
        clients=[SuspiciousClient(**entry) for entry in limiter.suspicious_activity()]
    )

# Health schemas.

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ModelSummary(BaseModel):
    id: str
    label: str
    kind: str
    supports_web_search: bool = False
    available: bool = True


class HealthSummary(BaseModel):
    """Service liveness plus the selectable models."""

    status: str = "ok"
    environment: str
    default_model: str
    local_model_available: bool = False
    models: list[ModelSummary] = []


class LocalModelHealthResponse(BaseModel):
    status: str
    code: str
    message: str
    details: dict[str, Any] = {}


class SuspiciousClient(BaseModel):
    fingerprint: str
    bucket: str
    attempts: int
    last_attempt: float


class RateLimitReport(BaseModel):
    """Clients that reached a bucket maximum, most recent first."""

    clients: list[SuspiciousClient] = []

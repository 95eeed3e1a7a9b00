# Common API response schemas.

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class APIResponse(BaseModel):
    """Base response wrapper."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ErrorDetail(APIResponse):
    code: str
    message: str
    details: str | None = None
    suggested_action: str | None = Field(default=None, alias="suggestedAction")


class ErrorMeta(APIResponse):
    timestamp: str
    request_id: str | None = Field(default=None, alias="requestId")


class ErrorEnvelope(APIResponse):
    """Standard error envelope."""

    success: bool = False
    error: ErrorDetail
    meta: ErrorMeta

# Session schemas.

from __future__ import annotations

from typing import Literal

from pydantic import Field

from therapychat.api.v1.schemas.common import APIResponse


class CreateSessionRequest(APIResponse):
    title: str | None = Field(default=None, max_length=200)


class SessionResponse(APIResponse):
    id: str
    title: str
    created_at: str = Field(alias="createdAt")


class CreateMessageRequest(APIResponse):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=100_000)
    model_used: str | None = Field(default=None, alias="modelUsed")


class MessageResponse(APIResponse):
    id: str
    session_id: str = Field(alias="sessionId")
    role: Literal["user", "assistant"]
    content: str
    model_used: str | None = Field(default=None, alias="modelUsed")
    created_at: str = Field(alias="createdAt")


class MessageListResponse(APIResponse):
    session_id: str = Field(alias="sessionId")
    messages: list[MessageResponse]
    total: int

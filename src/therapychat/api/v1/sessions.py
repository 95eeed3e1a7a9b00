# Sessions router: create sessions, list and append messages.
#
# Every route is scoped to the authenticated principal; sessions owned by
# someone else are reported as not found.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from therapychat.api.deps import get_request_context, get_store, rate_limit
from therapychat.api.v1.schemas.sessions import (
    CreateMessageRequest,
    CreateSessionRequest,
    MessageListResponse,
    MessageResponse,
    SessionResponse,
)
from therapychat.auth import RequestContext
from therapychat.errors import ApiErrorCode, ChatError, PersistenceError
from therapychat.store.models import ChatMessage
from therapychat.store.protocol import SessionStoreProtocol

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sessions"], dependencies=[Depends(rate_limit("api"))])


def _session_not_found() -> ChatError:
    return ChatError("Session not found", code=ApiErrorCode.SESSION_NOT_FOUND)


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    body: CreateSessionRequest | None = None,
    ctx: RequestContext = Depends(get_request_context),
    store: SessionStoreProtocol = Depends(get_store),
):
    """Start a new conversation owned by the caller."""
    record = await store.create_session(ctx.principal.clerk_id, body.title if body else None)
    logger.info("Created session", extra={"request_id": ctx.request_id, "session_id": record.id})
    return SessionResponse.model_validate(record)


@router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
async def list_session_messages(
    session_id: str,
    ctx: RequestContext = Depends(get_request_context),
    store: SessionStoreProtocol = Depends(get_store),
):
    """List a session's messages, oldest first."""
    session = await store.get_session_for_user(session_id, ctx.principal.clerk_id)
    if session is None:
        raise _session_not_found()
    messages = await store.list_messages(session_id)
    return MessageListResponse(
        session_id=session_id,
        messages=[MessageResponse.model_validate(m) for m in messages],
        total=len(messages),
    )


@router.post(
    "/sessions/{session_id}/messages", response_model=MessageResponse, status_code=201
)
async def create_session_message(
    session_id: str,
    body: CreateMessageRequest,
    ctx: RequestContext = Depends(get_request_context),
    store: SessionStoreProtocol = Depends(get_store),
):
    """Append a message (normally the user's turn) to a session."""
    session = await store.get_session_for_user(session_id, ctx.principal.clerk_id)
    if session is None:
        raise _session_not_found()

    message = ChatMessage(
        session_id=session_id,
        role=body.role,
        content=body.content,
        model_used=body.model_used,
    )
    try:
        await store.create_message(message)
    except (OSError, KeyError) as exc:
        raise PersistenceError("Failed to save message") from exc
    return MessageResponse.model_validate(message)

# Shared FastAPI dependencies for the API layer.
#
# Application-scoped components live on app.state (built in the lifespan or
# injected by create_api_app); these helpers hand them to route handlers.

from __future__ import annotations

import uuid

from fastapi import Request

from therapychat.auth import Principal, RequestContext
from therapychat.config import Settings
from therapychat.errors import AuthenticationError, RateLimitError, UnsupportedMediaTypeError
from therapychat.llm.registry import ModelRegistry
from therapychat.security.rate_limiter import BucketName, RateLimiter, RateLimitInfo
from therapychat.store.protocol import SessionStoreProtocol

CLERK_USER_HEADER = "X-Clerk-User-Id"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStoreProtocol:
    return request.app.state.store


def get_registry(request: Request) -> ModelRegistry:
    return request.app.state.registry


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
    return request_id


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


async def get_request_context(request: Request) -> RequestContext:
    """Authenticated context for this request.

    Upstream auth middleware may attach a ``RequestContext`` as
    ``request.state.auth_context``. Otherwise the identity forwarded by the
    auth proxy (``X-Clerk-User-Id`` plus an optional bearer token) is used.
    Identity is trusted, not re-validated.
    """
    existing = getattr(request.state, "auth_context", None)
    if isinstance(existing, RequestContext):
        return existing

    clerk_id = request.headers.get(CLERK_USER_HEADER, "").strip()
    if not clerk_id:
        raise AuthenticationError("Authentication required")

    token = None
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip() or None

    return RequestContext(
        request_id=get_request_id(request),
        principal=Principal(clerk_id=clerk_id),
        jwt_token=token,
    )


async def require_json_content(request: Request) -> None:
    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip().lower() != "application/json":
        raise UnsupportedMediaTypeError(
            "Content-Type must be application/json",
            details=f"Received: {content_type or 'none'}",
        )


def rate_limit(bucket: BucketName = "api"):
    """FastAPI dependency that counts the request against ``bucket``.

    Usage::

        @router.post("/chat")
        async def chat(limit: RateLimitInfo | None = Depends(rate_limit("chat"))): ...

    Returns the ``RateLimitInfo`` (for response headers), or ``None`` when
    rate limiting is disabled.
    """

    async def _check(request: Request) -> RateLimitInfo | None:
        if get_settings(request).rate_limit_disabled:
            return None
        info = get_rate_limiter(request).check(client_ip(request), bucket)
        if not info.allowed:
            raise RateLimitError(retry_after=info.retry_after)
        return info

    return _check

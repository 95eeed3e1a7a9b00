"""Authenticated request context.

Identity is established by upstream middleware (TOTP / Clerk). The chat core
trusts this context and never re-validates it.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    clerk_id: str


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    principal: Principal
    jwt_token: str | None = None

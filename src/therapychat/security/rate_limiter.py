"""In-memory per-IP rate limiter with block escalation.

Buckets (window / max requests, configurable through settings):
  - default:  50 req per 5 min
  - api:     300 req per 5 min
  - chat:    120 req per 5 min

Clients are keyed by a SHA-256 fingerprint of their IP address; raw IPs are
never stored or logged. Once a client reaches a bucket's maximum it stays
blocked until the window resets plus the block duration.

The limiter is constructed explicitly and started/stopped through the
application lifecycle; the periodic sweep is a cancellable asyncio task.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Literal

from therapychat.config import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "BucketConfig",
    "RateLimitInfo",
    "RateLimiter",
]

BucketName = Literal["default", "api", "chat"]

ANONYMOUS = "anonymous"

_EXEMPT_IPS = ("localhost", "127.0.0.1", "::1", "unknown")
_PRIVATE_PREFIXES = ("192.168.", "10.0.") + tuple(f"172.{n}." for n in range(16, 32))


@dataclass(frozen=True)
class BucketConfig:
    window: float
    max_requests: int
    block_duration: float


@dataclass
class _Entry:
    count: int
    reset_time: float
    attempts: list[float] = field(default_factory=list)


class RateLimitInfo:
    """Rate limit state returned by ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    @property
    def retry_after(self) -> int | None:
        return None if self.allowed else max(1, math.ceil(self.reset_after))

    def headers(self) -> dict[str, str]:
        """Return rate-limit response headers (RFC 6585 style)."""
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            h["Retry-After"] = str(self.retry_after)
        return h


def fingerprint_ip(ip: str | None) -> str:
    if not ip:
        return ANONYMOUS
    return hashlib.sha256(ip.encode()).hexdigest()


def bucket_configs(settings: Settings) -> dict[str, BucketConfig]:
    block = settings.rate_limit_block_seconds
    return {
        "default": BucketConfig(
            settings.rate_limit_window_seconds, settings.rate_limit_max_requests, block
        ),
        "api": BucketConfig(settings.api_window_seconds, settings.api_max_requests, block),
        "chat": BucketConfig(settings.chat_window_seconds, settings.chat_max_requests, block),
    }


class RateLimiter:
    """Per-IP request limiter with named buckets.

    Parameters
    ----------
    buckets : dict
        Bucket name to ``BucketConfig``.
    exempt_private : bool
        Let localhost and private network addresses through (development).
    cleanup_interval : float
        Seconds between background sweeps of expired entries.
    clock : callable
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        buckets: dict[str, BucketConfig],
        *,
        exempt_private: bool = False,
        cleanup_interval: float = 300.0,
        clock=time.monotonic,
    ):
        self._configs = dict(buckets)
        self._stores: dict[str, dict[str, _Entry]] = {name: {} for name in buckets}
        self.exempt_private = exempt_private
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._cleanup_task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(
            bucket_configs(settings),
            exempt_private=not settings.is_production,
            cleanup_interval=settings.rate_limit_cleanup_interval,
        )

    def _config(self, bucket: str) -> BucketConfig:
        try:
            return self._configs[bucket]
        except KeyError:
            raise ValueError(f"Unknown rate limit bucket: {bucket}") from None

    def is_exempt(self, ip: str | None) -> bool:
        if not self.exempt_private or not ip:
            return False
        return ip in _EXEMPT_IPS or ip.startswith(_PRIVATE_PREFIXES)

    def check(self, ip: str | None, bucket: BucketName = "default") -> RateLimitInfo:
        """Count one request from ``ip`` against ``bucket``."""
        config = self._config(bucket)
        if self.is_exempt(ip):
            return RateLimitInfo(True, config.max_requests, config.max_requests, config.window)

        now = self._clock()
        store = self._stores[bucket]
        key = fingerprint_ip(ip)
        entry = store.get(key)

        if entry is not None and entry.count >= config.max_requests:
            block_expiry = entry.reset_time + config.block_duration
            if now < block_expiry:
                logger.warning(
                    "Rate limiter blocking client",
                    extra={"bucket": bucket, "attempts": entry.count, "client": key[:12]},
                )
                return RateLimitInfo(False, config.max_requests, 0, block_expiry - now)
            entry = None

        if entry is None or now > entry.reset_time:
            entry = _Entry(count=1, reset_time=now + config.window, attempts=[now])
            store[key] = entry
        else:
            entry.count += 1
            entry.attempts.append(now)
            entry.attempts = [t for t in entry.attempts if t > now - config.window]

        return RateLimitInfo(
            True,
            config.max_requests,
            max(0, config.max_requests - entry.count),
            entry.reset_time - now,
        )

    def cleanup(self) -> int:
        """Remove entries whose window and block have both expired. Returns count removed."""
        now = self._clock()
        removed = 0
        for name, store in self._stores.items():
            block = self._configs[name].block_duration
            stale = [k for k, e in store.items() if now > e.reset_time + block]
            for k in stale:
                del store[k]
            removed += len(stale)
        if removed:
            logger.debug("Rate limiter cleanup removed %d entries", removed)
        return removed

    def suspicious_activity(self) -> list[dict]:
        """Clients that reached a bucket maximum, most recent first."""
        report = []
        for name, store in self._stores.items():
            limit = self._configs[name].max_requests
            for key, entry in store.items():
                if entry.count >= limit:
                    report.append(
                        {
                            "fingerprint": key,
                            "bucket": name,
                            "attempts": entry.count,
                            "last_attempt": max(entry.attempts, default=0.0),
                        }
                    )
        return sorted(report, key=lambda r: r["last_attempt"], reverse=True)

    # -- lifecycle --

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception:
                logger.warning("Rate limiter cleanup failed", exc_info=True)

    async def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._sweep())

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for store in self._stores.values():
            store.clear()

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

"""
Idempotent response storage for mutating endpoints.

A client repeats a request with the same ``Idempotency-Key`` header and gets
the first response back verbatim instead of a second execution. Keys are
scoped by endpoint and caller, never by request content, so two deliberate
re-submissions with different tokens both run.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis

from veritasor.core.config import Settings
from veritasor.core.logging import get_logger

logger = get_logger(__name__)

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class IdempotencyEntry:
    status: int
    body: Any


class IdempotencyStore(Protocol):
    async def get(self, key: str) -> IdempotencyEntry | None: ...

    async def set(self, key: str, entry: IdempotencyEntry, ttl_seconds: int) -> None: ...

    async def close(self) -> None: ...


def build_idempotency_key(scope: str, caller: str, token: str) -> str:
    """Compose the storage key ``idempotency:<scope>:<caller>:<token>``."""
    return f"idempotency:{scope}:{caller}:{token}"


class InMemoryIdempotencyStore:
    """Process-local store with lazy expiry on read."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[IdempotencyEntry, float]] = {}

    async def get(self, key: str) -> IdempotencyEntry | None:
        row = self._entries.get(key)
        if row is None:
            return None
        entry, expires_at = row
        if self._clock() > expires_at:
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, entry: IdempotencyEntry, ttl_seconds: int) -> None:
        self._entries[key] = (entry, self._clock() + ttl_seconds)

    async def close(self) -> None:
        self._entries.clear()


class RedisIdempotencyStore:
    """Redis-backed store; expiry is delegated to the key TTL."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisIdempotencyStore:
        return cls(redis.from_url(url, decode_responses=True))  # type: ignore[no-untyped-call]

    async def get(self, key: str) -> IdempotencyEntry | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return IdempotencyEntry(status=int(data["status"]), body=data["body"])
        except (ValueError, KeyError, TypeError):
            logger.warning("idempotency_entry_corrupt", key=key)
            return None

    async def set(self, key: str, entry: IdempotencyEntry, ttl_seconds: int) -> None:
        payload = json.dumps({"status": entry.status, "body": entry.body}, separators=(",", ":"))
        await self._redis.set(key, payload, ex=ttl_seconds)

    async def close(self) -> None:
        await self._redis.aclose()


def build_idempotency_store(settings: Settings) -> IdempotencyStore:
    """Select the idempotency store implementation from configuration."""
    if settings.idempotency_backend == "redis":
        return RedisIdempotencyStore.from_url(str(settings.redis_url))
    return InMemoryIdempotencyStore()

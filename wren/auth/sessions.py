"""
Ephemeral session store.

Maps an opaque, unguessable token to a JSON payload (the authenticated
identity snapshot) for a fixed TTL. Backed by Redis when configured and by
the in-process TTL cache otherwise.

Consistency is deliberately weak on create: a write failure is logged and
the token is still returned, so a caller holding a token has no guarantee
the session persisted. The first authenticated request will then fail.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from wren.cache import TTLCache
from wren.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 60 * 60
KEY_PREFIX = "session:"


class SessionBackend:
    """Key-value storage with per-key expiry."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemorySessionBackend(SessionBackend):
    def __init__(self, max_size: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        self._cache = TTLCache(default_ttl=DEFAULT_SESSION_TTL_SECONDS, max_size=max_size, clock=clock)

    async def get(self, key: str) -> Optional[str]:
        return await self._cache.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._cache.set(key, value, ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)


class RedisSessionBackend(SessionBackend):
    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionBackend":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


class SessionStore:
    """
    Session token → payload mapping with TTL expiry.

    Every read re-checks the ``expiresAt`` stamp written with the payload, so
    an expired session is never returned even if a backend still holds it.
    """

    def __init__(
        self,
        backend: SessionBackend,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionStore":
        if settings.redis_url:
            backend: SessionBackend = RedisSessionBackend.from_url(settings.redis_url)
        else:
            backend = MemorySessionBackend(max_size=settings.session_cache_size)
        return cls(backend, ttl_seconds=settings.session_ttl_seconds)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def create(self, payload: Dict[str, Any]) -> str:
        session_id = secrets.token_urlsafe(32)
        try:
            await self._write(session_id, payload)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error creating session: %s", exc, exc_info=True)
        return session_id

    async def get(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        raw = await self._backend.get(_key(session_id))
        if not raw:
            return None
        try:
            entry = json.loads(raw)
            data = entry["data"]
            expires_at = float(entry["expiresAt"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable session entry")
            return None
        if self._clock() >= expires_at:
            return None
        return data

    async def merge(self, session_id: str, partial: Dict[str, Any]) -> None:
        current = await self.get(session_id)
        if current is None:
            logger.info("Ignoring merge into absent or expired session")
            return
        await self._write(session_id, {**current, **partial})

    async def delete(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        await self._backend.delete(_key(session_id))

    async def close(self) -> None:
        await self._backend.close()

    async def _write(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = {"data": payload, "expiresAt": self._clock() + self._ttl}
        await self._backend.set(_key(session_id), json.dumps(entry), ttl=self._ttl)


def _key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


__all__ = [
    "MemorySessionBackend",
    "RedisSessionBackend",
    "SessionBackend",
    "SessionStore",
]

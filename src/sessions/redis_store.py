# src/sessions/redis_store.py — v1
"""Redis-backed session store (SESSION_BACKEND=redis).

Requires 'redis' package: pip install redis.
One JSON value per originator under ``<prefix>session:<originator>``, written
with a TTL of at least the session window. Each read-modify-write runs under
a Redis lock for that originator, so replicas sharing the server cannot lose
updates.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import redis.asyncio as aioredis
from redis.exceptions import LockError

from notesync.core.errors import TransientError
from notesync.core.models import AddResult, Session, Unit
from notesync.sessions.base_session_store import BaseSessionStore, apply_add

logger = logging.getLogger(__name__)

_DEFAULT_PREFIX = "notesync:"
_LOCK_TIMEOUT_S = 10.0
_LOCK_WAIT_S = 5.0


class RedisSessionStore(BaseSessionStore):
    """Distributed session store over redis.asyncio."""

    def __init__(
        self,
        client: Any,
        window_seconds: float = 90.0,
        ttl_seconds: int = 600,
        key_prefix: str = _DEFAULT_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds < window_seconds:
            raise ValueError("ttl_seconds must be >= window_seconds")
        self._client = client
        self._window = window_seconds
        self._ttl = int(ttl_seconds)
        self._prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        window_seconds: float = 90.0,
        ttl_seconds: int = 600,
        key_prefix: str = _DEFAULT_PREFIX,
    ) -> RedisSessionStore:
        client = aioredis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, window_seconds, ttl_seconds, key_prefix)

    @property
    def window_seconds(self) -> float:
        return self._window

    def _key(self, originator_id: str) -> str:
        return f"{self._prefix}session:{originator_id}"

    def _lock(self, originator_id: str) -> Any:
        return self._client.lock(
            f"{self._prefix}lock:session:{originator_id}",
            timeout=_LOCK_TIMEOUT_S,
            blocking_timeout=_LOCK_WAIT_S,
        )

    async def _load(self, originator_id: str) -> Session | None:
        data = await self._client.get(self._key(originator_id))
        if data is None:
            return None
        try:
            return Session.model_validate_json(data)
        except ValueError as e:
            logger.warning("Discarding unreadable session for %s: %s", originator_id, e)
            return None

    async def _save(self, session: Session) -> None:
        await self._client.set(
            self._key(session.originator_id), session.model_dump_json(), ex=self._ttl
        )

    async def add(
        self, originator_id: str, unit: Unit, now: float | None = None
    ) -> AddResult:
        now = self._clock() if now is None else now
        try:
            async with self._lock(originator_id):
                result = apply_add(
                    await self._load(originator_id), originator_id, unit, now, self._window
                )
                await self._save(result.session)
        except LockError as e:
            raise TransientError(f"Session lock busy for {originator_id}") from e
        if result.flushed is not None:
            logger.info(
                "Session for %s expired with %d unit(s); started a new one",
                originator_id, len(result.flushed.units),
            )
        return result

    async def close_expired_if_any(
        self, originator_id: str, now: float | None = None
    ) -> Session | None:
        now = self._clock() if now is None else now
        try:
            async with self._lock(originator_id):
                session = await self._load(originator_id)
                if session is None or not session.is_expired(now):
                    return None
                await self._client.delete(self._key(originator_id))
                return session
        except LockError as e:
            raise TransientError(f"Session lock busy for {originator_id}") from e

    async def end_session(self, originator_id: str) -> Session | None:
        try:
            async with self._lock(originator_id):
                session = await self._load(originator_id)
                if session is not None:
                    await self._client.delete(self._key(originator_id))
                return session
        except LockError as e:
            raise TransientError(f"Session lock busy for {originator_id}") from e

    async def get(self, originator_id: str) -> Session | None:
        return await self._load(originator_id)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()

# src/sync/locks.py — v1
"""Mutual exclusion for reconciliation runs across replicas.

acquire() never waits: a replica that cannot take the lock skips its run.
The Redis lock carries a TTL so a crashed holder cannot wedge the deployment.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class SyncLock(ABC):
    @abstractmethod
    async def acquire(self) -> bool:
        """Try to take the lock without waiting."""

    @abstractmethod
    async def release(self) -> None:
        """Release a lock taken by acquire()."""

    async def close(self) -> None:
        """Release backend resources."""


class MemorySyncLock(SyncLock):
    """Process-local lock; share one instance between reconcilers of a process."""

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    async def release(self) -> None:
        self._held = False


class RedisSyncLock(SyncLock):
    """Deployment-wide lock over a Redis key (SET NX with expiry)."""

    def __init__(self, client: Any, name: str = "notesync:lock:sync", ttl_seconds: int = 600) -> None:
        self._client = client
        self._lock = client.lock(name, timeout=ttl_seconds, blocking=False)

    @classmethod
    def from_url(
        cls, redis_url: str, name: str = "notesync:lock:sync", ttl_seconds: int = 600
    ) -> RedisSyncLock:
        client = aioredis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, name=name, ttl_seconds=ttl_seconds)

    async def acquire(self) -> bool:
        return bool(await self._lock.acquire())

    async def release(self) -> None:
        try:
            await self._lock.release()
        except LockError as e:
            # TTL expired mid-run; another replica may hold it now
            logger.warning("Sync lock was lost before release: %s", e)

    async def close(self) -> None:
        await self._client.aclose()

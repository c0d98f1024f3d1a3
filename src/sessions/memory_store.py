# src/sessions/memory_store.py — v1
"""In-process session store (SESSION_BACKEND=memory).

Sessions live in a dict owned by the store instance. Each originator key has
its own asyncio.Lock, so adds for different originators never wait on each
other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from notesync.core.models import AddResult, Session, Unit
from notesync.sessions.base_session_store import BaseSessionStore, apply_add

logger = logging.getLogger(__name__)


class MemorySessionStore(BaseSessionStore):
    """Dict-backed session store guarded by per-key locks."""

    def __init__(
        self,
        window_seconds: float = 90.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._window = window_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def window_seconds(self) -> float:
        return self._window

    @asynccontextmanager
    async def _locked(self, originator_id: str) -> AsyncIterator[None]:
        """Hold the originator lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(originator_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[originator_id] = lock
        self._lock_users[originator_id] = self._lock_users.get(originator_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[originator_id] - 1
            if remaining:
                self._lock_users[originator_id] = remaining
            else:
                del self._lock_users[originator_id]
                del self._locks[originator_id]

    async def add(
        self, originator_id: str, unit: Unit, now: float | None = None
    ) -> AddResult:
        now = self._clock() if now is None else now
        async with self._locked(originator_id):
            result = apply_add(
                self._sessions.get(originator_id), originator_id, unit, now, self._window
            )
            self._sessions[originator_id] = result.session
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
        async with self._locked(originator_id):
            session = self._sessions.get(originator_id)
            if session is None or not session.is_expired(now):
                return None
            del self._sessions[originator_id]
            return session

    async def end_session(self, originator_id: str) -> Session | None:
        async with self._locked(originator_id):
            return self._sessions.pop(originator_id, None)

    async def get(self, originator_id: str) -> Session | None:
        return self._sessions.get(originator_id)

    def __len__(self) -> int:
        return len(self._sessions)

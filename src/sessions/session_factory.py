# src/sessions/session_factory.py — v1
"""Factory for session store instantiation."""

from __future__ import annotations

import logging

from notesync.config.settings import Settings
from notesync.sessions.base_session_store import BaseSessionStore

logger = logging.getLogger(__name__)


def create_session_store(settings: Settings | None = None) -> BaseSessionStore:
    """Instantiate the configured session backend.

    ``auto`` picks Redis when REDIS_URL is set and falls back to the
    in-process store otherwise.
    """
    if settings is None:
        from notesync.sessions.memory_store import MemorySessionStore
        return MemorySessionStore()

    if settings.use_redis_sessions:
        from notesync.sessions.redis_store import RedisSessionStore
        if not settings.redis_url:
            raise ValueError("REDIS_URL must be set when SESSION_BACKEND=redis")
        logger.info("Using Redis session store")
        return RedisSessionStore.from_url(
            settings.redis_url,
            window_seconds=settings.session_window_seconds,
            ttl_seconds=settings.session_ttl_seconds,
            key_prefix=settings.redis_key_prefix,
        )

    from notesync.sessions.memory_store import MemorySessionStore
    logger.info("Using in-memory session store")
    return MemorySessionStore(window_seconds=settings.session_window_seconds)

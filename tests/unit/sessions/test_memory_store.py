# tests/unit/sessions/test_memory_store.py — v1
"""Tests for sessions/memory_store.py — windowed aggregation in process."""

from __future__ import annotations

import asyncio

import pytest

from notesync.core.models import Unit
from notesync.sessions.base_session_store import apply_add
from notesync.sessions.memory_store import MemorySessionStore


# --- Helpers ---


def _unit(name: str, originator: str = "chat-1") -> Unit:
    return Unit(payload=b"\xff\xd8\xff" + name.encode(), name=name, originator_id=originator)


class TestApplyAdd:
    def test_new_session(self):
        result = apply_add(None, "c", _unit("a"), 0.0, 90.0)
        assert result.started_new
        assert result.flushed is None
        assert result.session.last_activity == 0.0

    def test_append_preserves_order(self):
        first = apply_add(None, "c", _unit("a"), 0.0, 90.0).session
        second = apply_add(first, "c", _unit("b"), 30.0, 90.0)
        assert [u.name for u in second.session.units] == ["a", "b"]
        assert second.session.last_activity == 30.0

    def test_expired_session_is_flushed(self):
        first = apply_add(None, "c", _unit("a"), 0.0, 90.0).session
        result = apply_add(first, "c", _unit("b"), 90.0, 90.0)
        assert result.flushed is first
        assert [u.name for u in result.session.units] == ["b"]


class TestMemorySessionStore:
    @pytest.mark.asyncio
    async def test_window_example(self):
        """Units at 0, 10, 20 s aggregate; a unit at 130 s flushes them and starts anew."""
        store = MemorySessionStore(window_seconds=90)
        for t, name in ((0, "p1"), (10, "p2"), (20, "p3")):
            result = await store.add("chat-1", _unit(name), now=t)
            assert result.flushed is None
        result = await store.add("chat-1", _unit("p4"), now=130)
        assert [u.name for u in result.flushed.units] == ["p1", "p2", "p3"]
        assert [u.name for u in result.session.units] == ["p4"]
        assert result.started_new

    @pytest.mark.asyncio
    async def test_flushed_only_once(self):
        store = MemorySessionStore(window_seconds=10)
        await store.add("c", _unit("a"), now=0)
        first = await store.add("c", _unit("b"), now=20)
        second = await store.add("c", _unit("c"), now=21)
        assert first.flushed is not None
        assert second.flushed is None

    @pytest.mark.asyncio
    async def test_sliding_window(self):
        store = MemorySessionStore(window_seconds=90)
        await store.add("c", _unit("a"), now=0)
        await store.add("c", _unit("b"), now=80)
        result = await store.add("c", _unit("c"), now=160)
        assert result.flushed is None
        assert len(result.session) == 3

    @pytest.mark.asyncio
    async def test_originators_are_independent(self):
        store = MemorySessionStore()
        await store.add("a", _unit("1", "a"), now=0)
        await store.add("b", _unit("2", "b"), now=0)
        assert len(store) == 2
        assert len(await store.get("a")) == 1

    @pytest.mark.asyncio
    async def test_close_expired_if_any(self):
        store = MemorySessionStore(window_seconds=90)
        await store.add("c", _unit("a"), now=0)
        assert await store.close_expired_if_any("c", now=89) is None
        session = await store.close_expired_if_any("c", now=90)
        assert session is not None and len(session) == 1
        assert await store.get("c") is None
        assert await store.close_expired_if_any("c", now=200) is None

    @pytest.mark.asyncio
    async def test_end_session(self):
        store = MemorySessionStore()
        await store.add("c", _unit("a"), now=0)
        session = await store.end_session("c")
        assert session is not None
        assert await store.end_session("c") is None

    @pytest.mark.asyncio
    async def test_concurrent_adds_lose_nothing(self):
        store = MemorySessionStore(window_seconds=90)
        await asyncio.gather(*(store.add("c", _unit(f"u{i}"), now=1) for i in range(25)))
        session = await store.get("c")
        assert len(session) == 25

    @pytest.mark.asyncio
    async def test_locks_are_dropped_when_idle(self):
        store = MemorySessionStore(window_seconds=90)
        await asyncio.gather(*(store.add(f"c{i % 3}", _unit(f"u{i}"), now=1) for i in range(9)))
        await store.close_expired_if_any("c0", now=200)
        await store.end_session("c1")
        await store.end_session("never-seen")
        assert store._locks == {}
        assert store._lock_users == {}
        assert len(await store.get("c2")) == 3

    @pytest.mark.asyncio
    async def test_clock_used_when_now_omitted(self):
        now = [100.0]
        store = MemorySessionStore(window_seconds=5, clock=lambda: now[0])
        await store.add("c", _unit("a"))
        now[0] = 106.0
        result = await store.add("c", _unit("b"))
        assert result.flushed is not None

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            MemorySessionStore(window_seconds=0)

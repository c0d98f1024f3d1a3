# src/stores/caching_vcs_store.py — v1
"""Read-through cache in front of a version-control store.

Caches read_file and list_tree results for a TTL, bounded by a maximum entry
count. A write through this wrapper drops every cached entry for the written
path and every cached tree listing.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from notesync.stores.base_vcs_store import BaseVersionControlStore
from notesync.stores.models import RemoteFile, TreeEntry, WriteResult

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CachingVersionControlStore(BaseVersionControlStore):
    """TTL + max-size cache wrapper around another version-control store."""

    def __init__(
        self,
        inner: BaseVersionControlStore,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._inner = inner
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            size=len(self._entries),
        )

    def _get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return _MISSING
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            self._stats.misses += 1
            return _MISSING
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return value

    def _put(self, key: str, value: Any) -> None:
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self._max:
            expired = [k for k, (t, _) in self._entries.items() if now - t > self._ttl]
            for k in expired:
                del self._entries[k]
            while len(self._entries) >= self._max:
                self._entries.popitem(last=False)
                self._stats.evictions += 1
        self._entries[key] = (now, value)
        self._entries.move_to_end(key)

    def invalidate(self, path: str) -> None:
        for key in [k for k in self._entries if k == f"file:{path}" or k.startswith("tree:")]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    async def read_file(self, path: str) -> RemoteFile | None:
        key = f"file:{path}"
        cached = self._get(key)
        if cached is not _MISSING:
            return cached
        result = await self._inner.read_file(path)
        self._put(key, result)
        return result

    async def write_file(
        self,
        path: str,
        content: bytes | str,
        revision: str | None = None,
        message: str = "",
    ) -> WriteResult:
        try:
            return await self._inner.write_file(path, content, revision, message)
        finally:
            self.invalidate(path)

    async def list_tree(self, path: str = "", recursive: bool = True) -> list[TreeEntry]:
        key = f"tree:{path}:{int(recursive)}"
        cached = self._get(key)
        if cached is not _MISSING:
            return list(cached)
        result = await self._inner.list_tree(path, recursive)
        self._put(key, list(result))
        return result

    async def close(self) -> None:
        await self._inner.close()

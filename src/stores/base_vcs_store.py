# src/stores/base_vcs_store.py — v1
"""Abstract version-control store interface.

Writes use optimistic concurrency: omitting ``revision`` creates a file,
passing the revision last read updates it, and passing a stale revision raises
StaleRevisionError so the caller can re-read and retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from notesync.stores.models import RemoteFile, TreeEntry, WriteResult


class BaseVersionControlStore(ABC):
    """Unified interface for version-controlled file storage."""

    @abstractmethod
    async def read_file(self, path: str) -> RemoteFile | None:
        """Read a file, or return None when it does not exist."""

    @abstractmethod
    async def write_file(
        self,
        path: str,
        content: bytes | str,
        revision: str | None = None,
        message: str = "",
    ) -> WriteResult:
        """Create or update a file and return its new revision token."""

    @abstractmethod
    async def list_tree(self, path: str = "", recursive: bool = True) -> list[TreeEntry]:
        """List entries under ``path``."""

    async def close(self) -> None:
        """Release backend resources."""


def to_bytes(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content

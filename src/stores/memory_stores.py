# src/stores/memory_stores.py — v1
"""In-process store implementations for tests and --dry-run.

They honor the same contracts as the HTTP adapters, including the
optimistic-concurrency rules of the version-control store.
"""

from __future__ import annotations

import hashlib
import itertools
from datetime import datetime, timezone
from typing import Any

from notesync.core.errors import StaleRevisionError
from notesync.stores.base_blob_store import BaseBlobStore
from notesync.stores.base_recognizer import BaseRecognizer
from notesync.stores.base_vcs_store import BaseVersionControlStore, to_bytes
from notesync.stores.models import BlobPage, RemoteFile, StoredBlob, TreeEntry, WriteResult


class MemoryBlobStore(BaseBlobStore):
    """Keeps uploaded blobs in a dict keyed by a sequential id."""

    def __init__(self, base_url: str = "memory://blobs") -> None:
        self._base_url = base_url.rstrip("/")
        self._ids = itertools.count(1)
        self.blobs: dict[str, bytes] = {}
        self.records: list[StoredBlob] = []

    async def upload(
        self, data: bytes, name: str, metadata: dict[str, Any] | None = None
    ) -> StoredBlob:
        blob_id = f"blob-{next(self._ids):06d}"
        self.blobs[blob_id] = data
        record = StoredBlob(
            id=blob_id,
            url=f"{self._base_url}/{blob_id}/public",
            filename=name,
            uploaded_at=datetime.now(timezone.utc),
            metadata=dict(metadata or {}),
        )
        self.records.append(record)
        return record

    async def list(self, page: int = 1, per_page: int = 50) -> BlobPage:
        start = (max(page, 1) - 1) * per_page
        return BlobPage(
            items=self.records[start:start + per_page],
            total=len(self.records),
            page=page,
            per_page=per_page,
        )

    def variant_url(self, blob_id: str, variant: str) -> str | None:
        return f"{self._base_url}/{blob_id}/{variant}"


def content_revision(content: bytes) -> str:
    """Git-style blob hash used as the revision token."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()  # noqa: S324


class MemoryVersionControlStore(BaseVersionControlStore):
    """Dict-backed repository with git-style revision tokens."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.commits: list[tuple[str, str]] = []

    async def read_file(self, path: str) -> RemoteFile | None:
        content = self.files.get(path)
        if content is None:
            return None
        return RemoteFile(path=path, content=content, revision=content_revision(content))

    async def write_file(
        self,
        path: str,
        content: bytes | str,
        revision: str | None = None,
        message: str = "",
    ) -> WriteResult:
        current = self.files.get(path)
        if current is not None and revision != content_revision(current):
            raise StaleRevisionError(path, revision)
        if current is None and revision is not None:
            raise StaleRevisionError(path, revision)
        data = to_bytes(content)
        self.files[path] = data
        self.commits.append((path, message))
        return WriteResult(path=path, revision=content_revision(data))

    async def list_tree(self, path: str = "", recursive: bool = True) -> list[TreeEntry]:
        prefix = path.strip("/")
        entries: list[TreeEntry] = []
        for file_path in sorted(self.files):
            if prefix and not file_path.startswith(prefix + "/"):
                continue
            rest = file_path[len(prefix) + 1:] if prefix else file_path
            if not recursive and "/" in rest:
                continue
            content = self.files[file_path]
            entries.append(
                TreeEntry(
                    path=file_path,
                    type="file",
                    revision=content_revision(content),
                    size=len(content),
                )
            )
        return entries


class StaticRecognizer(BaseRecognizer):
    """Returns canned text with one section per image."""

    def __init__(self, text: str = "Recognized text") -> None:
        self._text = text
        self.calls: list[list[str]] = []

    async def recognize(self, urls: list[str]) -> str:
        self.calls.append(list(urls))
        if len(urls) == 1:
            return self._text
        return "\n\n".join(f"## Image {i}\n\n{self._text}" for i in range(1, len(urls) + 1))

    @property
    def provider_name(self) -> str:
        return "static"

# src/stores/base_blob_store.py — v1
"""Abstract blob store interface (CDN image hosting)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from notesync.stores.models import BlobPage, StoredBlob


class BaseBlobStore(ABC):
    """Unified interface for blob storage backends.

    Implementations raise NotConfiguredError when credentials are missing and
    TransientError for timeouts, rate limits and 5xx responses.
    """

    @abstractmethod
    async def upload(
        self, data: bytes, name: str, metadata: dict[str, Any] | None = None
    ) -> StoredBlob:
        """Store ``data`` and return its id and public URL."""

    @abstractmethod
    async def list(self, page: int = 1, per_page: int = 50) -> BlobPage:
        """List stored blobs, one page at a time (page is 1-based)."""

    def variant_url(self, blob_id: str, variant: str) -> str | None:
        """URL of a derived rendition of a stored blob, if the backend has any."""
        return None

    async def close(self) -> None:
        """Release backend resources."""

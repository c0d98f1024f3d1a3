# src/stores/models.py — v1
"""Value objects exchanged with the external stores: StoredBlob, BlobPage, RemoteFile, WriteResult, TreeEntry."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class StoredBlob(BaseModel):
    """A blob accepted by the blob store."""

    id: str
    url: str
    filename: str | None = None
    uploaded_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BlobPage(BaseModel):
    """One page of a blob store listing."""

    items: list[StoredBlob] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 50


class RemoteFile(BaseModel):
    """File content read from the version-control store."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    path: str
    content: bytes
    revision: str

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


class WriteResult(BaseModel):
    """Outcome of an optimistic-concurrency write."""

    path: str
    revision: str
    url: str | None = None


class TreeEntry(BaseModel):
    """One entry of a version-control tree listing."""

    path: str
    type: Literal["file", "dir"] = "file"
    revision: str | None = None
    size: int | None = None

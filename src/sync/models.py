# src/sync/models.py — v1
"""Sync domain models: FileRecord, ChangeSet, SyncStatus, SyncResult and options."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

SyncState = Literal["idle", "syncing", "error", "paused"]
ConflictStrategy = Literal["keep_local", "keep_remote", "merge", "prompt"]
FileAction = Literal["created", "updated", "deleted", "skipped", "conflict"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncOptions:
    """Startup-time reconciler configuration."""

    interval_s: float = 300.0
    auto_sync: bool = False
    include: tuple[str, ...] = ("**/*.md", "**/*.jpg", "**/*.png", "**/*.jpeg")
    exclude: tuple[str, ...] = ("**/node_modules/**", "**/.git/**", "**/backups/**")
    strategy: ConflictStrategy = "keep_local"
    merge_fallback: ConflictStrategy = "prompt"
    remote_prefix: str = ""
    process_images: bool = False
    max_errors: int = 100
    max_conflicts: int = 50
    backup_enabled: bool = True
    backup_retention_days: int = 30
    text_extensions: tuple[str, ...] = (".md", ".markdown", ".txt")
    image_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".gif", ".webp")


class FileRecord(BaseModel):
    """Last known state of one tracked path. ``path`` is the unique key."""

    path: str
    fingerprint: str
    size: int = 0
    synced_fingerprint: str | None = None
    remote_revision: str | None = None
    remote_url: str | None = None
    base_text: str | None = None
    conflicted: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class ChangeSet(BaseModel):
    """Disjoint, sorted path lists produced by one scan."""

    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)


class ConflictRecord(BaseModel):
    """A path whose local and remote sides both moved since the last sync."""

    path: str
    reason: str
    strategy: ConflictStrategy
    local_fingerprint: str | None = None
    remote_revision: str | None = None
    detected_at: datetime = Field(default_factory=utcnow)


class SyncErrorEntry(BaseModel):
    message: str
    path: str | None = None
    at: datetime = Field(default_factory=utcnow)


class SyncCounters(BaseModel):
    runs: int = 0
    files_synced: int = 0
    files_failed: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0
    last_duration_ms: int = 0


class SyncStatus(BaseModel):
    """Reconciler state. Owned by SyncReconciler; callers get deep copies."""

    state: SyncState = "idle"
    auto_sync: bool = False
    last_sync: datetime | None = None
    next_sync: datetime | None = None
    errors: list[SyncErrorEntry] = Field(default_factory=list)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    counters: SyncCounters = Field(default_factory=SyncCounters)


class FileSyncDetail(BaseModel):
    path: str
    action: FileAction
    status: Literal["success", "error"] = "success"
    message: str | None = None


class SyncStats(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    conflicts: int = 0


class SyncResult(BaseModel):
    """Outcome of one reconciliation run (or of a skipped trigger)."""

    success: bool = True
    skipped: bool = False
    message: str = ""
    run_id: str | None = None
    stats: SyncStats = Field(default_factory=SyncStats)
    details: list[FileSyncDetail] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    duration_ms: int = 0

    def record(self, detail: FileSyncDetail) -> None:
        self.details.append(detail)
        if detail.action == "skipped":
            self.stats.skipped += 1
            return
        self.stats.processed += 1
        if detail.action == "conflict":
            self.stats.conflicts += 1
        elif detail.status == "success":
            self.stats.succeeded += 1
        else:
            self.stats.failed += 1


def append_bounded(items: list, item: object, cap: int) -> None:
    """Append and evict oldest entries beyond ``cap``."""
    items.append(item)
    overflow = len(items) - cap
    if overflow > 0:
        del items[:overflow]


@dataclass
class PendingResolution:
    """An explicit conflict resolution queued for the next run."""

    path: str
    strategy: ConflictStrategy
    queued_at: datetime = field(default_factory=utcnow)

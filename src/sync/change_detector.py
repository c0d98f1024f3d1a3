# src/sync/change_detector.py — v1
"""Fingerprint-based change detection over a tracked file set.

Each scan compares the SHA-256 of every tracked path with the fingerprint last
observed for it and records the new observation, so a second scan over
unchanged files reports nothing. Records of deleted paths are dropped as soon
as the deletion is reported. mark_failed() rolls an observation back so a path
whose sync failed is reported again by the next scan.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Iterable, Literal

from notesync.sync.file_source import FileSource
from notesync.sync.models import ChangeSet, FileRecord, utcnow
from notesync.sync.state_store import SyncStateStore

logger = logging.getLogger(__name__)


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ChangeDetector:
    """Classify tracked paths as added, modified or deleted."""

    def __init__(self, source: FileSource, state: SyncStateStore) -> None:
        self._source = source
        self._state = state

    @property
    def state(self) -> SyncStateStore:
        return self._state

    def scan(self, tracked_paths: Iterable[str] | None = None) -> ChangeSet:
        """Compare current content against recorded fingerprints.

        Args:
            tracked_paths: Paths to consider; defaults to every in-scope path
                of the file source. Order does not matter.
        """
        paths = set(self._source.list_paths() if tracked_paths is None else tracked_paths)
        changes = ChangeSet()

        for path in sorted(paths):
            kind = self.observe(path)
            if kind == "added":
                changes.added.append(path)
            elif kind == "modified":
                changes.modified.append(path)
            elif kind == "deleted":
                changes.deleted.append(path)

        for path in sorted(p for p in self._state.all() if p not in paths):
            self.forget(path)
            changes.deleted.append(path)
        changes.deleted.sort()

        if not changes.is_empty:
            logger.info(
                "Scan: %d added, %d modified, %d deleted",
                len(changes.added), len(changes.modified), len(changes.deleted),
            )
        return changes

    def observe(self, path: str) -> Literal["added", "modified", "deleted"] | None:
        """Fingerprint one path, record the observation and classify it."""
        data = self._source.read_bytes(path)
        record = self._state.get(path)
        if data is None:
            if record is None:
                return None
            self.forget(path)
            return "deleted"
        fp = fingerprint(data)
        if record is None:
            self._state.put(FileRecord(path=path, fingerprint=fp, size=len(data)))
            return "added"
        if record.fingerprint != fp:
            self._state.put(
                record.model_copy(
                    update={"fingerprint": fp, "size": len(data), "updated_at": utcnow()}
                )
            )
            return "modified"
        return None

    def mark_synced(
        self,
        path: str,
        remote_revision: str | None = None,
        remote_url: str | None = None,
        base_text: str | None = None,
        content: bytes | None = None,
    ) -> FileRecord | None:
        """Promote the current observation of ``path`` to its synced state.

        Passing ``content`` re-fingerprints it first (used after the local
        file was rewritten during conflict resolution).
        """
        record = self._state.get(path)
        if record is None:
            return None
        update: dict = {
            "remote_revision": remote_revision,
            "conflicted": False,
            "updated_at": utcnow(),
        }
        if content is not None:
            update["fingerprint"] = fingerprint(content)
            update["size"] = len(content)
        update["synced_fingerprint"] = update.get("fingerprint", record.fingerprint)
        if remote_url is not None:
            update["remote_url"] = remote_url
        if base_text is not None:
            update["base_text"] = base_text
        synced = record.model_copy(update=update)
        self._state.put(synced)
        return synced

    def mark_failed(self, path: str) -> None:
        """Roll the observation back so the next scan reports ``path`` again."""
        record = self._state.get(path)
        if record is None:
            return
        if record.synced_fingerprint is None:
            self._state.delete(path)
        else:
            self._state.put(record.model_copy(update={"fingerprint": record.synced_fingerprint}))

    def mark_conflicted(self, path: str, conflicted: bool = True) -> None:
        record = self._state.get(path)
        if record is not None:
            self._state.put(record.model_copy(update={"conflicted": conflicted}))

    def forget(self, path: str) -> None:
        """Drop the record of a deleted path."""
        self._state.delete(path)

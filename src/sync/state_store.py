# src/sync/state_store.py — v1
"""Persistence for tracked FileRecords between reconciliation runs."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from notesync.sync.models import FileRecord

logger = logging.getLogger(__name__)


class SyncStateStore(ABC):
    """Path-keyed FileRecord storage. One record per path."""

    @abstractmethod
    def get(self, path: str) -> FileRecord | None:
        """Record for ``path``, if tracked."""

    @abstractmethod
    def put(self, record: FileRecord) -> None:
        """Insert or replace the record for ``record.path``."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Stop tracking ``path``."""

    @abstractmethod
    def all(self) -> dict[str, FileRecord]:
        """Snapshot of every tracked record."""

    def flush(self) -> None:
        """Persist pending changes (no-op for in-memory stores)."""


class MemorySyncStateStore(SyncStateStore):
    def __init__(self) -> None:
        self._records: dict[str, FileRecord] = {}

    def get(self, path: str) -> FileRecord | None:
        return self._records.get(path)

    def put(self, record: FileRecord) -> None:
        self._records[record.path] = record

    def delete(self, path: str) -> None:
        self._records.pop(path, None)

    def all(self) -> dict[str, FileRecord]:
        return dict(self._records)


class JsonSyncStateStore(MemorySyncStateStore):
    """Single JSON file, rewritten atomically on flush()."""

    def __init__(self, state_file: str | Path) -> None:
        super().__init__()
        self._path = Path(state_file).expanduser()
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable sync state %s: %s", self._path, e)
            return
        for raw in data.get("records", []):
            record = FileRecord.model_validate(raw)
            self._records[record.path] = record
        logger.debug("Loaded %d sync record(s) from %s", len(self._records), self._path)

    def flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": 1,
            "records": [r.model_dump(mode="json") for r in self._records.values()],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

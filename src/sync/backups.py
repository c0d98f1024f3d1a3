# src/sync/backups.py — v1
"""Local copies taken before a tracked file is overwritten with remote content.

Copies live at ``backups/<path>.<YYYYmmddTHHMMSSZ>.bak`` inside the tracked
tree (excluded from sync scope by the default globs) and are pruned after the
retention period.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable

from notesync.sync.file_source import FileSource

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backups"
_STAMP_FORMAT = "%Y%m%dT%H%M%SZ"
_STAMP_RE = re.compile(r"\.(\d{8}T\d{6}Z)\.bak$")


class BackupManager:
    def __init__(
        self,
        source: FileSource,
        retention_days: int = 30,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._retention = timedelta(days=retention_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def backup(self, path: str, data: bytes) -> str:
        """Store a copy of ``data`` and return the backup path."""
        stamp = self._clock().astimezone(timezone.utc).strftime(_STAMP_FORMAT)
        target = f"{BACKUP_PREFIX}/{path}.{stamp}.bak"
        self._source.write_bytes(target, data)
        logger.info("Backed up %s to %s", path, target)
        return target

    def cleanup(self) -> int:
        """Delete copies older than the retention period; return the count."""
        cutoff = self._clock() - self._retention
        removed = 0
        for path in self._source.list_prefix(BACKUP_PREFIX):
            match = _STAMP_RE.search(path)
            if not match:
                continue
            taken = datetime.strptime(match.group(1), _STAMP_FORMAT).replace(tzinfo=timezone.utc)
            if taken < cutoff:
                self._source.delete(path)
                removed += 1
        if removed:
            logger.info("Removed %d expired backup(s)", removed)
        return removed

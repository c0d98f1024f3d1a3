# src/sync/conflicts.py — v1
"""Conflict resolution strategies.

ConflictResolver only decides; SyncReconciler applies the decision:

- ``push``: write ``content`` to the remote (and locally when it differs)
- ``pull``: back up the local file and replace it with the remote content
- ``defer``: leave both sides untouched and surface the conflict
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from notesync.core.errors import MergeError
from notesync.stores.models import RemoteFile
from notesync.sync.merge import is_text, merge_text
from notesync.sync.models import ConflictStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    action: Literal["push", "pull", "defer"]
    strategy: ConflictStrategy
    content: bytes | None = None
    message: str = ""


class ConflictResolver:
    """Turns a strategy into a Resolution for one conflicting path.

    Args:
        strategy: Default strategy for newly detected conflicts.
        merge_fallback: Strategy used when a merge is impossible (binary
            content or overlapping edits).
    """

    def __init__(
        self,
        strategy: ConflictStrategy = "keep_local",
        merge_fallback: ConflictStrategy = "prompt",
    ) -> None:
        if merge_fallback == "merge":
            raise ValueError("merge_fallback cannot be 'merge'")
        self._strategy = strategy
        self._fallback = merge_fallback

    @property
    def strategy(self) -> ConflictStrategy:
        return self._strategy

    def resolve(
        self,
        path: str,
        local: bytes,
        remote: RemoteFile,
        base_text: str | None = None,
        strategy: ConflictStrategy | None = None,
    ) -> Resolution:
        chosen = strategy or self._strategy
        if chosen == "keep_local":
            return Resolution("push", chosen, local, "kept local version")
        if chosen == "keep_remote":
            return Resolution("pull", chosen, remote.content, "kept remote version")
        if chosen == "prompt":
            return Resolution("defer", chosen, message="awaiting manual resolution")
        return self._merge(path, local, remote, base_text)

    def _merge(
        self, path: str, local: bytes, remote: RemoteFile, base_text: str | None
    ) -> Resolution:
        if not (is_text(local) and is_text(remote.content)):
            reason = "binary content cannot be merged"
        else:
            try:
                merged = merge_text(base_text, local.decode("utf-8"), remote.text)
            except MergeError as e:
                reason = str(e)
            else:
                how = "three-way merge" if base_text is not None else "union merge"
                return Resolution("push", "merge", merged.encode("utf-8"), f"merged ({how})")

        logger.warning("Merge of %s impossible (%s); falling back to %s", path, reason, self._fallback)
        fallback = self.resolve(path, local, remote, base_text, strategy=self._fallback)
        return Resolution(
            fallback.action,
            fallback.strategy,
            fallback.content,
            f"{reason}; {fallback.message}",
        )

# src/sync/reconciler.py — v1
"""Periodic and manual reconciliation of a tracked tree against the remote stores.

State machine::

    idle --tick/manual--> syncing --done--> idle
                          syncing --unexpected error--> error --next tick--> syncing
    any --pause()--> paused --resume()--> idle

A trigger while ``syncing`` or ``paused`` is a no-op. pause() during a run
takes effect when the run finishes. Across replicas a SyncLock guards the
run; a replica that cannot take it skips.

Dispatch per changed path: images go through UploadStage (or the whole
pipeline when ``process_images`` is set), text files are written to the
version-control store with the revision recorded at the last sync.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import suppress
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable

from notesync.core.errors import StaleRevisionError
from notesync.core.models import Unit
from notesync.core.retry import RetryPolicy
from notesync.logging.context import sync_context
from notesync.pipeline.coordinator import PipelineCoordinator
from notesync.pipeline.stages import UploadStage
from notesync.stores.base_vcs_store import BaseVersionControlStore
from notesync.stores.models import RemoteFile
from notesync.sync.backups import BackupManager
from notesync.sync.change_detector import ChangeDetector, fingerprint
from notesync.sync.conflicts import ConflictResolver, Resolution
from notesync.sync.file_source import FileSource
from notesync.sync.locks import MemorySyncLock, SyncLock
from notesync.sync.merge import is_text
from notesync.sync.models import (
    ConflictRecord,
    ConflictStrategy,
    FileSyncDetail,
    PendingResolution,
    SyncErrorEntry,
    SyncOptions,
    SyncResult,
    SyncStatus,
    append_bounded,
    utcnow,
)

logger = logging.getLogger(__name__)

SYNC_ORIGINATOR = "sync"


class SyncReconciler:
    """Owns SyncStatus and drives reconciliation runs.

    Args:
        detector: Change detection over the tracked file source.
        source: Tracked files (read, and written back on keep_remote/merge).
        vcs_store: Remote store for text files.
        upload: Upload stage for image attachments.
        retry: Retry policy for version-control calls.
        options: Startup-time sync options.
        coordinator: Full pipeline, used for images when process_images is set.
        resolver: Conflict strategy; defaults from options.
        lock: Cross-replica lock; defaults to a process-local one.
        backups: Local backups taken before overwriting tracked files.
    """

    def __init__(
        self,
        detector: ChangeDetector,
        source: FileSource,
        vcs_store: BaseVersionControlStore,
        upload: UploadStage,
        retry: RetryPolicy,
        options: SyncOptions | None = None,
        coordinator: PipelineCoordinator | None = None,
        resolver: ConflictResolver | None = None,
        lock: SyncLock | None = None,
        backups: BackupManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._options = options or SyncOptions()
        self._detector = detector
        self._source = source
        self._vcs = vcs_store
        self._upload = upload
        self._retry = retry
        self._coordinator = coordinator
        self._resolver = resolver or ConflictResolver(
            self._options.strategy, self._options.merge_fallback
        )
        self._lock = lock or MemorySyncLock()
        self._backups = backups if self._options.backup_enabled else None
        self._clock = clock

        self._status = SyncStatus(auto_sync=self._options.auto_sync)
        self._pause_requested = False
        self._pending: dict[str, PendingResolution] = {}
        self._timer: asyncio.Task | None = None

    # --- Status ---

    @property
    def status(self) -> SyncStatus:
        """Deep copy of the current status."""
        return self._status.model_copy(deep=True)

    @property
    def state(self) -> str:
        return self._status.state

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # --- Triggers ---

    async def tick(self) -> SyncResult:
        """Run one reconciliation unless one is already running or sync is paused."""
        return await self._run()

    async def manual_sync(self) -> SyncResult:
        logger.info("Manual sync requested")
        return await self._run()

    async def sync_file(self, path: str) -> SyncResult:
        """Reconcile a single tracked path under the same guards as tick()."""
        return await self._run(only_path=path)

    # --- Timer ---

    def start(self) -> bool:
        """Arm the periodic timer. Only has an effect when auto-sync is enabled."""
        if not self._options.auto_sync:
            logger.info("Auto-sync disabled; timer not started")
            return False
        if self.running:
            return True
        self._timer = asyncio.get_running_loop().create_task(self._timer_loop())
        logger.info("Auto-sync every %.0f s", self._options.interval_s)
        return True

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        self._status.next_sync = None

    async def _timer_loop(self) -> None:
        while True:
            if self._status.state == "paused":
                self._status.next_sync = None
            else:
                self._status.next_sync = self._clock() + timedelta(seconds=self._options.interval_s)
            await asyncio.sleep(self._options.interval_s)
            if self._status.state == "paused":
                continue
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduled sync failed")

    # --- Pause / resume ---

    def pause(self) -> None:
        """Stop future runs. A run in progress finishes first."""
        if self._status.state == "syncing":
            self._pause_requested = True
            logger.info("Pause requested; takes effect after the current run")
            return
        self._status.state = "paused"
        self._status.next_sync = None
        logger.info("Sync paused")

    def resume(self) -> None:
        if self._pause_requested:
            self._pause_requested = False
            return
        if self._status.state != "paused":
            return
        self._status.state = "idle"
        if self.running:
            self._status.next_sync = self._clock() + timedelta(seconds=self._options.interval_s)
        logger.info("Sync resumed")

    # --- Conflicts ---

    def resolve_conflict(self, path: str, strategy: ConflictStrategy) -> bool:
        """Queue an explicit resolution, applied at the start of the next run.

        Returns False when ``path`` has no open conflict.
        """
        if strategy == "prompt":
            raise ValueError("an explicit resolution cannot be 'prompt'")
        if not any(c.path == path for c in self._status.conflicts):
            return False
        self._pending[path] = PendingResolution(path=path, strategy=strategy)
        logger.info("Queued %s resolution for %s", strategy, path)
        return True

    # --- Run ---

    async def _run(self, only_path: str | None = None) -> SyncResult:
        # No await before the state flips to syncing
        if self._status.state == "syncing":
            return SyncResult(success=True, skipped=True, message="sync already in progress")
        if self._status.state == "paused":
            return SyncResult(success=True, skipped=True, message="sync is paused")

        previous_state = self._status.state
        self._status.state = "syncing"
        run_id = uuid.uuid4().hex[:8]
        result = SyncResult(run_id=run_id, started_at=self._clock())
        t0 = time.monotonic()

        with sync_context(run_id):
            acquired = False
            try:
                acquired = await self._lock.acquire()
                if not acquired:
                    self._status.state = previous_state
                    logger.info("Another replica holds the sync lock; skipping")
                    result.skipped = True
                    result.message = "another replica is syncing"
                    result.finished_at = self._clock()
                    return result

                handled = await self._apply_pending(result)
                if only_path is None:
                    await self._sync_changes(result, skip=handled)
                elif only_path not in handled:
                    await self._sync_single(only_path, result)
                if self._backups is not None:
                    self._backups.cleanup()
                self._detector.state.flush()
                self._status.state = "idle"
            except Exception as e:
                logger.exception("Sync run failed")
                result.success = False
                result.message = f"sync failed: {e}"
                self._record_error(str(e))
                self._status.state = "error"
            finally:
                if acquired:
                    await self._lock.release()

            self._finish(result, t0)
        return result

    def _finish(self, result: SyncResult, t0: float) -> None:
        result.finished_at = self._clock()
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        if result.success:
            if result.stats.failed:
                result.message = (
                    f"synced {result.stats.succeeded}, failed {result.stats.failed}, "
                    f"conflicts {result.stats.conflicts}"
                )
            elif not result.message:
                result.message = f"synced {result.stats.succeeded} file(s)"

        counters = self._status.counters
        counters.runs += 1
        counters.files_synced += result.stats.succeeded
        counters.files_failed += result.stats.failed
        counters.last_duration_ms = result.duration_ms
        self._status.last_sync = result.finished_at

        if self._pause_requested:
            self._pause_requested = False
            self._status.state = "paused"
            self._status.next_sync = None
            logger.info("Sync paused")
        elif self.running:
            self._status.next_sync = result.finished_at + timedelta(seconds=self._options.interval_s)

        logger.info(
            "Sync run finished in %d ms: %d processed, %d failed, %d conflict(s)",
            result.duration_ms, result.stats.processed, result.stats.failed, result.stats.conflicts,
        )

    async def _sync_changes(self, result: SyncResult, skip: frozenset[str] = frozenset()) -> None:
        """Dispatch every scanned change except ``skip``, already handled this run."""
        changes = self._detector.scan()
        for path in changes.added + changes.modified:
            if path in skip:
                # Keep a still-pending path reported as changed
                if path in self._pending:
                    self._detector.mark_failed(path)
                continue
            result.record(await self._sync_path(path, created=path in changes.added))
        for path in changes.deleted:
            self._drop_conflict(path)
            result.record(
                FileSyncDetail(path=path, action="deleted", message="untracked; remote copy kept")
            )

    async def _sync_single(self, path: str, result: SyncResult) -> None:
        kind = self._detector.observe(path)
        if kind is None:
            result.record(FileSyncDetail(path=path, action="skipped", message="unchanged"))
        elif kind == "deleted":
            self._drop_conflict(path)
            result.record(
                FileSyncDetail(path=path, action="deleted", message="untracked; remote copy kept")
            )
        else:
            result.record(await self._sync_path(path, created=kind == "added"))

    async def _sync_path(self, path: str, created: bool) -> FileSyncDetail:
        """Dispatch one changed path. Failures are recorded, never raised."""
        data = self._source.read_bytes(path)
        if data is None:
            return FileSyncDetail(path=path, action="skipped", message="file vanished")
        suffix = PurePosixPath(path).suffix.lower()
        try:
            if suffix in self._options.image_extensions:
                return await self._sync_image(path, data, created)
            if suffix in self._options.text_extensions or is_text(data):
                return await self._sync_text(path, data, created)
        except Exception as e:
            self._detector.mark_failed(path)
            self._record_error(str(e), path)
            logger.error("Sync of %s failed: %s", path, e)
            return FileSyncDetail(
                path=path, action="created" if created else "updated", status="error", message=str(e)
            )
        return FileSyncDetail(path=path, action="skipped", message="unsupported file type")

    async def _sync_image(self, path: str, data: bytes, created: bool) -> FileSyncDetail:
        unit = Unit(payload=data, name=PurePosixPath(path).name, originator_id=SYNC_ORIGINATOR)
        action = "created" if created else "updated"
        if self._options.process_images and self._coordinator is not None:
            processed = await self._coordinator.process(unit)
            if not processed.success:
                raise RuntimeError(f"{processed.failed_stage}: {processed.error}")
            upload = processed.uploads[0]
            message = f"published {processed.note_path}"
        else:
            upload = await self._upload.run(unit)
            message = f"uploaded as {upload.id}"
        self._detector.mark_synced(path, remote_revision=upload.id, remote_url=upload.url)
        return FileSyncDetail(path=path, action=action, message=message)

    def _remote_path(self, path: str) -> str:
        prefix = self._options.remote_prefix.strip("/")
        return f"{prefix}/{path}" if prefix else path

    async def _read_remote(self, path: str) -> RemoteFile | None:
        remote_path = self._remote_path(path)
        return await self._retry.execute(
            lambda: self._vcs.read_file(remote_path), label=f"read {remote_path}"
        )

    async def _sync_text(self, path: str, data: bytes, created: bool) -> FileSyncDetail:
        record = self._detector.state.get(path)
        known_revision = record.remote_revision if record else None
        base_text = record.base_text if record else None
        remote = await self._read_remote(path)

        if remote is not None and remote.content == data:
            self._detector.mark_synced(
                path, remote_revision=remote.revision, base_text=_text_or_none(data)
            )
            self._drop_conflict(path)
            return FileSyncDetail(path=path, action="skipped", message="already up to date")

        if remote is not None and remote.revision != known_revision:
            reason = (
                "untracked remote file differs"
                if known_revision is None
                else "remote changed since last sync"
            )
            return await self._handle_conflict(path, data, remote, base_text, reason)

        remote_path = self._remote_path(path)
        try:
            written = await self._retry.execute(
                lambda: self._vcs.write_file(
                    remote_path,
                    data,
                    revision=remote.revision if remote else None,
                    message=f"sync {path}",
                ),
                label=f"write {remote_path}",
            )
        except StaleRevisionError:
            fresh = await self._read_remote(path)
            if fresh is None:
                raise
            return await self._handle_conflict(
                path, data, fresh, base_text, "remote changed during write"
            )
        self._detector.mark_synced(
            path, remote_revision=written.revision, remote_url=written.url, base_text=_text_or_none(data)
        )
        return FileSyncDetail(path=path, action="created" if created else "updated")

    async def _handle_conflict(
        self,
        path: str,
        local: bytes,
        remote: RemoteFile,
        base_text: str | None,
        reason: str,
        strategy: ConflictStrategy | None = None,
    ) -> FileSyncDetail:
        if not any(c.path == path for c in self._status.conflicts):
            self._status.counters.conflicts_detected += 1
        logger.warning("Conflict on %s: %s", path, reason)

        resolution = self._resolver.resolve(path, local, remote, base_text, strategy)
        if resolution.action == "defer":
            self._detector.mark_conflicted(path)
            self._open_conflict(path, reason, resolution, local, remote)
            return FileSyncDetail(path=path, action="conflict", message=f"{reason}; {resolution.message}")

        await self._apply_resolution(path, local, remote, resolution)
        self._drop_conflict(path)
        self._status.counters.conflicts_resolved += 1
        return FileSyncDetail(path=path, action="conflict", message=f"{reason}; {resolution.message}")

    async def _apply_resolution(
        self, path: str, local: bytes, remote: RemoteFile, resolution: Resolution
    ) -> None:
        if resolution.action == "pull":
            if self._backups is not None:
                self._backups.backup(path, local)
            self._source.write_bytes(path, remote.content)
            self._detector.mark_synced(
                path,
                remote_revision=remote.revision,
                base_text=_text_or_none(remote.content),
                content=remote.content,
            )
            return

        content = resolution.content if resolution.content is not None else local
        remote_path = self._remote_path(path)
        written = await self._retry.execute(
            lambda: self._vcs.write_file(
                remote_path,
                content,
                revision=remote.revision,
                message=f"sync {path} ({resolution.strategy})",
            ),
            label=f"write {remote_path}",
        )
        if content != local:
            if self._backups is not None:
                self._backups.backup(path, local)
            self._source.write_bytes(path, content)
        self._detector.mark_synced(
            path,
            remote_revision=written.revision,
            remote_url=written.url,
            base_text=_text_or_none(content),
            content=content,
        )

    async def _apply_pending(self, result: SyncResult) -> frozenset[str]:
        """Apply queued resolutions. Returns the paths dispatched here.

        A resolution that fails is queued again and its conflict stays open.
        """
        pending, self._pending = self._pending, {}
        for path, item in pending.items():
            local = self._source.read_bytes(path)
            if local is None:
                self._drop_conflict(path)
                self._detector.forget(path)
                continue
            try:
                remote = await self._read_remote(path)
                if remote is None:
                    self._detector.observe(path)
                    detail = await self._sync_path(path, created=True)
                    if detail.status == "success":
                        self._drop_conflict(path)
                    else:
                        self._pending.setdefault(path, item)
                    result.record(detail)
                    continue
                record = self._detector.state.get(path)
                detail = await self._handle_conflict(
                    path,
                    local,
                    remote,
                    record.base_text if record else None,
                    "manual resolution",
                    strategy=item.strategy,
                )
            except Exception as e:
                self._record_error(f"resolution of {path} failed: {e}", path)
                self._pending.setdefault(path, item)
                detail = FileSyncDetail(path=path, action="conflict", status="error", message=str(e))
            result.record(detail)
        return frozenset(pending)

    def _open_conflict(
        self, path: str, reason: str, resolution: Resolution, local: bytes, remote: RemoteFile
    ) -> None:
        self._status.conflicts = [c for c in self._status.conflicts if c.path != path]
        append_bounded(
            self._status.conflicts,
            ConflictRecord(
                path=path,
                reason=reason,
                strategy=resolution.strategy,
                local_fingerprint=fingerprint(local),
                remote_revision=remote.revision,
            ),
            self._options.max_conflicts,
        )

    def _drop_conflict(self, path: str) -> None:
        self._status.conflicts = [c for c in self._status.conflicts if c.path != path]
        self._pending.pop(path, None)

    def _record_error(self, message: str, path: str | None = None) -> None:
        append_bounded(
            self._status.errors,
            SyncErrorEntry(message=message, path=path, at=self._clock()),
            self._options.max_errors,
        )


def _text_or_none(data: bytes) -> str | None:
    return data.decode("utf-8") if is_text(data) else None

# tests/unit/sync/test_reconciler.py — v1
"""Tests for sync/reconciler.py — runs, conflicts, state machine and timer."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from notesync.core.errors import PermanentError, TransientError
from notesync.core.retry import RetryConfig, RetryPolicy
from notesync.pipeline.coordinator import PipelineCoordinator
from notesync.pipeline.stages import UploadStage
from notesync.stores.memory_stores import MemoryBlobStore, MemoryVersionControlStore
from notesync.sync.backups import BackupManager
from notesync.sync.change_detector import ChangeDetector
from notesync.sync.file_source import MemoryFileSource
from notesync.sync.locks import MemorySyncLock
from notesync.sync.models import SyncOptions, append_bounded
from notesync.sync.reconciler import SyncReconciler
from notesync.sync.state_store import MemorySyncStateStore

JPEG = b"\xff\xd8\xff\xe0" + b"\x00\x10JFIF" + b"\x01" * 64
BASE = b"title\nbody\nfooter\n"


# --- Helpers ---


async def _no_sleep(delay: float) -> None:
    return None


class BrokenSource(MemoryFileSource):
    broken = True

    def list_paths(self) -> list[str]:
        if self.broken:
            raise OSError("disk gone")
        return super().list_paths()


class GatedVcs(MemoryVersionControlStore):
    """Blocks every read until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def read_file(self, path):
        await self.gate.wait()
        return await super().read_file(path)


class RacingVcs(MemoryVersionControlStore):
    """Simulates a concurrent writer landing just before the next write."""

    race_content: bytes | None = None

    async def write_file(self, path, content, revision=None, message=""):
        if self.race_content is not None:
            self.files[path], self.race_content = self.race_content, None
        return await super().write_file(path, content, revision=revision, message=message)


class UnreachableLock(MemorySyncLock):
    unreachable = True

    async def acquire(self) -> bool:
        if self.unreachable:
            raise ConnectionError("redis unreachable")
        return await super().acquire()


class ReadOnlyVcs(MemoryVersionControlStore):
    """Rejects every write while ``read_only`` is set."""

    read_only = False

    async def write_file(self, path, content, revision=None, message=""):
        if self.read_only:
            raise TransientError("service unavailable", status_code=503)
        return await super().write_file(path, content, revision=revision, message=message)


class FlakyBlobStore(MemoryBlobStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def upload(self, data, name, metadata=None):
        if self.failures:
            self.failures -= 1
            raise PermanentError("rejected by blob store")
        return await super().upload(data, name, metadata)


class Harness:
    def __init__(
        self,
        files: dict[str, bytes] | None = None,
        *,
        source: MemoryFileSource | None = None,
        vcs: MemoryVersionControlStore | None = None,
        blobs: MemoryBlobStore | None = None,
        coordinator: PipelineCoordinator | None = None,
        lock: MemorySyncLock | None = None,
        **options,
    ) -> None:
        opts = replace(SyncOptions(), **options)
        self.source = source or MemoryFileSource(files, exclude=opts.exclude)
        self.state = MemorySyncStateStore()
        self.vcs = vcs or MemoryVersionControlStore()
        self.blobs = blobs or MemoryBlobStore()
        retry = RetryPolicy(RetryConfig(max_attempts=2, base_delay_s=0.0), sleep=_no_sleep)
        self.reconciler = SyncReconciler(
            detector=ChangeDetector(self.source, self.state),
            source=self.source,
            vcs_store=self.vcs,
            upload=UploadStage(self.blobs, retry),
            retry=retry,
            options=opts,
            coordinator=coordinator,
            lock=lock,
            backups=BackupManager(self.source),
        )

    def backups(self) -> list[str]:
        return self.source.list_prefix("backups")

    async def diverge(self, local: bytes, remote: bytes, path: str = "a.md") -> None:
        """Sync ``BASE`` to both sides, then edit each side independently."""
        self.source.files[path] = BASE
        await self.reconciler.tick()
        self.source.files[path] = local
        self.vcs.files[path] = remote


async def _wait_until_syncing(reconciler: SyncReconciler) -> None:
    for _ in range(50):
        if reconciler.state == "syncing":
            return
        await asyncio.sleep(0)
    raise AssertionError("run never started")


class TestRuns:
    @pytest.mark.asyncio
    async def test_first_sync_creates_remote_and_uploads_images(self):
        h = Harness({"a.md": b"# A\n", "img/p.jpg": JPEG})
        result = await h.reconciler.manual_sync()

        assert result.success and not result.skipped
        assert result.stats.succeeded == 2
        assert result.message == "synced 2 file(s)"
        assert h.vcs.files["a.md"] == b"# A\n"
        assert list(h.blobs.blobs.values()) == [JPEG]
        assert h.state.get("img/p.jpg").remote_revision == "blob-000001"
        assert h.reconciler.state == "idle"
        assert h.reconciler.status.counters.runs == 1
        assert h.reconciler.status.last_sync is not None

    @pytest.mark.asyncio
    async def test_unchanged_tree_is_a_no_op(self):
        h = Harness({"a.md": b"# A\n"})
        await h.reconciler.tick()
        result = await h.reconciler.tick()
        assert result.stats.processed == 0
        assert result.message == "synced 0 file(s)"
        assert len(h.vcs.commits) == 1

    @pytest.mark.asyncio
    async def test_modified_file_is_updated(self):
        h = Harness({"a.md": b"v1\n"})
        await h.reconciler.tick()
        h.source.files["a.md"] = b"v2\n"
        result = await h.reconciler.tick()
        assert [(d.path, d.action) for d in result.details] == [("a.md", "updated")]
        assert h.vcs.files["a.md"] == b"v2\n"

    @pytest.mark.asyncio
    async def test_remote_prefix(self):
        h = Harness({"n/a.md": b"x\n"}, remote_prefix="/vault/")
        await h.reconciler.tick()
        assert h.vcs.files == {"vault/n/a.md": b"x\n"}

    @pytest.mark.asyncio
    async def test_identical_remote_is_adopted(self):
        h = Harness({"a.md": b"same\n"})
        h.vcs.files["a.md"] = b"same\n"
        result = await h.reconciler.tick()
        assert result.details[0].action == "skipped"
        assert h.vcs.commits == []
        assert h.state.get("a.md").remote_revision is not None

    @pytest.mark.asyncio
    async def test_deleted_file_is_untracked_and_remote_kept(self):
        h = Harness({"a.md": b"x\n"})
        await h.reconciler.tick()
        del h.source.files["a.md"]
        result = await h.reconciler.tick()
        assert result.details[0].action == "deleted"
        assert result.details[0].message == "untracked; remote copy kept"
        assert h.vcs.files["a.md"] == b"x\n"
        assert h.state.get("a.md") is None

    @pytest.mark.asyncio
    async def test_unsupported_file_type_is_skipped(self):
        h = Harness({"blob.bin": b"\x00\x01\x02"})
        result = await h.reconciler.tick()
        assert result.details[0].action == "skipped"
        assert result.details[0].message == "unsupported file type"
        assert result.stats.skipped == 1
        assert h.vcs.files == {}

    @pytest.mark.asyncio
    async def test_failed_upload_is_retried_next_run(self):
        h = Harness({"p.jpg": JPEG}, blobs=FlakyBlobStore(failures=1))
        first = await h.reconciler.tick()
        assert first.success
        assert first.stats.failed == 1
        assert first.message == "synced 0, failed 1, conflicts 0"
        assert h.reconciler.status.errors[-1].path == "p.jpg"

        second = await h.reconciler.tick()
        assert second.stats.succeeded == 1
        assert len(h.blobs.blobs) == 1

    @pytest.mark.asyncio
    async def test_process_images_runs_the_pipeline(self, coordinator, vcs_store, blob_store):
        h = Harness(
            {"p.jpg": JPEG},
            vcs=vcs_store,
            blobs=blob_store,
            coordinator=coordinator,
            process_images=True,
        )
        result = await h.reconciler.tick()
        assert result.details[0].status == "success"
        assert result.details[0].message.startswith("published Notes/Inbox/")
        assert any(p.startswith("Notes/Inbox/") for p in vcs_store.files)

    @pytest.mark.asyncio
    async def test_sync_file_only_touches_that_path(self):
        h = Harness({"a.md": b"a\n", "b.md": b"b\n"})
        result = await h.reconciler.sync_file("a.md")
        assert result.stats.succeeded == 1
        assert set(h.vcs.files) == {"a.md"}

        again = await h.reconciler.sync_file("a.md")
        assert again.details[0].action == "skipped"
        assert again.details[0].message == "unchanged"

    @pytest.mark.asyncio
    async def test_backups_are_never_synced(self):
        h = Harness({"a.md": b"x\n", "backups/a.md.20250101T000000Z.bak": b"old\n"})
        await h.reconciler.tick()
        assert set(h.vcs.files) == {"a.md"}


class TestConflicts:
    @pytest.mark.asyncio
    async def test_keep_local(self):
        h = Harness()
        await h.diverge(b"local\n", b"remote\n")
        result = await h.reconciler.tick()

        assert result.details[0].action == "conflict"
        assert result.stats.conflicts == 1
        assert h.vcs.files["a.md"] == b"local\n"
        counters = h.reconciler.status.counters
        assert (counters.conflicts_detected, counters.conflicts_resolved) == (1, 1)
        assert h.reconciler.status.conflicts == []

    @pytest.mark.asyncio
    async def test_keep_remote_backs_up_local(self):
        h = Harness(strategy="keep_remote")
        await h.diverge(b"local\n", b"remote\n")
        await h.reconciler.tick()

        assert h.source.files["a.md"] == b"remote\n"
        backups = h.backups()
        assert len(backups) == 1
        assert backups[0].startswith("backups/a.md.")
        assert h.source.files[backups[0]] == b"local\n"

        after = await h.reconciler.tick()
        assert after.stats.processed == 0

    @pytest.mark.asyncio
    async def test_merge_writes_both_sides(self):
        h = Harness(strategy="merge")
        await h.diverge(b"new title\nbody\nfooter\n", b"title\nbody\nnew footer\n")
        await h.reconciler.tick()

        merged = b"new title\nbody\nnew footer\n"
        assert h.vcs.files["a.md"] == merged
        assert h.source.files["a.md"] == merged
        assert (await h.reconciler.tick()).stats.processed == 0

    @pytest.mark.asyncio
    async def test_overlapping_merge_falls_back_to_prompt(self):
        h = Harness(strategy="merge")
        await h.diverge(b"title\nlocal\nfooter\n", b"title\nremote\nfooter\n")
        result = await h.reconciler.tick()
        assert "overlapping" in result.details[0].message
        assert [c.path for c in h.reconciler.status.conflicts] == ["a.md"]

    @pytest.mark.asyncio
    async def test_prompt_defers_until_resolved(self):
        h = Harness(strategy="prompt")
        await h.diverge(b"local\n", b"remote\n")
        await h.reconciler.tick()

        conflicts = h.reconciler.status.conflicts
        assert [(c.path, c.strategy) for c in conflicts] == [("a.md", "prompt")]
        assert h.vcs.files["a.md"] == b"remote\n"
        assert h.state.get("a.md").conflicted

        assert not h.reconciler.resolve_conflict("other.md", "keep_local")
        with pytest.raises(ValueError):
            h.reconciler.resolve_conflict("a.md", "prompt")
        assert h.reconciler.resolve_conflict("a.md", "keep_local")

        result = await h.reconciler.tick()
        assert result.details[0].action == "conflict"
        assert h.vcs.files["a.md"] == b"local\n"
        assert h.reconciler.status.conflicts == []
        counters = h.reconciler.status.counters
        assert (counters.conflicts_detected, counters.conflicts_resolved) == (1, 1)
        assert not h.state.get("a.md").conflicted

    @pytest.mark.asyncio
    async def test_failed_resolution_stays_open_and_dispatches_once(self):
        vcs = ReadOnlyVcs()
        h = Harness(vcs=vcs, strategy="prompt")
        await h.diverge(b"local\n", b"remote\n")
        await h.reconciler.tick()
        assert h.reconciler.resolve_conflict("a.md", "keep_local")

        del vcs.files["a.md"]
        vcs.read_only = True
        failed = await h.reconciler.tick()

        assert [(d.path, d.status) for d in failed.details] == [("a.md", "error")]
        assert failed.stats.failed == 1
        assert [c.path for c in h.reconciler.status.conflicts] == ["a.md"]
        assert "a.md" in h.reconciler._pending
        assert h.reconciler.status.counters.files_failed == 1

        vcs.read_only = False
        retried = await h.reconciler.tick()

        assert [(d.path, d.status) for d in retried.details] == [("a.md", "success")]
        assert vcs.files["a.md"] == b"local\n"
        assert h.reconciler.status.conflicts == []
        assert h.reconciler._pending == {}
        assert (await h.reconciler.tick()).details == []

    @pytest.mark.asyncio
    async def test_untracked_remote_file_is_a_conflict(self):
        h = Harness({"a.md": b"local\n"}, strategy="prompt")
        h.vcs.files["a.md"] = b"remote\n"
        result = await h.reconciler.tick()
        assert "untracked remote file differs" in result.details[0].message

    @pytest.mark.asyncio
    async def test_stale_write_becomes_conflict(self):
        vcs = RacingVcs()
        h = Harness({"a.md": BASE}, vcs=vcs)
        await h.reconciler.tick()

        h.source.files["a.md"] = b"local\n"
        vcs.race_content = b"concurrent\n"
        result = await h.reconciler.tick()

        assert result.details[0].action == "conflict"
        assert "remote changed during write" in result.details[0].message
        assert vcs.files["a.md"] == b"local\n"

    @pytest.mark.asyncio
    async def test_status_is_a_copy(self):
        h = Harness(strategy="prompt")
        await h.diverge(b"local\n", b"remote\n")
        await h.reconciler.tick()
        h.reconciler.status.conflicts.clear()
        assert len(h.reconciler.status.conflicts) == 1


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_trigger_during_run_is_skipped_and_pause_waits(self):
        vcs = GatedVcs()
        h = Harness({"a.md": b"x\n"}, vcs=vcs)
        running = asyncio.create_task(h.reconciler.manual_sync())
        await _wait_until_syncing(h.reconciler)

        overlapping = await h.reconciler.tick()
        assert overlapping.skipped
        assert overlapping.message == "sync already in progress"

        h.reconciler.pause()
        assert h.reconciler.state == "syncing"

        vcs.gate.set()
        result = await running
        assert result.success and not result.skipped
        assert h.reconciler.state == "paused"

    @pytest.mark.asyncio
    async def test_paused_skips_until_resumed(self):
        h = Harness({"a.md": b"x\n"})
        h.reconciler.pause()
        paused = await h.reconciler.manual_sync()
        assert paused.skipped
        assert paused.message == "sync is paused"
        assert h.vcs.files == {}

        h.reconciler.resume()
        assert h.reconciler.state == "idle"
        assert (await h.reconciler.tick()).stats.succeeded == 1

    @pytest.mark.asyncio
    async def test_resume_during_run_cancels_pending_pause(self):
        vcs = GatedVcs()
        h = Harness({"a.md": b"x\n"}, vcs=vcs)
        running = asyncio.create_task(h.reconciler.tick())
        await _wait_until_syncing(h.reconciler)
        h.reconciler.pause()
        h.reconciler.resume()
        vcs.gate.set()
        await running
        assert h.reconciler.state == "idle"

    @pytest.mark.asyncio
    async def test_unexpected_failure_enters_error_then_recovers(self):
        source = BrokenSource({"a.md": b"x\n"})
        h = Harness(source=source)
        failed = await h.reconciler.tick()

        assert not failed.success
        assert failed.message == "sync failed: disk gone"
        assert h.reconciler.state == "error"
        assert h.reconciler.status.errors[-1].message == "disk gone"

        source.broken = False
        recovered = await h.reconciler.tick()
        assert recovered.success
        assert h.reconciler.state == "idle"

    @pytest.mark.asyncio
    async def test_lock_backend_failure_enters_error_then_recovers(self):
        lock = UnreachableLock()
        h = Harness({"a.md": b"x\n"}, lock=lock)
        failed = await h.reconciler.tick()

        assert not failed.success
        assert failed.message == "sync failed: redis unreachable"
        assert h.reconciler.state == "error"
        assert h.reconciler.status.errors[-1].message == "redis unreachable"
        assert h.reconciler.status.counters.runs == 1
        assert not lock.held

        lock.unreachable = False
        recovered = await h.reconciler.tick()
        assert recovered.success
        assert h.reconciler.state == "idle"
        assert h.vcs.files["a.md"] == b"x\n"
        assert not lock.held

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips(self):
        lock = MemorySyncLock()
        await lock.acquire()
        h = Harness({"a.md": b"x\n"}, lock=lock)
        result = await h.reconciler.tick()

        assert result.skipped
        assert result.message == "another replica is syncing"
        assert h.reconciler.state == "idle"
        assert h.reconciler.status.counters.runs == 0
        assert lock.held

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self):
        lock = MemorySyncLock()
        h = Harness({"a.md": b"x\n"}, lock=lock)
        await h.reconciler.tick()
        assert not lock.held


class TestTimer:
    @pytest.mark.asyncio
    async def test_not_started_without_auto_sync(self):
        h = Harness()
        assert h.reconciler.start() is False
        assert not h.reconciler.running

    @pytest.mark.asyncio
    async def test_periodic_runs(self):
        h = Harness({"a.md": b"x\n"}, auto_sync=True, interval_s=0.01)
        assert h.reconciler.start() is True
        assert h.reconciler.running
        assert h.reconciler.start() is True

        await asyncio.sleep(0.1)
        await h.reconciler.stop()

        status = h.reconciler.status
        assert status.counters.runs >= 1
        assert status.next_sync is None
        assert not h.reconciler.running
        assert h.vcs.files["a.md"] == b"x\n"

    @pytest.mark.asyncio
    async def test_timer_skips_while_paused(self):
        h = Harness({"a.md": b"x\n"}, auto_sync=True, interval_s=0.01)
        h.reconciler.pause()
        h.reconciler.start()
        await asyncio.sleep(0.05)
        await h.reconciler.stop()
        assert h.reconciler.status.counters.runs == 0


    @pytest.mark.asyncio
    async def test_timer_survives_a_failing_run(self, monkeypatch):
        h = Harness({"a.md": b"x\n"}, auto_sync=True, interval_s=0.01)
        calls = []
        original_tick = h.reconciler.tick

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("lock release failed")
            return await original_tick()

        monkeypatch.setattr(h.reconciler, "tick", tick)
        h.reconciler.start()
        await asyncio.sleep(0.1)
        assert h.reconciler.running
        await h.reconciler.stop()

        assert len(calls) >= 2
        assert h.vcs.files["a.md"] == b"x\n"


class TestAppendBounded:
    def test_evicts_oldest(self):
        items = [1, 2, 3]
        append_bounded(items, 4, cap=3)
        assert items == [2, 3, 4]

    def test_under_cap(self):
        items: list[int] = []
        append_bounded(items, 1, cap=3)
        assert items == [1]

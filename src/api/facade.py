# src/api/facade.py — v2
"""Public API facade: builds the runtime object graph from Settings.

Usage:
    from notesync.api.facade import build_runtime
    runtime = build_runtime()
    receipt = await runtime.intake.receive("chat-42", payload, "IMG_001.jpg")
    await runtime.aclose()

Settings are read exactly once here and turned into frozen option objects
(RetryConfig, PipelineOptions, SyncOptions); no component reads Settings at
call time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from notesync.api.intake import IntakeDispatcher
from notesync.config.settings import Settings
from notesync.core.retry import RetryConfig, RetryPolicy
from notesync.pipeline.coordinator import PipelineCoordinator
from notesync.pipeline.models import PipelineOptions
from notesync.pipeline.note_builder import NoteBuilder
from notesync.pipeline.quality_gate import QualityGate
from notesync.pipeline.stages import BackupStage, PublishStage, RecognitionStage, UploadStage
from notesync.sessions.base_session_store import BaseSessionStore
from notesync.sessions.session_factory import create_session_store
from notesync.stores.base_blob_store import BaseBlobStore
from notesync.stores.base_recognizer import BaseRecognizer
from notesync.stores.base_vcs_store import BaseVersionControlStore
from notesync.stores.store_factory import create_blob_store, create_recognizer, create_vcs_store
from notesync.sync.locks import SyncLock
from notesync.sync.models import SyncOptions
from notesync.sync.reconciler import SyncReconciler

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class Runtime:
    """Everything a process needs, wired once at startup."""

    settings: Settings
    sessions: BaseSessionStore
    blob_store: BaseBlobStore
    vcs_store: BaseVersionControlStore
    recognizer: BaseRecognizer
    upload: UploadStage
    coordinator: PipelineCoordinator
    intake: IntakeDispatcher
    reconciler: SyncReconciler | None = None
    sync_lock: SyncLock | None = None

    async def aclose(self) -> None:
        """Stop the sync timer and release every network client."""
        if self.reconciler is not None:
            await self.reconciler.stop()
        closers = [self.sessions.close(), self.blob_store.close(), self.vcs_store.close()]
        if self.sync_lock is not None:
            closers.append(self.sync_lock.close())
        for closer in closers:
            try:
                await closer
            except Exception as e:
                logger.warning("Error while closing runtime resource: %s", e)


def retry_config(settings: Settings) -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay_s=settings.retry_base_delay_s,
        max_delay_s=settings.retry_max_delay_s,
    )


def recognition_retry_config(settings: Settings) -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay_s=settings.recognition_base_delay_s,
        max_delay_s=max(settings.recognition_max_delay_s, settings.recognition_base_delay_s),
    )


def pipeline_options(settings: Settings) -> PipelineOptions:
    return PipelineOptions(
        quality_gate_enabled=settings.quality_gate_enabled,
        backup_enabled=settings.backup_enabled,
        backup_dir=settings.backup_dir,
        max_payload_bytes=settings.max_payload_mb * _MB,
        large_payload_bytes=settings.large_payload_mb * _MB,
        placeholder_on_failure=settings.recognition_placeholder_on_failure,
        confidence_warning_threshold=settings.confidence_warning_threshold,
        batch_concurrency=settings.batch_concurrency,
        chunk_delay_s=settings.batch_chunk_delay_s,
    )


def sync_options(settings: Settings) -> SyncOptions:
    return SyncOptions(
        interval_s=settings.sync_interval_seconds,
        auto_sync=settings.sync_auto,
        include=tuple(settings.sync_include_list),
        exclude=tuple(settings.sync_exclude_list),
        strategy=settings.sync_conflict_strategy,
        merge_fallback=settings.sync_merge_fallback,
        remote_prefix=settings.sync_remote_prefix,
        process_images=settings.sync_process_images,
        max_errors=settings.sync_max_errors,
        max_conflicts=settings.sync_max_conflicts,
        backup_enabled=settings.sync_backup_enabled,
        backup_retention_days=settings.sync_backup_retention_days,
    )


def build_runtime(
    settings: Settings | None = None,
    dry_run: bool = False,
    sleep: Sleep = asyncio.sleep,
) -> Runtime:
    """Wire stores, stages, coordinator, intake and (when SYNC_ROOT is set) the reconciler.

    Args:
        settings: Global settings. Loaded from .env if None.
        dry_run: Use in-memory stores and a static recognizer instead of the
            network adapters.
        sleep: Awaitable sleep shared by retry policies and batch chunking.

    Raises:
        ConfigurationError: If settings are internally inconsistent.
    """
    settings = settings or Settings()
    options = pipeline_options(settings)

    sessions = create_session_store(settings)
    blob_store = create_blob_store(settings, dry_run=dry_run)
    vcs_store = create_vcs_store(settings, dry_run=dry_run)
    recognizer = create_recognizer(settings, dry_run=dry_run)

    retry = RetryPolicy(retry_config(settings), sleep=sleep)
    recognition_retry = RetryPolicy(recognition_retry_config(settings), sleep=sleep)

    upload = UploadStage(
        blob_store,
        retry,
        source=settings.note_source,
        backup_enabled=options.backup_enabled,
    )
    recognition = RecognitionStage(
        recognizer,
        recognition_retry,
        placeholder_on_failure=options.placeholder_on_failure,
        confidence_warning_threshold=options.confidence_warning_threshold,
    )
    coordinator = PipelineCoordinator(
        upload=upload,
        recognition=recognition,
        publish=PublishStage(vcs_store, retry),
        note_builder=NoteBuilder(
            notes_dir=settings.notes_dir,
            timezone_name=settings.note_timezone,
            source=settings.note_source,
            status=settings.note_status,
            provider=recognizer.provider_name,
        ),
        backup=BackupStage(vcs_store, retry, backup_dir=options.backup_dir),
        quality_gate=QualityGate(options.max_payload_bytes, options.large_payload_bytes),
        options=options,
        sleep=sleep,
    )

    runtime = Runtime(
        settings=settings,
        sessions=sessions,
        blob_store=blob_store,
        vcs_store=vcs_store,
        recognizer=recognizer,
        upload=upload,
        coordinator=coordinator,
        intake=IntakeDispatcher(sessions, coordinator),
    )

    if settings.sync_root:
        runtime.sync_lock = _create_sync_lock(settings)
        runtime.reconciler = _build_reconciler(settings, runtime, retry)
    else:
        logger.info("SYNC_ROOT not set; reconciler disabled")

    logger.info(
        "Runtime ready (dry_run=%s, sessions=%s, sync=%s)",
        dry_run, type(sessions).__name__, bool(settings.sync_root),
    )
    return runtime


def _create_sync_lock(settings: Settings) -> SyncLock:
    if settings.sync_lock_backend == "redis":
        from notesync.sync.locks import RedisSyncLock
        return RedisSyncLock.from_url(
            settings.redis_url,
            name=f"{settings.redis_key_prefix}lock:sync",
            ttl_seconds=settings.sync_lock_ttl_seconds,
        )
    from notesync.sync.locks import MemorySyncLock
    return MemorySyncLock()


def _build_reconciler(settings: Settings, runtime: Runtime, retry: RetryPolicy) -> SyncReconciler:
    from notesync.sync.backups import BackupManager
    from notesync.sync.change_detector import ChangeDetector
    from notesync.sync.file_source import LocalFileSource
    from notesync.sync.state_store import JsonSyncStateStore

    options = sync_options(settings)
    source = LocalFileSource(settings.sync_root, options.include, options.exclude)
    state = JsonSyncStateStore(settings.sync_state_file)
    logger.info("Tracking %s (state in %s)", source.root, settings.sync_state_file)

    return SyncReconciler(
        detector=ChangeDetector(source, state),
        source=source,
        vcs_store=runtime.vcs_store,
        upload=runtime.upload,
        retry=retry,
        options=options,
        coordinator=runtime.coordinator,
        lock=runtime.sync_lock,
        backups=BackupManager(source, retention_days=options.backup_retention_days),
    )

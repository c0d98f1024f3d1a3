# src/pipeline/coordinator.py — v1
"""Pipeline coordinator: Upload -> Backup (optional) -> Recognition -> Assembly -> Publish.

A mandatory stage failure short-circuits the run and is recorded in the
returned ProcessingResult; nothing raised by a stage escapes process(). Backup
failures only add a warning. The quality gate runs before any upload and is
never retried.

Batches are processed in chunks of ``concurrency`` units: units inside a chunk
run concurrently, chunks run one after another with a short pause between
them so the external services are not flooded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from notesync.core.errors import InvalidFormatError
from notesync.core.models import Session, Unit
from notesync.logging.context import stage_context, unit_context
from notesync.pipeline.models import BatchResult, PipelineOptions, ProcessingResult, StageName
from notesync.pipeline.note_builder import NoteBuilder
from notesync.pipeline.quality_gate import QualityGate
from notesync.pipeline.stages import BackupStage, PublishStage, RecognitionStage, UploadStage

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class PipelineCoordinator:
    """Drive units through the processing stages.

    Args:
        upload: Upload stage (mandatory).
        recognition: Recognition stage (mandatory).
        publish: Publish stage (mandatory).
        note_builder: Pure assembly step.
        backup: Backup stage; skipped when None or disabled in options.
        quality_gate: Payload precondition; skipped when None or disabled.
        options: Startup-time pipeline options.
        sleep: Awaitable sleep used between batch chunks.
    """

    def __init__(
        self,
        upload: UploadStage,
        recognition: RecognitionStage,
        publish: PublishStage,
        note_builder: NoteBuilder,
        backup: BackupStage | None = None,
        quality_gate: QualityGate | None = None,
        options: PipelineOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._options = options or PipelineOptions()
        self._upload = upload
        self._recognition = recognition
        self._publish = publish
        self._note_builder = note_builder
        self._backup = backup if self._options.backup_enabled else None
        self._quality_gate = quality_gate if self._options.quality_gate_enabled else None
        self._sleep = sleep

    async def process(self, unit: Unit) -> ProcessingResult:
        """Drive one unit through every stage."""
        return await self._run([unit], unit.originator_id)

    async def process_session(self, session: Session) -> ProcessingResult:
        """Publish all units of a flushed session as one note, in arrival order."""
        if not session.units:
            result = ProcessingResult()
            return result.fail("quality_gate", "session has no units")
        return await self._run(list(session.units), session.originator_id)

    async def process_batch(
        self, units: list[Unit], concurrency: int | None = None
    ) -> BatchResult:
        """Process independent units with bounded concurrency.

        Results mirror the input order regardless of completion order.
        """
        size = self._options.batch_concurrency if concurrency is None else concurrency
        if size < 1:
            raise ValueError("concurrency must be >= 1")
        t0 = time.monotonic()
        results: list[ProcessingResult] = []
        chunks = [units[i:i + size] for i in range(0, len(units), size)]

        for idx, chunk in enumerate(chunks):
            logger.info("Batch chunk %d/%d: %d unit(s)", idx + 1, len(chunks), len(chunk))
            results.extend(await asyncio.gather(*(self.process(u) for u in chunk)))
            if idx < len(chunks) - 1 and self._options.chunk_delay_s > 0:
                await self._sleep(self._options.chunk_delay_s)

        batch = BatchResult.from_results(results, total_duration_ms=_elapsed_ms(t0))
        logger.info(
            "Batch finished: %d/%d succeeded in %d ms",
            batch.succeeded, batch.total, batch.total_duration_ms,
        )
        return batch

    # --- Stage driving ---

    async def _run(self, units: list[Unit], originator_id: str) -> ProcessingResult:
        names = [u.name for u in units]
        result = ProcessingResult(unit_names=names)
        t0 = time.monotonic()
        with unit_context(originator_id, ", ".join(names)):
            await self._drive(units, result)
        result.timing.total = _elapsed_ms(t0)
        if result.success:
            logger.info("Published %s in %d ms", result.note_path, result.timing.total)
        return result

    def _failed(
        self, result: ProcessingResult, stage: StageName, error: Exception
    ) -> ProcessingResult:
        logger.error("Stage %s failed: %s", stage, error)
        return result.fail(stage, str(error) or type(error).__name__)

    async def _drive(self, units: list[Unit], result: ProcessingResult) -> ProcessingResult:
        if self._quality_gate is not None:
            with stage_context("quality_gate"):
                try:
                    for unit in units:
                        result.warnings.extend(self._quality_gate.check(unit))
                except InvalidFormatError as e:
                    return self._failed(result, "quality_gate", e)

        start = time.monotonic()
        with stage_context("upload"):
            try:
                for unit in units:
                    result.uploads.append(await self._upload.run(unit))
            except Exception as e:
                result.timing.upload = _elapsed_ms(start)
                return self._failed(result, "upload", e)
        result.timing.upload = _elapsed_ms(start)

        if self._backup is not None:
            start = time.monotonic()
            with stage_context("backup"):
                for unit in units:
                    try:
                        result.backup_paths.append(await self._backup.run(unit))
                    except Exception as e:
                        logger.warning("Backup of %s failed: %s", unit.name, e)
                        result.warnings.append(f"backup failed for {unit.name}: {e}")
            result.timing.backup = _elapsed_ms(start)

        start = time.monotonic()
        with stage_context("recognition"):
            try:
                outcome = await self._recognition.run([u.url for u in result.uploads])
            except Exception as e:
                result.timing.recognition = _elapsed_ms(start)
                return self._failed(result, "recognition", e)
        result.timing.recognition = _elapsed_ms(start)
        result.recognition = outcome
        if outcome.placeholder:
            result.warnings.append(f"recognition failed, placeholder text used: {outcome.error}")
        elif outcome.confidence < self._recognition.confidence_warning_threshold:
            result.warnings.append(
                f"recognition confidence {outcome.confidence:.2f} below "
                f"threshold {self._recognition.confidence_warning_threshold:.2f}"
            )

        start = time.monotonic()
        with stage_context("assembly"):
            try:
                note = self._note_builder.build(result.uploads, outcome, result.backup_paths)
            except Exception as e:
                result.timing.assembly = _elapsed_ms(start)
                return self._failed(result, "assembly", e)
        result.timing.assembly = _elapsed_ms(start)

        start = time.monotonic()
        with stage_context("publish"):
            try:
                result.note_path = await self._publish.run(note)
            except Exception as e:
                result.timing.publish = _elapsed_ms(start)
                return self._failed(result, "publish", e)
        result.timing.publish = _elapsed_ms(start)

        result.success = True
        return result

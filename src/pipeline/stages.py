# src/pipeline/stages.py — v1
"""Retryable pipeline stages, each wrapping one external call.

Every stage runs its collaborator through a RetryPolicy built for that call
site. Stages raise on failure; PipelineCoordinator turns those errors into
ProcessingResult fields.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable

from notesync.core.errors import RetryExhaustedError
from notesync.core.models import Unit
from notesync.core.retry import RetryPolicy
from notesync.pipeline.models import QualityHint, RecognitionOutcome, UploadRecord
from notesync.pipeline.note_builder import AssembledNote
from notesync.stores.base_blob_store import BaseBlobStore
from notesync.stores.base_recognizer import BaseRecognizer
from notesync.stores.base_transcoder import BaseTranscoder, PassthroughTranscoder
from notesync.stores.base_vcs_store import BaseVersionControlStore

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

VARIANTS: dict[str, str] = {
    "thumbnail": "w=300,h=300,fit=cover",
    "medium": "w=800,h=800,fit=scale-down",
    "large": "w=1200,h=1200,fit=scale-down",
}


def quality_hint(size: int) -> QualityHint:
    """Delivery quality hint; bigger originals are served more compressed."""
    if size > 10 * _MB:
        return "medium"
    if size > 5 * _MB:
        return "high"
    if size > 2 * _MB:
        return "highest"
    return "auto"


class UploadStage:
    """Optional transcode, then upload one unit to the blob store."""

    def __init__(
        self,
        blob_store: BaseBlobStore,
        retry: RetryPolicy,
        transcoder: BaseTranscoder | None = None,
        source: str = "telegram",
        backup_enabled: bool = False,
    ) -> None:
        self._blob_store = blob_store
        self._retry = retry
        self._transcoder = transcoder or PassthroughTranscoder()
        self._source = source
        self._backup_enabled = backup_enabled

    async def run(self, unit: Unit) -> UploadRecord:
        data = await self._transcoder.transcode(unit.payload, unit.name)
        hint = quality_hint(len(unit.payload))
        metadata = {
            "source": self._source,
            "originator": unit.originator_id,
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
            "original_filename": unit.name,
            "quality": hint,
            "backup": self._backup_enabled,
        }
        stored = await self._retry.execute(
            lambda: self._blob_store.upload(data, unit.name, metadata),
            label=f"upload {unit.name}",
        )
        variants = {}
        for variant_name, spec in VARIANTS.items():
            url = self._blob_store.variant_url(stored.id, spec)
            if url:
                variants[variant_name] = url
        return UploadRecord(
            id=stored.id,
            url=stored.url,
            filename=unit.name,
            size=len(data),
            quality_hint=hint,
            variants=variants,
        )


def backup_path(backup_dir: str, unit: Unit, now: datetime) -> str:
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-") + (
        f"{now.microsecond // 1000:03d}Z"
    )
    safe_name = re.sub(r"[^\w.\-]+", "_", unit.name) or "unit"
    prefix = backup_dir.strip("/")
    path = f"{now.astimezone(timezone.utc):%Y}/{stamp}_{safe_name}"
    return f"{prefix}/{path}" if prefix else path


class BackupStage:
    """Write the original bytes to the version-control store."""

    def __init__(
        self,
        vcs_store: BaseVersionControlStore,
        retry: RetryPolicy,
        backup_dir: str = "images/originals",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._vcs = vcs_store
        self._retry = retry
        self._backup_dir = backup_dir
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self, unit: Unit) -> str:
        path = backup_path(self._backup_dir, unit, self._clock())
        await self._retry.execute(
            lambda: self._vcs.write_file(path, unit.payload, message=f"backup original {unit.name}"),
            label=f"backup {unit.name}",
        )
        return path


_MATH_RE = re.compile(r"[$\\{}^_]")
_COMMON_WORDS = ("the", "and", "or", "is", "are", "was", "were", "的", "是", "在", "有")


def estimate_confidence(text: str) -> float:
    """Text-feature heuristic; recognizers report no confidence of their own."""
    confidence = 0.5
    if len(text) > 50:
        confidence += 0.2
    if len(text) > 200:
        confidence += 0.1
    if _MATH_RE.search(text):
        confidence += 0.1
    lowered = text.lower()
    if any(word in lowered for word in _COMMON_WORDS):
        confidence += 0.1
    return min(round(confidence, 3), 0.95)


def placeholder_text(count: int) -> str:
    return "\n\n".join(
        f"[unrecognized: image {i}, recognition failed]" for i in range(1, count + 1)
    )


class RecognitionStage:
    """Recognize all uploaded images of one invocation.

    Args:
        placeholder_on_failure: When transient failures exhaust the retry
            bound, return one placeholder per input instead of failing.
    """

    def __init__(
        self,
        recognizer: BaseRecognizer,
        retry: RetryPolicy,
        placeholder_on_failure: bool = True,
        confidence_warning_threshold: float = 0.6,
    ) -> None:
        self._recognizer = recognizer
        self._retry = retry
        self._placeholder_on_failure = placeholder_on_failure
        self._threshold = confidence_warning_threshold

    @property
    def provider_name(self) -> str:
        return self._recognizer.provider_name

    @property
    def confidence_warning_threshold(self) -> float:
        return self._threshold

    async def run(self, urls: list[str]) -> RecognitionOutcome:
        try:
            text = await self._retry.execute(
                lambda: self._recognizer.recognize(urls),
                label=f"recognize {len(urls)} image(s)",
            )
        except RetryExhaustedError as e:
            if not self._placeholder_on_failure:
                raise
            logger.warning("Recognition gave up after %d attempts; using placeholders", e.attempts)
            return RecognitionOutcome(
                text=placeholder_text(len(urls)),
                confidence=0.0,
                placeholder=True,
                error=str(e.last_error),
            )
        return RecognitionOutcome(text=text, confidence=estimate_confidence(text))


class PublishStage:
    """Create the assembled note in the version-control store."""

    def __init__(self, vcs_store: BaseVersionControlStore, retry: RetryPolicy) -> None:
        self._vcs = vcs_store
        self._retry = retry

    async def run(self, note: AssembledNote) -> str:
        filename = note.path.rsplit("/", 1)[-1]
        await self._retry.execute(
            lambda: self._vcs.write_file(note.path, note.content, message=f"add note {filename}"),
            label=f"publish {filename}",
        )
        return note.path

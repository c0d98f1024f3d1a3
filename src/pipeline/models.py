# src/pipeline/models.py — v1
"""Pipeline domain models: UploadRecord, RecognitionOutcome, StageTiming, ProcessingResult, BatchResult."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

StageName = Literal[
    "quality_gate", "upload", "backup", "recognition", "assembly", "publish",
]

QualityHint = Literal["auto", "highest", "high", "medium"]


@dataclass(frozen=True)
class PipelineOptions:
    """Startup-time pipeline configuration."""

    quality_gate_enabled: bool = True
    backup_enabled: bool = True
    backup_dir: str = "images/originals"
    max_payload_bytes: int = 100 * 1024 * 1024
    large_payload_bytes: int = 50 * 1024 * 1024
    placeholder_on_failure: bool = True
    confidence_warning_threshold: float = 0.6
    batch_concurrency: int = 5
    chunk_delay_s: float = 1.0


class UploadRecord(BaseModel):
    """A unit accepted by the blob store."""

    id: str
    url: str
    filename: str
    size: int
    quality_hint: QualityHint = "auto"
    variants: dict[str, str] = Field(default_factory=dict)


class RecognitionOutcome(BaseModel):
    """Recognized text for one invocation."""

    text: str
    confidence: float = 0.0
    placeholder: bool = False
    error: str | None = None


class StageTiming(BaseModel):
    """Per-stage wall time in milliseconds. Stages not reached stay at 0."""

    upload: int = 0
    backup: int = 0
    recognition: int = 0
    assembly: int = 0
    publish: int = 0
    total: int = 0


class ProcessingResult(BaseModel):
    """Outcome of driving one unit (or one flushed session) through the pipeline.

    A failed result always names the failing stage and its error. Sub-results
    of stages that completed before the failure are kept.
    """

    success: bool = False
    unit_names: list[str] = Field(default_factory=list)
    timing: StageTiming = Field(default_factory=StageTiming)
    uploads: list[UploadRecord] = Field(default_factory=list)
    backup_paths: list[str] = Field(default_factory=list)
    recognition: RecognitionOutcome | None = None
    note_path: str | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    failed_stage: StageName | None = None

    def fail(self, stage: StageName, error: str) -> ProcessingResult:
        self.success = False
        self.failed_stage = stage
        self.error = error
        return self


class BatchResult(BaseModel):
    """Aggregate over a batch run. Built once by from_results and never mutated."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[ProcessingResult] = Field(default_factory=list)
    error_histogram: dict[str, int] = Field(default_factory=dict)
    average_duration_ms: float = 0.0
    total_duration_ms: int = 0

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0

    @classmethod
    def from_results(
        cls, results: list[ProcessingResult], total_duration_ms: int | None = None
    ) -> BatchResult:
        succeeded = sum(1 for r in results if r.success)
        histogram = Counter(r.error for r in results if not r.success and r.error)
        durations = [r.timing.total for r in results]
        return cls(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
            error_histogram=dict(histogram),
            average_duration_ms=(sum(durations) / len(durations)) if durations else 0.0,
            total_duration_ms=total_duration_ms if total_duration_ms is not None else sum(durations),
        )

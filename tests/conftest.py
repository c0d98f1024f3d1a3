# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides image payloads, units, in-memory stores, fast retry policies and a
fully wired pipeline coordinator. No external services: all I/O is in memory.
"""

from __future__ import annotations

import pytest

from notesync.core.models import Unit
from notesync.core.retry import RetryConfig, RetryPolicy
from notesync.pipeline.coordinator import PipelineCoordinator
from notesync.pipeline.models import PipelineOptions
from notesync.pipeline.note_builder import NoteBuilder
from notesync.pipeline.quality_gate import QualityGate
from notesync.pipeline.stages import BackupStage, PublishStage, RecognitionStage, UploadStage
from notesync.stores.memory_stores import (
    MemoryBlobStore,
    MemoryVersionControlStore,
    StaticRecognizer,
)

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00\x10JFIF" + b"\x01" * 64
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x02" * 64


# === HELPERS ===


class SleepRecorder:
    """Awaitable sleep that returns immediately and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_unit(name: str = "IMG_001.jpg", payload: bytes = JPEG_BYTES, originator: str = "chat-1") -> Unit:
    return Unit(payload=payload, name=name, originator_id=originator)


# === FIXTURES: Payloads and units ===


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def unit() -> Unit:
    return make_unit()


# === FIXTURES: Stores ===


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def vcs_store() -> MemoryVersionControlStore:
    return MemoryVersionControlStore()


@pytest.fixture
def recognizer() -> StaticRecognizer:
    return StaticRecognizer("The quick brown fox is written on this page of notes, clearly.")


# === FIXTURES: Retry and pipeline ===


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry(sleep: SleepRecorder) -> RetryPolicy:
    return RetryPolicy(RetryConfig(max_attempts=3, base_delay_s=1.0, max_delay_s=10.0), sleep=sleep)


@pytest.fixture
def pipeline_options() -> PipelineOptions:
    return PipelineOptions(chunk_delay_s=0.0)


@pytest.fixture
def coordinator(
    blob_store: MemoryBlobStore,
    vcs_store: MemoryVersionControlStore,
    recognizer: StaticRecognizer,
    retry: RetryPolicy,
    pipeline_options: PipelineOptions,
    sleep: SleepRecorder,
) -> PipelineCoordinator:
    return PipelineCoordinator(
        upload=UploadStage(blob_store, retry),
        recognition=RecognitionStage(recognizer, retry),
        publish=PublishStage(vcs_store, retry),
        note_builder=NoteBuilder(provider=recognizer.provider_name),
        backup=BackupStage(vcs_store, retry),
        quality_gate=QualityGate(),
        options=pipeline_options,
        sleep=sleep,
    )

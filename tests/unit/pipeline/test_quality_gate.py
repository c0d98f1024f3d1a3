# tests/unit/pipeline/test_quality_gate.py — v1
"""Tests for pipeline/quality_gate.py."""

from __future__ import annotations

import pytest

from notesync.core.errors import InvalidFormatError
from notesync.core.models import Unit
from notesync.pipeline.quality_gate import QualityGate, detect_format


# --- Helpers ---


def _unit(payload: bytes) -> Unit:
    return Unit(payload=payload, name="page.jpg", originator_id="c")


class TestDetectFormat:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            (b"\xff\xd8\xff\xe0rest", "jpeg"),
            (b"\x89PNG\r\n\x1a\n", "png"),
            (b"GIF89a", "gif"),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "webp"),
        ],
    )
    def test_known(self, payload, expected):
        assert detect_format(payload)[0] == expected

    def test_riff_without_webp_marker(self):
        assert detect_format(b"RIFF\x00\x00\x00\x00WAVEfmt ") is None

    def test_unknown(self):
        assert detect_format(b"%PDF-1.7") is None


class TestQualityGate:
    def test_accepts_small_jpeg(self, jpeg_bytes):
        assert QualityGate().check(_unit(jpeg_bytes)) == []

    def test_empty_payload(self):
        with pytest.raises(InvalidFormatError, match="empty"):
            QualityGate().check(_unit(b""))

    def test_oversize(self, jpeg_bytes):
        gate = QualityGate(max_payload_bytes=10, large_payload_bytes=5)
        with pytest.raises(InvalidFormatError, match="exceeds"):
            gate.check(_unit(jpeg_bytes))

    def test_large_warning(self, jpeg_bytes):
        gate = QualityGate(max_payload_bytes=10_000, large_payload_bytes=10)
        warnings = gate.check(_unit(jpeg_bytes))
        assert len(warnings) == 1
        assert "large image" in warnings[0]

    def test_unsupported_format(self):
        with pytest.raises(InvalidFormatError, match="unsupported"):
            QualityGate().check(_unit(b"plain text"))

# src/pipeline/quality_gate.py — v1
"""Deterministic payload precondition checked before any upload.

A rejection raises InvalidFormatError, which is permanent and never retried.
"""

from __future__ import annotations

import logging

from notesync.core.errors import InvalidFormatError
from notesync.core.models import Unit

logger = logging.getLogger(__name__)

# (format, content type, prefix); WebP additionally needs "WEBP" at offset 8
SIGNATURES: list[tuple[str, str, bytes]] = [
    ("jpeg", "image/jpeg", b"\xff\xd8\xff"),
    ("png", "image/png", b"\x89PNG"),
    ("gif", "image/gif", b"GIF8"),
    ("webp", "image/webp", b"RIFF"),
]


def detect_format(payload: bytes) -> tuple[str, str] | None:
    """Return (format, content type) for a known image signature."""
    for fmt, content_type, prefix in SIGNATURES:
        if not payload.startswith(prefix):
            continue
        if fmt == "webp" and payload[8:12] != b"WEBP":
            continue
        return fmt, content_type
    return None


class QualityGate:
    """Validates signature and size of a unit payload.

    Args:
        max_payload_bytes: Hard upper bound; larger payloads are rejected.
        large_payload_bytes: Soft bound; larger payloads only produce a warning.
    """

    def __init__(
        self,
        max_payload_bytes: int = 100 * 1024 * 1024,
        large_payload_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self._max = max_payload_bytes
        self._large = large_payload_bytes

    def check(self, unit: Unit) -> list[str]:
        """Return warnings for an acceptable unit.

        Raises:
            InvalidFormatError: Empty, oversize or unrecognized payload.
        """
        size = len(unit.payload)
        if size == 0:
            raise InvalidFormatError(f"{unit.name}: empty payload")
        if size > self._max:
            raise InvalidFormatError(
                f"{unit.name}: payload of {size} bytes exceeds limit of {self._max} bytes"
            )
        if detect_format(unit.payload) is None:
            raise InvalidFormatError(f"{unit.name}: unsupported image format")

        warnings: list[str] = []
        if size > self._large:
            warnings.append(
                f"{unit.name}: large image ({size / (1024 * 1024):.1f}MB), processing may be slow"
            )
        return warnings

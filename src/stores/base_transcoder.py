# src/stores/base_transcoder.py — v1
"""Pluggable image optimization step run before upload.

Real pixel work lives outside this package. The default transcoder hands the
payload through untouched.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseTranscoder(ABC):
    """Rewrites an image payload before it is uploaded."""

    @abstractmethod
    async def transcode(self, data: bytes, name: str) -> bytes:
        """Return the bytes to upload in place of ``data``."""


class PassthroughTranscoder(BaseTranscoder):
    async def transcode(self, data: bytes, name: str) -> bytes:
        return data

# src/stores/base_recognizer.py — v1
"""Abstract handwriting recognition interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseRecognizer(ABC):
    """Turns publicly reachable image URLs into Markdown text."""

    @abstractmethod
    async def recognize(self, urls: list[str]) -> str:
        """Recognize all images in order and return one Markdown document."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier recorded in note front matter."""

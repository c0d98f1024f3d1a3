# src/stores/openai_recognizer.py — v1
"""Handwriting recognition through an OpenAI-compatible vision model.

Uses the official openai SDK pointed at any compatible endpoint. Defaults
target SiliconFlow's GLM-4.5V.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import openai

from notesync.core.errors import NotConfiguredError, PermanentError, TransientError
from notesync.stores.base_recognizer import BaseRecognizer

logger = logging.getLogger(__name__)

OCR_PROMPT = "\n".join([
    "You are a precise OCR and comprehension assistant.",
    "Extract all readable text, headings, key points and tables from the images below, and:",
    "1) Output in image order, keeping the original structure and hierarchy;",
    "2) Format with Markdown (lists, tables, code blocks);",
    "3) Render any mathematical expression as LaTeX in $...$ or $$...$$;",
    "4) Mark uncertain content with (?);",
    "5) Output only the final Markdown, without extra commentary.",
])


class OpenAICompatRecognizer(BaseRecognizer):
    """Vision-model recognizer speaking the chat completions protocol."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.siliconflow.cn/v1",
        model: str = "zai-org/GLM-4.5V",
        max_tokens: int = 4096,
        temperature: float = 0.1,
        timeout_s: float = 60.0,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client
        if self._client is None and api_key:
            self._client = openai.AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0,
            )

    @property
    def provider_name(self) -> str:
        return self._model.rsplit("/", 1)[-1].lower()

    async def recognize(self, urls: list[str]) -> str:
        if self._client is None:
            raise NotConfiguredError("Recognition requires OCR_API_KEY")
        if not urls:
            raise PermanentError("No image URLs provided")

        content: list[dict[str, Any]] = [{"type": "text", "text": OCR_PROMPT}]
        for url in urls:
            content.append({"type": "image_url", "image_url": {"url": url}})

        t0 = time.monotonic()
        try:
            resp = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError) as e:
            raise TransientError(f"Recognition call failed: {e}") from e
        except openai.InternalServerError as e:
            raise TransientError(f"Recognition service error: {e}", status_code=e.status_code) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise NotConfiguredError(f"Recognition credentials rejected: {e}") from e
        except openai.APIStatusError as e:
            raise PermanentError(f"Recognition request rejected: {e}") from e
        latency = int((time.monotonic() - t0) * 1000)

        text = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not text:
            raise TransientError("Recognition returned empty text")
        logger.debug("Recognized %d image(s) in %d ms", len(urls), latency)
        return text

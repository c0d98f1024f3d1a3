# src/core/retry.py — v2
"""Bounded retry with exponential backoff for every network-calling stage.

One RetryPolicy instance is built per call site from a RetryConfig, so the
backoff behavior is uniform and can be tested without any network code.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from notesync.core.errors import RetryExhaustedError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 10.0


@dataclass(frozen=True)
class RetryConfig:
    """Retry parameters for one call site."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    max_delay_s: float = DEFAULT_MAX_DELAY_S
    exponential: bool = True
    jitter: bool = False


def compute_delay(
    attempt: int,
    base_delay_s: float,
    max_delay_s: float,
    exponential: bool,
    jitter: bool = False,
) -> float:
    """Delay to wait after the given failed attempt (1-based)."""
    if exponential:
        delay = base_delay_s * (2 ** (attempt - 1))
    else:
        delay = base_delay_s
    delay = min(delay, max_delay_s)
    if jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


class RetryPolicy:
    """Execute an async operation with bounded retries.

    Args:
        config: Default parameters, overridable per call.
        sleep: Awaitable sleep function (injected in tests).
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        base_delay_s: float | None = None,
        exponential: bool | None = None,
        label: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or the attempt bound is hit.

        Raises:
            PermanentError: Immediately, on the first permanent failure.
            RetryExhaustedError: After ``max_attempts`` failed attempts.
        """
        attempts_allowed = max_attempts if max_attempts is not None else self._config.max_attempts
        if attempts_allowed < 1:
            raise ValueError("max_attempts must be >= 1")
        base = base_delay_s if base_delay_s is not None else self._config.base_delay_s
        expo = exponential if exponential is not None else self._config.exponential

        last_error: Exception | None = None
        for attempt in range(1, attempts_allowed + 1):
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    logger.warning("%s failed permanently: %s", label, e)
                    raise
                last_error = e
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    label, attempt, attempts_allowed, e,
                )
                if attempt < attempts_allowed:
                    delay = compute_delay(
                        attempt, base, self._config.max_delay_s, expo, self._config.jitter,
                    )
                    await self._sleep(delay)

        assert last_error is not None
        raise RetryExhaustedError(label, attempts_allowed, last_error) from last_error

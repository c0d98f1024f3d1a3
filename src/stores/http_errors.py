# src/stores/http_errors.py — v1
"""Map httpx failures onto the transient/permanent error taxonomy."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from notesync.core.errors import NotConfiguredError, PermanentError, TransientError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = {408, 425, 429}


def classify_response(response: httpx.Response, service: str) -> None:
    """Raise the matching NotesyncError for a non-2xx response."""
    if response.is_success:
        return
    status = response.status_code
    detail = response.text[:300]
    message = f"{service} returned {status}: {detail}"
    if status in _TRANSIENT_STATUSES or status >= 500:
        raise TransientError(message, status_code=status)
    if status in (401, 403):
        raise NotConfiguredError(message)
    raise PermanentError(message)


@asynccontextmanager
async def transport_errors(service: str) -> AsyncIterator[None]:
    """Convert connection-level httpx errors into TransientError."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise TransientError(f"{service} timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransientError(f"{service} unreachable: {e}") from e

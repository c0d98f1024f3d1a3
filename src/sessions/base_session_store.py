# src/sessions/base_session_store.py — v1
"""Abstract session store interface.

A session groups the units one originator sends within a sliding time window.
Implementations must serialize mutation per originator key while letting
different originators proceed independently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from notesync.core.models import AddResult, Session, Unit


class BaseSessionStore(ABC):
    """Unified interface for session aggregation backends."""

    @property
    @abstractmethod
    def window_seconds(self) -> float:
        """Inactivity window after which a session expires."""

    @abstractmethod
    async def add(
        self, originator_id: str, unit: Unit, now: float | None = None
    ) -> AddResult:
        """Append ``unit`` to the live session, or start a new one.

        A missing or expired session is replaced by a new session holding only
        ``unit``. An expired session displaced this way is returned in
        ``AddResult.flushed``.
        """

    @abstractmethod
    async def close_expired_if_any(
        self, originator_id: str, now: float | None = None
    ) -> Session | None:
        """Return and clear the session if it has expired."""

    @abstractmethod
    async def end_session(self, originator_id: str) -> Session | None:
        """Unconditionally return and clear the current session."""

    @abstractmethod
    async def get(self, originator_id: str) -> Session | None:
        """Peek at the current session without mutating it."""

    async def close(self) -> None:
        """Release backend resources."""


def apply_add(
    existing: Session | None,
    originator_id: str,
    unit: Unit,
    now: float,
    window_seconds: float,
) -> AddResult:
    """Pure add transition shared by every backend."""
    if existing is None or existing.is_expired(now):
        session = Session(
            originator_id=originator_id,
            units=[unit],
            last_activity=now,
            window_seconds=window_seconds,
        )
        return AddResult(session=session, flushed=existing)

    session = Session(
        originator_id=originator_id,
        units=[*existing.units, unit],
        last_activity=now,
        window_seconds=existing.window_seconds,
    )
    return AddResult(session=session)

# src/core/models.py — v2
"""Shared domain models for the session layer: Unit, Session, AddResult.

Pipeline and sync models live next to their owners (pipeline.models,
sync.models); these three are imported from here everywhere else.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Unit(BaseModel):
    """One logical piece of work, e.g. a single photographed page.

    Immutable after creation. The payload serializes to base64 in JSON so a
    distributed session backend can persist it.
    """

    model_config = ConfigDict(
        frozen=True,
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    payload: bytes
    name: str
    originator_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.payload)


class Session(BaseModel):
    """Units aggregated from one originator within a time window."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    originator_id: str
    units: list[Unit] = Field(default_factory=list)
    last_activity: float
    window_seconds: float

    def is_expired(self, now: float) -> bool:
        """A session stays valid only while now - last_activity < window."""
        return now - self.last_activity >= self.window_seconds

    def __len__(self) -> int:
        return len(self.units)


class AddResult(BaseModel):
    """Outcome of SessionStore.add.

    ``flushed`` holds an expired session that the add displaced. It is handed
    back exactly once so the caller can publish it.
    """

    session: Session
    flushed: Session | None = None

    @property
    def started_new(self) -> bool:
        return len(self.session.units) == 1

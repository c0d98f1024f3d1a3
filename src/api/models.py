# src/api/models.py — v2
"""API-level models: IntakeReceipt."""

from __future__ import annotations

from pydantic import BaseModel, Field

from notesync.pipeline.models import ProcessingResult


class IntakeReceipt(BaseModel):
    """What happened when one unit was handed to the intake."""

    originator_id: str
    unit_name: str
    session_size: int
    started_new_session: bool
    published: list[ProcessingResult] = Field(default_factory=list)

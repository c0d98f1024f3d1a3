# src/api/intake.py — v1
"""Entry point for whatever transport delivers units (chat bot, upload endpoint, batch import).

The new unit is added first. An expired session it displaces comes back once
from the atomic add and is then published, so units of one originator keep
their arrival order even while a flush is in flight.
"""

from __future__ import annotations

import logging

from notesync.api.models import IntakeReceipt
from notesync.core.models import Session, Unit
from notesync.pipeline.coordinator import PipelineCoordinator
from notesync.pipeline.models import ProcessingResult
from notesync.sessions.base_session_store import BaseSessionStore

logger = logging.getLogger(__name__)


class IntakeDispatcher:
    def __init__(self, sessions: BaseSessionStore, coordinator: PipelineCoordinator) -> None:
        self._sessions = sessions
        self._coordinator = coordinator

    async def receive(
        self,
        originator_id: str,
        payload: bytes,
        name: str,
        content_type: str | None = None,
        now: float | None = None,
    ) -> IntakeReceipt:
        unit = Unit(
            payload=payload, name=name, originator_id=originator_id, content_type=content_type
        )
        return await self.receive_unit(unit, now=now)

    async def receive_unit(self, unit: Unit, now: float | None = None) -> IntakeReceipt:
        published: list[ProcessingResult] = []
        added = await self._sessions.add(unit.originator_id, unit, now)
        if added.flushed is not None:
            published.append(await self._publish(added.flushed))

        return IntakeReceipt(
            originator_id=unit.originator_id,
            unit_name=unit.name,
            session_size=len(added.session.units),
            started_new_session=added.started_new,
            published=published,
        )

    async def end(self, originator_id: str) -> ProcessingResult | None:
        """Handle the explicit "done" signal: publish whatever the session holds."""
        session = await self._sessions.end_session(originator_id)
        if session is None or not session.units:
            return None
        return await self._publish(session)

    async def flush_if_expired(self, originator_id: str, now: float | None = None) -> ProcessingResult | None:
        session = await self._sessions.close_expired_if_any(originator_id, now)
        if session is None:
            return None
        return await self._publish(session)

    async def _publish(self, session: Session) -> ProcessingResult:
        logger.info(
            "Publishing session of %s with %d unit(s)", session.originator_id, len(session.units)
        )
        return await self._coordinator.process_session(session)

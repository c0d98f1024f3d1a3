# src/logging/context.py — v2
"""Contextual logging support: attach originator, unit, stage and sync run to records."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

_originator_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "originator_id", default=None
)
_unit_name: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "unit_name", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)
_sync_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "sync_run_id", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    originator_id: str | None = None
    unit_name: str | None = None
    stage: str | None = None
    sync_run_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        originator_id=_originator_id.get(),
        unit_name=_unit_name.get(),
        stage=_stage.get(),
        sync_run_id=_sync_run_id.get(),
    )


@contextmanager
def unit_context(originator_id: str, unit_name: str | None = None) -> Iterator[None]:
    """Tag records with the unit being processed (one pipeline invocation)."""
    originator_token = _originator_id.set(originator_id)
    unit_token = _unit_name.set(unit_name)
    try:
        yield
    finally:
        _unit_name.reset(unit_token)
        _originator_id.reset(originator_token)


@contextmanager
def sync_context(sync_run_id: str) -> Iterator[None]:
    """Tag records with the id of the reconciliation run in progress."""
    token = _sync_run_id.set(sync_run_id)
    try:
        yield
    finally:
        _sync_run_id.reset(token)


@contextmanager
def stage_context(stage: str) -> Iterator[None]:
    """Tag records emitted inside the block with a pipeline stage name."""
    token = _stage.set(stage)
    try:
        yield
    finally:
        _stage.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _originator_id.set(None)
    _unit_name.set(None)
    _stage.set(None)
    _sync_run_id.set(None)

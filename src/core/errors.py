# src/core/errors.py — v1
"""Error taxonomy shared by every stage, store and the sync reconciler.

Transient errors are retried by RetryPolicy up to its bound. Permanent errors
(missing credentials, malformed payloads, stale revisions) are surfaced
immediately and never retried.
"""

from __future__ import annotations


class NotesyncError(Exception):
    """Base class for all notesync errors."""


class TransientError(NotesyncError):
    """Network timeout, rate limit or 5xx response. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PermanentError(NotesyncError):
    """Failure that retrying cannot fix."""


class NotConfiguredError(PermanentError):
    """A collaborator is missing credentials or required settings."""


class InvalidFormatError(PermanentError):
    """Payload rejected by the quality gate."""


class StaleRevisionError(PermanentError):
    """Optimistic-concurrency write used an outdated revision token.

    The caller is expected to re-read the remote file and retry with the
    fresh token.
    """

    def __init__(self, path: str, revision: str | None = None) -> None:
        self.path = path
        self.revision = revision
        super().__init__(f"Stale revision for {path!r} (token={revision!r})")


class MergeError(NotesyncError):
    """Local and remote text could not be merged automatically."""


class RetryExhaustedError(NotesyncError):
    """All attempts of a retried operation failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


def is_retryable(error: BaseException) -> bool:
    """Return True unless the error is a known permanent failure."""
    return not isinstance(error, PermanentError)

# src/pipeline/note_builder.py — v1
"""Markdown note assembly with YAML front matter.

Notes land at ``<notes_dir>/<YYYY>/<YYYY-MM-DD>/<HHMMSS>-<shortid>.md`` using
wall-clock time in the configured timezone. The body lists the image links in
upload order followed by the recognized text.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

import frontmatter

from notesync.pipeline.models import RecognitionOutcome, UploadRecord

PROCESSING_VERSION = "2.0"


@dataclass(frozen=True)
class AssembledNote:
    path: str
    content: str
    title: str


class NoteBuilder:
    """Pure, in-memory note assembly (the Assembly stage)."""

    def __init__(
        self,
        notes_dir: str = "Notes/Inbox",
        timezone_name: str = "Asia/Shanghai",
        source: str = "telegram",
        status: str = "inbox",
        provider: str = "glm-4.5v",
    ) -> None:
        self._notes_dir = notes_dir.strip("/")
        self._tz = ZoneInfo(timezone_name)
        self._source = source
        self._status = status
        self._provider = provider

    def build(
        self,
        uploads: list[UploadRecord],
        recognition: RecognitionOutcome,
        backup_paths: list[str] | None = None,
        now: datetime | None = None,
        short_id: str | None = None,
    ) -> AssembledNote:
        now_utc = now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)
        local = now_utc.astimezone(self._tz)
        ymd = local.strftime("%Y-%m-%d")
        hhmm = local.strftime("%H%M")
        title = f"{ymd} {hhmm}"
        short_id = short_id or uuid.uuid4().hex[:6]

        metadata: dict[str, Any] = {
            "title": title,
            "created": now_utc.isoformat().replace("+00:00", "Z"),
            "tags": [hhmm],
            "source": self._source,
            "provider": self._provider,
            "status": self._status,
            "images": [
                {"id": u.id, "url": u.url, "filename": u.filename} for u in uploads
            ],
        }
        if backup_paths:
            metadata["original_backup"] = (
                backup_paths[0] if len(backup_paths) == 1 else list(backup_paths)
            )
        metadata["ocr_confidence"] = round(recognition.confidence, 3)
        if recognition.placeholder:
            metadata["ocr_placeholder"] = True
        metadata["processing_version"] = PROCESSING_VERSION

        body_parts = [f"![{u.filename}]({u.url})" for u in uploads]
        if recognition.text:
            body_parts.append(recognition.text)
        post = frontmatter.Post("\n\n".join(body_parts), **metadata)
        content = frontmatter.dumps(post, sort_keys=False) + "\n"

        path = f"{local:%Y}/{ymd}/{local:%H%M%S}-{short_id}.md"
        if self._notes_dir:
            path = f"{self._notes_dir}/{path}"
        return AssembledNote(path=path, content=content, title=title)

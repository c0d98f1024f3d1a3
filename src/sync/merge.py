# src/sync/merge.py — v1
"""Line-based text merging for conflict resolution.

three_way_merge applies the non-overlapping edits of both sides against their
common base and raises MergeError when the two sides change the same region
differently. union_merge is used when no base is known: it keeps every line
of both sides, local first.
"""

from __future__ import annotations

import difflib

from notesync.core.errors import MergeError

Hunk = tuple[int, int, tuple[str, ...]]


def is_text(data: bytes) -> bool:
    if b"\x00" in data:
        return False
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def _hunks(base: list[str], other: list[str]) -> list[Hunk]:
    matcher = difflib.SequenceMatcher(None, base, other, autojunk=False)
    return [
        (i1, i2, tuple(other[j1:j2]))
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]


def _overlaps(a: Hunk, b: Hunk) -> bool:
    return a[0] == b[0] or (a[0] < b[1] and b[0] < a[1])


def three_way_merge(base: str, local: str, remote: str) -> str:
    """Merge two descendants of ``base``.

    Raises:
        MergeError: Both sides edited the same region differently.
    """
    if local == remote or base == remote:
        return local
    if base == local:
        return remote

    base_lines = base.splitlines(keepends=True)
    local_hunks = _hunks(base_lines, local.splitlines(keepends=True))
    remote_hunks = _hunks(base_lines, remote.splitlines(keepends=True))

    for a in local_hunks:
        for b in remote_hunks:
            if a != b and _overlaps(a, b):
                raise MergeError(
                    f"overlapping edits at lines {min(a[0], b[0]) + 1}-{max(a[1], b[1])}"
                )

    merged: list[str] = []
    pos = 0
    for start, end, lines in sorted(set(local_hunks) | set(remote_hunks)):
        merged.extend(base_lines[pos:start])
        merged.extend(lines)
        pos = end
    merged.extend(base_lines[pos:])
    return "".join(merged)


def union_merge(local: str, remote: str) -> str:
    """Keep the lines of both sides; differing regions list local lines first."""
    if local == remote:
        return local
    local_lines = local.splitlines(keepends=True)
    remote_lines = remote.splitlines(keepends=True)
    if local_lines and not local_lines[-1].endswith("\n"):
        local_lines[-1] += "\n"

    matcher = difflib.SequenceMatcher(None, local_lines, remote_lines, autojunk=False)
    merged: list[str] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        merged.extend(local_lines[i1:i2])
        if tag != "equal":
            merged.extend(remote_lines[j1:j2])
    return "".join(merged)


def merge_text(base: str | None, local: str, remote: str) -> str:
    if base is None:
        return union_merge(local, remote)
    return three_way_merge(base, local, remote)

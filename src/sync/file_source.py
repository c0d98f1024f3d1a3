# src/sync/file_source.py — v1
"""Tracked file sources and include/exclude glob scope."""

from __future__ import annotations

import fnmatch
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


def matches_glob(rel_path: str, pattern: str) -> bool:
    """fnmatch with a leading ``**/`` that also matches zero directories."""
    if fnmatch.fnmatch(rel_path, pattern):
        return True
    if pattern.startswith("**/"):
        return fnmatch.fnmatch(rel_path, pattern[3:])
    return False


class PathScope:
    """Include/exclude globs evaluated against POSIX-style relative paths."""

    def __init__(self, include: list[str] | tuple[str, ...] = (), exclude: list[str] | tuple[str, ...] = ()) -> None:
        self._include = list(include)
        self._exclude = list(exclude)

    def contains(self, rel_path: str) -> bool:
        if any(matches_glob(rel_path, p) for p in self._exclude):
            return False
        if not self._include:
            return True
        return any(matches_glob(rel_path, p) for p in self._include)


class FileSource(ABC):
    """Where tracked files are read from and written back to."""

    @abstractmethod
    def list_paths(self) -> list[str]:
        """Relative paths of every in-scope file."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes | None:
        """File content, or None when the file vanished."""

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> None:
        """Overwrite (or create) a tracked file."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a file if present."""

    @abstractmethod
    def list_prefix(self, prefix: str) -> list[str]:
        """Every file under ``prefix``, ignoring include/exclude scope."""

    def exists(self, path: str) -> bool:
        return self.read_bytes(path) is not None


class LocalFileSource(FileSource):
    """A directory tree on local disk."""

    def __init__(
        self,
        root: str | Path,
        include: list[str] | tuple[str, ...] = (),
        exclude: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._scope = PathScope(include, exclude)

    @property
    def root(self) -> Path:
        return self._root

    def _abs(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise ValueError(f"Path escapes sync root: {path!r}")
        return target

    def list_paths(self) -> list[str]:
        if not self._root.is_dir():
            logger.warning("Sync root %s does not exist", self._root)
            return []
        paths: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for filename in filenames:
                full = Path(dirpath) / filename
                if full.is_symlink():
                    continue
                rel = full.relative_to(self._root).as_posix()
                if self._scope.contains(rel):
                    paths.append(rel)
        return sorted(paths)

    def read_bytes(self, path: str) -> bytes | None:
        try:
            return self._abs(path).read_bytes()
        except FileNotFoundError:
            return None

    def write_bytes(self, path: str, data: bytes) -> None:
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    def exists(self, path: str) -> bool:
        return self._abs(path).is_file()

    def delete(self, path: str) -> None:
        self._abs(path).unlink(missing_ok=True)

    def list_prefix(self, prefix: str) -> list[str]:
        base = self._abs(prefix)
        if not base.is_dir():
            return []
        return sorted(
            p.relative_to(self._root).as_posix() for p in base.rglob("*") if p.is_file()
        )


class MemoryFileSource(FileSource):
    """Dict-backed file source for tests and dry runs."""

    def __init__(
        self,
        files: dict[str, bytes] | None = None,
        include: list[str] | tuple[str, ...] = (),
        exclude: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.files: dict[str, bytes] = dict(files or {})
        self._scope = PathScope(include, exclude)

    def list_paths(self) -> list[str]:
        return sorted(p for p in self.files if self._scope.contains(p))

    def read_bytes(self, path: str) -> bytes | None:
        return self.files.get(path)

    def write_bytes(self, path: str, data: bytes) -> None:
        self.files[path] = data

    def delete(self, path: str) -> None:
        self.files.pop(path, None)

    def list_prefix(self, prefix: str) -> list[str]:
        prefix = prefix.strip("/") + "/"
        return sorted(p for p in self.files if p.startswith(prefix))

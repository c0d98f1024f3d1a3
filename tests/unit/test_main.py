# tests/unit/test_main.py — v2
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

import json

import pytest

from notesync.main import _build_parser, main

JPEG = b"\xff\xd8\xff\xe0" + b"\x00\x10JFIF" + b"\x01" * 64

_ENV_VARS = (
    "SYNC_ROOT", "SYNC_AUTO", "REDIS_URL", "SESSION_BACKEND", "SYNC_LOCK_BACKEND",
    "LOG_FILE", "VCS_CACHE_ENABLED",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """No .env and no inherited configuration."""
    monkeypatch.chdir(tmp_path)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SYNC_STATE_FILE", str(tmp_path / "state.json"))
    monkeypatch.setenv("LOG_FORMAT", "text")


# --- Helpers ---


def _image(tmp_path, name: str = "page.jpg", data: bytes = JPEG):
    path = tmp_path / name
    path.write_bytes(data)
    return path


# ---------------------------------------------------------------------------
# Parser tests
# ---------------------------------------------------------------------------

class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_process_subcommand(self):
        args = _build_parser().parse_args(["--dry-run", "process", "a.jpg", "b.jpg", "--batch"])
        assert args.command == "process"
        assert [p.name for p in args.images] == ["a.jpg", "b.jpg"]
        assert args.batch
        assert args.dry_run
        assert args.originator == "cli"

    def test_sync_subcommand(self):
        args = _build_parser().parse_args(["sync", "--root", "/vault", "--file", "a.md"])
        assert (args.root, args.path) == ("/vault", "a.md")

    def test_watch_subcommand(self):
        args = _build_parser().parse_args(["watch", "--interval", "30"])
        assert args.interval == 30.0

    def test_no_command(self):
        assert main([]) == 1


# ---------------------------------------------------------------------------
# Command tests
# ---------------------------------------------------------------------------

class TestProcess:
    def test_missing_file(self, tmp_path):
        assert main(["--dry-run", "process", str(tmp_path / "nope.jpg")]) == 1

    def test_images_become_one_note(self, tmp_path, capsys):
        a = _image(tmp_path, "a.jpg")
        b = _image(tmp_path, "b.jpg")
        assert main(["--dry-run", "process", str(a), str(b)]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["success"] is True
        assert payload["unit_names"] == ["a.jpg", "b.jpg"]
        assert payload["note_path"].startswith("Notes/Inbox/")

    def test_batch(self, tmp_path, capsys):
        a = _image(tmp_path, "a.jpg")
        b = _image(tmp_path, "b.jpg")
        assert main(["--dry-run", "process", "--batch", str(a), str(b)]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["total"] == 2
        assert payload["succeeded"] == 2

    def test_rejected_payload(self, tmp_path, capsys):
        text = _image(tmp_path, "notes.txt", b"plain text, not an image")
        assert main(["--dry-run", "process", str(text)]) == 2
        payload = json.loads(capsys.readouterr().out)
        assert payload["success"] is False
        assert payload["failed_stage"] == "quality_gate"


class TestSync:
    def test_without_root(self):
        assert main(["--dry-run", "sync"]) == 1

    def test_with_root(self, tmp_path, capsys):
        root = tmp_path / "vault"
        root.mkdir()
        (root / "a.md").write_text("# A\n", encoding="utf-8")

        assert main(["--dry-run", "sync", "--root", str(root)]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["stats"]["succeeded"] == 1
        assert (tmp_path / "state.json").exists()

    def test_single_file(self, tmp_path, capsys):
        root = tmp_path / "vault"
        root.mkdir()
        (root / "a.md").write_text("# A\n", encoding="utf-8")
        (root / "b.md").write_text("# B\n", encoding="utf-8")

        assert main(["--dry-run", "sync", "--root", str(root), "--file", "b.md"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert [d["path"] for d in payload["details"]] == ["b.md"]

# src/stores/github_contents.py — v1
"""GitHub contents API as a version-control store.

A missing or outdated sha is answered with 409 (or 422 naming the sha), which
maps to StaleRevisionError.
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import quote

import httpx

from notesync.core.errors import NotConfiguredError, StaleRevisionError
from notesync.stores.base_vcs_store import BaseVersionControlStore, to_bytes
from notesync.stores.http_errors import classify_response, transport_errors
from notesync.stores.models import RemoteFile, TreeEntry, WriteResult

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
_SERVICE = "GitHub"
_STALE_STATUS = 409


class GitHubContentsStore(BaseVersionControlStore):
    """Version-control store over the GitHub REST contents API."""

    def __init__(
        self,
        token: str,
        repo: str,
        branch: str = "main",
        committer_name: str = "",
        committer_email: str = "",
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._repo = repo.strip("/")
        self._branch = branch
        self._committer = (
            {"name": committer_name, "email": committer_email}
            if committer_name and committer_email
            else None
        )
        self._client = client or httpx.AsyncClient(base_url=API_BASE, timeout=timeout_s)

    @property
    def configured(self) -> bool:
        return bool(self._token and self._repo)

    def _headers(self) -> dict[str, str]:
        if not self.configured:
            raise NotConfiguredError("GitHub store requires GITHUB_TOKEN and GITHUB_REPO")
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "notesync",
        }

    def _contents_url(self, path: str) -> str:
        return f"{API_BASE}/repos/{self._repo}/contents/{quote(path.strip('/'), safe='/')}"

    async def read_file(self, path: str) -> RemoteFile | None:
        headers = self._headers()
        async with transport_errors(_SERVICE):
            response = await self._client.get(
                self._contents_url(path), headers=headers, params={"ref": self._branch}
            )
        if response.status_code == 404:
            return None
        classify_response(response, _SERVICE)
        data = response.json()
        if isinstance(data, list) or data.get("type") != "file":
            return None
        content = base64.b64decode(data.get("content", "").replace("\n", ""))
        return RemoteFile(path=data.get("path", path), content=content, revision=data["sha"])

    async def write_file(
        self,
        path: str,
        content: bytes | str,
        revision: str | None = None,
        message: str = "",
    ) -> WriteResult:
        headers = self._headers()
        body: dict[str, Any] = {
            "message": message or f"update {path}",
            "content": base64.b64encode(to_bytes(content)).decode("ascii"),
            "branch": self._branch,
        }
        if revision:
            body["sha"] = revision
        if self._committer:
            body["committer"] = self._committer

        async with transport_errors(_SERVICE):
            response = await self._client.put(self._contents_url(path), headers=headers, json=body)
        if _is_stale(response):
            raise StaleRevisionError(path, revision)
        classify_response(response, _SERVICE)

        data = response.json().get("content") or {}
        logger.debug("Wrote %s (%s)", path, data.get("sha"))
        return WriteResult(path=path, revision=data.get("sha", ""), url=data.get("html_url"))

    async def list_tree(self, path: str = "", recursive: bool = True) -> list[TreeEntry]:
        headers = self._headers()
        async with transport_errors(_SERVICE):
            branch = await self._client.get(
                f"{API_BASE}/repos/{self._repo}/branches/{self._branch}", headers=headers
            )
            classify_response(branch, _SERVICE)
            tree_sha = branch.json()["commit"]["commit"]["tree"]["sha"]
            params = {"recursive": "1"} if recursive else None
            tree = await self._client.get(
                f"{API_BASE}/repos/{self._repo}/git/trees/{tree_sha}",
                headers=headers,
                params=params,
            )
        classify_response(tree, _SERVICE)

        prefix = path.strip("/")
        entries: list[TreeEntry] = []
        for item in tree.json().get("tree", []):
            item_path = item["path"]
            if prefix and not (item_path == prefix or item_path.startswith(prefix + "/")):
                continue
            entries.append(
                TreeEntry(
                    path=item_path,
                    type="dir" if item.get("type") == "tree" else "file",
                    revision=item.get("sha"),
                    size=item.get("size"),
                )
            )
        return entries

    async def close(self) -> None:
        await self._client.aclose()


def _is_stale(response: httpx.Response) -> bool:
    """409, or a 422 complaining about the sha; other 422s are validation errors."""
    if response.status_code == _STALE_STATUS:
        return True
    return response.status_code == 422 and "sha" in response.text.lower()

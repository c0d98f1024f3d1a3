# src/stores/cloudflare_images.py — v1
"""Cloudflare Images blob store.

Uploads go to the account images endpoint as multipart form data; delivery
URLs follow ``https://imagedelivery.net/<account_hash>/<id>/<variant>``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import httpx

from notesync.core.errors import NotConfiguredError, PermanentError
from notesync.stores.base_blob_store import BaseBlobStore
from notesync.stores.http_errors import classify_response, transport_errors
from notesync.stores.models import BlobPage, StoredBlob

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"
DELIVERY_BASE = "https://imagedelivery.net"
_SERVICE = "Cloudflare Images"


class CloudflareImagesStore(BaseBlobStore):
    """Blob store backed by the Cloudflare Images API."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        account_hash: str,
        default_variant: str = "public",
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account_id = account_id
        self._api_token = api_token
        self._account_hash = account_hash
        self._variant = default_variant
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def configured(self) -> bool:
        return bool(self._account_id and self._api_token and self._account_hash)

    def _endpoint(self) -> str:
        return f"{API_BASE}/accounts/{self._account_id}/images/v1"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}"}

    def _require_config(self) -> None:
        if not self.configured:
            raise NotConfiguredError(
                "Cloudflare Images requires CLOUDFLARE_ACCOUNT_ID, "
                "CLOUDFLARE_API_TOKEN and CLOUDFLARE_ACCOUNT_HASH"
            )

    def variant_url(self, blob_id: str, variant: str) -> str | None:
        return f"{DELIVERY_BASE}/{self._account_hash}/{blob_id}/{variant}"

    async def upload(
        self, data: bytes, name: str, metadata: dict[str, Any] | None = None
    ) -> StoredBlob:
        self._require_config()
        form: dict[str, str] = {"requireSignedURLs": "false"}
        if metadata:
            form["metadata"] = json.dumps(metadata, default=str)

        async with transport_errors(_SERVICE):
            response = await self._client.post(
                self._endpoint(),
                headers=self._headers(),
                data=form,
                files={"file": (name, data)},
            )
        classify_response(response, _SERVICE)
        result = self._result(response)

        blob_id = result["id"]
        logger.debug("Uploaded %s as %s", name, blob_id)
        return StoredBlob(
            id=blob_id,
            url=self.variant_url(blob_id, self._variant) or "",
            filename=result.get("filename", name),
            uploaded_at=_parse_time(result.get("uploaded")),
            metadata=result.get("meta") or dict(metadata or {}),
        )

    async def list(self, page: int = 1, per_page: int = 50) -> BlobPage:
        self._require_config()
        async with transport_errors(_SERVICE):
            response = await self._client.get(
                self._endpoint(),
                headers=self._headers(),
                params={"page": page, "per_page": per_page},
            )
        classify_response(response, _SERVICE)
        body = response.json()
        result = self._result(response, body)

        images = result.get("images") or []
        items = [
            StoredBlob(
                id=img["id"],
                url=self.variant_url(img["id"], self._variant) or "",
                filename=img.get("filename"),
                uploaded_at=_parse_time(img.get("uploaded")),
                metadata=img.get("meta") or {},
            )
            for img in images
        ]
        total = (body.get("result_info") or {}).get("total_count") or len(items)
        return BlobPage(items=items, total=total, page=page, per_page=per_page)

    @staticmethod
    def _result(response: httpx.Response, body: dict[str, Any] | None = None) -> dict[str, Any]:
        body = body if body is not None else response.json()
        if not body.get("success"):
            raise PermanentError(f"{_SERVICE} rejected request: {body.get('errors')}")
        return body.get("result") or {}

    async def close(self) -> None:
        await self._client.aclose()


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

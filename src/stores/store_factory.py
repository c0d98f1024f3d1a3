# src/stores/store_factory.py — v1
"""Factories for the external store collaborators.

Missing credentials do not fail construction: the adapters raise
NotConfiguredError on first use, which stages surface as permanent failures.
``dry_run`` swaps every collaborator for its in-memory counterpart.
"""

from __future__ import annotations

import logging

from notesync.config.settings import Settings
from notesync.stores.base_blob_store import BaseBlobStore
from notesync.stores.base_recognizer import BaseRecognizer
from notesync.stores.base_vcs_store import BaseVersionControlStore

logger = logging.getLogger(__name__)


def create_blob_store(settings: Settings, dry_run: bool = False) -> BaseBlobStore:
    if dry_run:
        from notesync.stores.memory_stores import MemoryBlobStore
        return MemoryBlobStore()

    from notesync.stores.cloudflare_images import CloudflareImagesStore
    store = CloudflareImagesStore(
        account_id=settings.cloudflare_account_id,
        api_token=settings.cloudflare_api_token,
        account_hash=settings.cloudflare_account_hash,
        timeout_s=settings.cloudflare_timeout_s,
    )
    if not store.configured:
        logger.warning("Cloudflare Images credentials missing; uploads will fail")
    return store


def create_vcs_store(settings: Settings, dry_run: bool = False) -> BaseVersionControlStore:
    store: BaseVersionControlStore
    if dry_run:
        from notesync.stores.memory_stores import MemoryVersionControlStore
        store = MemoryVersionControlStore()
    else:
        from notesync.stores.github_contents import GitHubContentsStore
        github = GitHubContentsStore(
            token=settings.github_token,
            repo=settings.github_repo,
            branch=settings.github_branch,
            committer_name=settings.github_committer_name,
            committer_email=settings.github_committer_email,
            timeout_s=settings.github_timeout_s,
        )
        if not github.configured:
            logger.warning("GitHub credentials missing; publishing will fail")
        store = github

    if settings.vcs_cache_enabled:
        from notesync.stores.caching_vcs_store import CachingVersionControlStore
        store = CachingVersionControlStore(
            store,
            ttl_seconds=settings.vcs_cache_ttl_seconds,
            max_entries=settings.vcs_cache_max_entries,
        )
    return store


def create_recognizer(settings: Settings, dry_run: bool = False) -> BaseRecognizer:
    if dry_run:
        from notesync.stores.memory_stores import StaticRecognizer
        return StaticRecognizer()

    from notesync.stores.openai_recognizer import OpenAICompatRecognizer
    if not settings.ocr_api_key:
        logger.warning("OCR_API_KEY missing; recognition will fail")
    return OpenAICompatRecognizer(
        api_key=settings.ocr_api_key,
        base_url=settings.ocr_base_url,
        model=settings.ocr_model,
        max_tokens=settings.ocr_max_tokens,
        temperature=settings.ocr_temperature,
        timeout_s=settings.ocr_timeout_s,
    )

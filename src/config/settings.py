# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings. Components never
read Settings at call time: api.facade.build_runtime turns it into frozen
option objects once at startup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Sessions ===
    session_backend: Literal["auto", "memory", "redis"] = "auto"
    session_window_seconds: float = 90.0
    session_ttl_seconds: int = 600
    redis_url: str = ""
    redis_key_prefix: str = "notesync:"

    # === Retry ===
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 10.0
    recognition_base_delay_s: float = 2.0
    recognition_max_delay_s: float = 15.0

    # === Pipeline ===
    batch_concurrency: int = 5
    batch_chunk_delay_s: float = 1.0
    quality_gate_enabled: bool = True
    max_payload_mb: int = 100
    large_payload_mb: int = 50
    recognition_placeholder_on_failure: bool = True
    confidence_warning_threshold: float = 0.6
    notes_dir: str = "Notes/Inbox"
    note_timezone: str = "Asia/Shanghai"
    note_source: str = "telegram"
    note_status: str = "inbox"

    # === Backup ===
    backup_enabled: bool = True
    backup_dir: str = "images/originals"

    # === Blob store (Cloudflare Images) ===
    cloudflare_account_id: str = ""
    cloudflare_api_token: str = ""
    cloudflare_account_hash: str = ""
    cloudflare_timeout_s: float = 30.0

    # === Version control (GitHub contents API) ===
    github_token: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    github_committer_name: str = ""
    github_committer_email: str = ""
    github_timeout_s: float = 30.0

    # === Recognition (OpenAI-compatible vision model) ===
    ocr_api_key: str = ""
    ocr_base_url: str = "https://api.siliconflow.cn/v1"
    ocr_model: str = "zai-org/GLM-4.5V"
    ocr_max_tokens: int = 4096
    ocr_temperature: float = 0.1
    ocr_timeout_s: float = 60.0

    # === Version-control read cache ===
    vcs_cache_enabled: bool = True
    vcs_cache_ttl_seconds: float = 300.0
    vcs_cache_max_entries: int = 100

    # === Sync ===
    sync_root: str = ""
    sync_auto: bool = False
    sync_interval_seconds: float = 300.0
    sync_include: str = "**/*.md,**/*.jpg,**/*.png,**/*.jpeg"
    sync_exclude: str = "**/node_modules/**,**/.git/**,**/backups/**"
    sync_conflict_strategy: Literal["keep_local", "keep_remote", "merge", "prompt"] = (
        "keep_local"
    )
    sync_merge_fallback: Literal["keep_local", "keep_remote", "prompt"] = "prompt"
    sync_remote_prefix: str = ""
    sync_process_images: bool = False
    sync_state_file: Path = Path("~/.notesync/sync_state.json")
    sync_max_errors: int = 100
    sync_max_conflicts: int = 50
    sync_lock_backend: Literal["memory", "redis"] = "memory"
    sync_lock_ttl_seconds: int = 600
    sync_backup_enabled: bool = True
    sync_backup_retention_days: int = 30

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("session_window_seconds", "sync_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float, info) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("retry_max_attempts must be >= 1")
        return v

    @field_validator("batch_concurrency")
    @classmethod
    def validate_batch_concurrency(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("batch_concurrency must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules C-01 to C-05."""
        errors: list[str] = []

        # C-01
        if self.session_backend == "redis" and not self.redis_url:
            errors.append("SESSION_BACKEND=redis requires REDIS_URL")

        # C-02
        if self.session_ttl_seconds < self.session_window_seconds:
            errors.append("SESSION_TTL_SECONDS must be >= SESSION_WINDOW_SECONDS")

        # C-03
        if self.sync_lock_backend == "redis" and not self.redis_url:
            errors.append("SYNC_LOCK_BACKEND=redis requires REDIS_URL")

        # C-04
        if self.sync_auto and not self.sync_root:
            errors.append("SYNC_AUTO requires SYNC_ROOT")

        # C-05
        if self.retry_max_delay_s < self.retry_base_delay_s:
            errors.append("RETRY_MAX_DELAY_S must be >= RETRY_BASE_DELAY_S")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def sync_include_list(self) -> list[str]:
        """Parse comma-separated include globs."""
        return [p.strip() for p in self.sync_include.split(",") if p.strip()]

    @property
    def sync_exclude_list(self) -> list[str]:
        """Parse comma-separated exclude globs."""
        return [p.strip() for p in self.sync_exclude.split(",") if p.strip()]

    @property
    def use_redis_sessions(self) -> bool:
        if self.session_backend == "auto":
            return bool(self.redis_url)
        return self.session_backend == "redis"


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]

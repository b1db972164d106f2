# src/config/settings.py - v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for engine limits, rate budget, renderer and notifier
backends, retention windows and logging.
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

    # === Engine ===
    working_root: Path = Path("~/.bulkdoc/batches")
    max_concurrent_per_batch: int = 10
    max_parallel_batches: int = 2
    default_batch_size: int = 10
    default_retry_attempts: int = 3
    default_retry_base_delay_ms: int = 1000
    render_timeout_s: float = 300.0
    error_ring_size: int = 100
    progress_channel_size: int = 64
    estimated_seconds_per_document: float = 2.0

    # === Rate limit (R calls per W ms) ===
    rate_limit_requests: int = 60
    rate_limit_window_ms: int = 60_000

    # === Record source limits ===
    max_source_bytes: int = 100 * 1024 * 1024
    max_source_rows: int = 100_000

    # === Renderer ===
    renderer_backend: Literal["local", "remote"] = "local"
    render_api_url: str = "https://api.craftmypdf.com/v1"
    render_api_key: str = ""

    # === Notifier ===
    notifier_backend: Literal["none", "log", "email"] = "log"
    sendgrid_api_key: str = ""
    sendgrid_api_url: str = "https://api.sendgrid.com/v3"
    email_from: str = "noreply@bulkdocumentmaker.com"
    email_from_name: str = "Bulk Document Maker"
    email_reply_to: str = ""
    download_base_url: str = "http://localhost:3001/api/batches"
    progress_notify_thresholds: str = "25,50,75"

    # === Retention ===
    batch_retention_hours: float = 168.0
    file_retention_hours: float = 24.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator(
        "max_concurrent_per_batch",
        "max_parallel_batches",
        "default_batch_size",
        "default_retry_base_delay_ms",
        "rate_limit_requests",
        "rate_limit_window_ms",
        "error_ring_size",
        "progress_channel_size",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:  # noqa: N805
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("default_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:  # noqa: N805
        if not 0 <= v <= 10:
            raise ValueError("default_retry_attempts must be between 0 and 10")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.max_concurrent_per_batch > self.rate_limit_requests:
            errors.append(
                "MAX_CONCURRENT_PER_BATCH must not exceed RATE_LIMIT_REQUESTS"
            )

        if self.default_batch_size > self.max_concurrent_per_batch:
            errors.append(
                "DEFAULT_BATCH_SIZE must not exceed MAX_CONCURRENT_PER_BATCH"
            )

        if self.renderer_backend == "remote" and not (
            self.render_api_url and self.render_api_key
        ):
            errors.append("RENDERER_BACKEND=remote requires RENDER_API_URL and RENDER_API_KEY")

        if self.notifier_backend == "email" and not (
            self.sendgrid_api_key and self.email_from
        ):
            errors.append("NOTIFIER_BACKEND=email requires SENDGRID_API_KEY and EMAIL_FROM")

        try:
            self.progress_thresholds_list  # noqa: B018
        except ValueError:
            errors.append("PROGRESS_NOTIFY_THRESHOLDS must be comma-separated integers in 1..99")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def progress_thresholds_list(self) -> list[int]:
        """Parse comma-separated progress thresholds (ascending, deduplicated)."""
        values = {
            int(p.strip()) for p in self.progress_notify_thresholds.split(",") if p.strip()
        }
        if any(v < 1 or v > 99 for v in values):
            raise ValueError("thresholds must be in 1..99")
        return sorted(values)

    @property
    def working_root_path(self) -> Path:
        """Working root with ~ expanded."""
        return Path(self.working_root).expanduser()


def load_settings(env_file: str | Path | None = None, **overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        env_file: Alternate .env file. None keeps the default lookup.
        **overrides: Field-level overrides (for testing or per-host config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    if env_file is not None:
        return Settings(_env_file=env_file, **overrides)  # type: ignore[arg-type, call-arg]
    return Settings(**overrides)  # type: ignore[arg-type]

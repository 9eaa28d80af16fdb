"""storepulse configuration with sensible defaults for development."""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class DedupeStrategy(StrEnum):
    """Which requests the API client coalesces while in flight."""

    DEFAULT = "default"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


class Settings(BaseSettings):
    """
    storepulse configuration.

    All settings can be overridden via environment variables with STOREPULSE_ prefix.
    Defaults are set for local development - no configuration needed to get started.
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    log_format: Literal["text", "json"] = "text"

    # Storefront API
    api_url: str = "http://localhost:5000/api"
    api_key: str | None = None
    request_timeout_seconds: float = 30.0
    dedupe_strategy: DedupeStrategy = DedupeStrategy.DEFAULT

    # Bottleneck thresholds
    api_response_time_ms: float = 2000.0
    memory_usage_bytes: int = 100 * 1024 * 1024
    render_time_ms: float = 16.0
    interaction_delay_ms: float = 100.0
    bundle_size_bytes: int = 2 * 1024 * 1024

    # Collector
    memory_sample_interval_seconds: float = 30.0
    api_markers: list[str] = ["/api/"]
    api_hosts: list[str] = []

    # Request batching
    batch_size: int = 10
    batch_timeout_ms: float = 100.0

    @property
    def api_patterns(self) -> tuple[str, ...]:
        """Substrings that mark a resource entry as an API call."""
        return (*self.api_markers, *self.api_hosts)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Application settings.

All values can be set through ``THERAPYCHAT_*`` environment variables or a
``.env`` file in the working directory.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the chat service."""

    model_config = SettingsConfigDict(
        env_prefix="THERAPYCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] = "development"
    web_host: str = "127.0.0.1"
    web_port: int = 8888
    log_level: str = "INFO"

    # Request / response ceilings
    chat_input_max_bytes: int = Field(default=128 * 1024, gt=0)
    chat_response_max_chars: int = Field(default=100_000, gt=0)

    # Model registry
    default_model_id: str = "openai/gpt-oss-20b"
    analytical_model_id: str = "openai/gpt-oss-120b"
    local_model_id: str = "local"
    byok_model_id: str = "byok"
    hosted_base_url: str = "https://api.groq.com/openai/v1"
    hosted_api_key: str | None = None
    byok_base_url: str = "https://api.openai.com/v1"
    byok_provider_model: str = "gpt-4o-mini"

    # Local (Ollama-style) model
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    local_model_enabled: bool = True
    # None: probe everywhere except the test environment.
    local_model_probe_on_startup: bool | None = None

    # Streaming / persistence
    stream_strategy: Literal["tee", "buffer"] = "tee"
    await_persistence: bool = False

    # Rate limiting
    rate_limit_disabled: bool = False
    rate_limit_block_seconds: float = 300.0
    rate_limit_window_seconds: float = 300.0
    rate_limit_max_requests: int = 50
    chat_window_seconds: float = 300.0
    chat_max_requests: int = 120
    api_window_seconds: float = 300.0
    api_max_requests: int = 300
    rate_limit_cleanup_interval: float = 300.0

    # API surface
    api_cors_allowed_origins: list[str] = []

    # Storage
    store_backend: Literal["memory", "file"] = "memory"
    store_path: Path = Path.home() / ".therapychat" / "sessions"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def probe_local_on_startup(self) -> bool:
        if self.local_model_probe_on_startup is not None:
            return self.local_model_probe_on_startup
        return self.environment != "test"

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the environment (uncached)."""
        return cls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings.load()

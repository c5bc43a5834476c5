from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging output and the default source."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging."""

    # Transaction source
    SOURCE_TYPE: Literal["terra", "mock"] = "terra"
    """Which transaction source to poll ('terra' node or in-memory 'mock')."""

    RPC_URL: str = "http://localhost:26657"
    """Tendermint RPC endpoint serving /unconfirmed_txs."""

    LCD_URL: str = "https://lcd.terra.dev"
    """LCD endpoint serving /txs/decode."""

    API_TIMEOUT: float = 10.0
    """Timeout in seconds for every request to the node."""

    PENDING_LIMIT: int = 1_000_000_000_000
    """Value of the `limit` parameter sent to /unconfirmed_txs."""

    # Watcher loop
    POLL_INTERVAL_SECONDS: float = 1.0
    """Seconds to sleep between two polling cycles."""

    CACHE_TTL_SECONDS: float = 30.0
    """How long a published transaction is remembered as already seen."""

    SUBSCRIBER_QUEUE_SIZE: int = 0
    """Per-subscriber backlog bound. 0 means unbounded."""

    WATCHER_AUTOSTART: bool = True
    """Start the watcher loop when the API starts."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()

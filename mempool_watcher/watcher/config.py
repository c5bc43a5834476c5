"""
Mempool watcher configuration.

Defines settings for the polling interval, dedup retention, retry policy
on the pending-transaction listing, and the node endpoints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from mempool_watcher.core.config import Settings


class RetryConfig(BaseModel):
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts per cycle for listing pending transactions",
    )
    initial_delay: float = Field(
        default=0.5, gt=0, description="Initial delay in seconds"
    )
    max_delay: float = Field(default=5.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=True, description="Add random jitter to prevent thundering herd"
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker pattern."""

    failure_threshold: int = Field(
        default=5, ge=1, description="Failures before opening circuit"
    )
    success_threshold: int = Field(
        default=1, ge=1, description="Successes to close circuit"
    )
    timeout: float = Field(
        default=30.0, gt=0, description="Seconds before attempting reset"
    )


class WatcherConfig(BaseModel):
    """Main mempool watcher configuration."""

    # Polling behavior
    poll_interval_seconds: float = Field(
        default=1.0, gt=0, description="Seconds between polling cycles"
    )
    cache_ttl_seconds: float = Field(
        default=30.0, gt=0, description="Seconds a published tx stays deduplicated"
    )

    # Source settings
    source_type: Literal["terra", "mock"] = Field(
        default="terra", description="Type of transaction source (terra, mock)"
    )
    rpc_url: str = Field(
        default="http://localhost:26657", description="Tendermint RPC base URL"
    )
    lcd_url: str = Field(
        default="https://lcd.terra.dev", description="LCD base URL used for decoding"
    )
    api_timeout: float = Field(
        default=10.0, gt=0, description="Node request timeout in seconds"
    )
    pending_limit: int = Field(
        default=1_000_000_000_000,
        ge=1,
        description="limit parameter for /unconfirmed_txs",
    )

    # Delivery
    subscriber_queue_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Per-subscriber backlog bound (None = unbounded)",
    )

    # Retry and resilience
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    # Operational settings
    enabled: bool = Field(default=True, description="Enable/disable polling")
    metrics_history_size: int = Field(
        default=100, ge=1, description="Cycles kept in the in-memory metrics history"
    )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "WatcherConfig":
        """Build the watcher config from application settings."""
        return cls(
            poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
            cache_ttl_seconds=settings.CACHE_TTL_SECONDS,
            source_type=settings.SOURCE_TYPE,
            rpc_url=settings.RPC_URL.rstrip("/"),
            lcd_url=settings.LCD_URL.rstrip("/"),
            api_timeout=settings.API_TIMEOUT,
            pending_limit=settings.PENDING_LIMIT,
            subscriber_queue_size=settings.SUBSCRIBER_QUEUE_SIZE or None,
        )


def get_watcher_config() -> WatcherConfig:
    """Get watcher configuration from the current settings."""
    from mempool_watcher.core.config import get_settings

    return WatcherConfig.from_settings(get_settings())

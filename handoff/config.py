"""Settings for the Handoff fulfillment service.

Every knob is an environment variable (case-insensitive) or a line in
.env. Values are validated once at startup so a bad window or port
fails fast instead of surfacing mid-shift.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Merchant
    merchant_id: str = Field(
        default="shop-001",
        description="Merchant (shop) id served by this instance",
    )

    # SLA windows
    acceptance_window_seconds: int = Field(
        default=90,
        description="Time allowed to accept a new order, in seconds",
    )
    delivery_window_seconds: int = Field(
        default=1800,
        description="Time allowed from creation to delivery, in seconds",
    )
    sla_tick_seconds: float = Field(
        default=1.0,
        description="Interval between SLA clock ticks, in seconds",
    )

    # Refund workflow
    ops_approval_threshold: float = Field(
        default=100.0,
        description="Refunds above this amount require ops approval",
    )
    daily_refund_limit: int | None = Field(
        default=None,
        description="Max refunds per requester per UTC day (unset = no cap)",
    )

    # Capacity defaults (used until staff change them)
    max_queue_length: int = Field(
        default=15,
        description="Initial maximum number of orders in the active queue",
    )
    avg_prep_time_minutes: int = Field(
        default=10,
        description="Initial average preparation time in minutes",
    )

    # Order store configuration
    store_backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Order store backend type",
    )
    store_sqlite_path: str = Field(
        default="./data/handoff.db",
        description="SQLite database file path",
    )

    # Notification configuration
    notification_backend: Literal["stdout", "markdown", "webhook"] = Field(
        default="stdout",
        description="Notification backend type",
    )
    notification_output_dir: str = Field(
        default="./alerts",
        description="Output directory for markdown alert logs",
    )
    alert_webhook_url: str = Field(
        default="",
        description="Endpoint receiving domain events (webhook backend)",
    )
    alert_webhook_api_key: str = Field(
        default="",
        description="Bearer token for the alert webhook",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["daemon", "cli", "webhook", "demo"] = Field(
        default="daemon",
        description="Run mode",
    )

    # CLI operator
    cli_actor_name: str = Field(
        default="cli",
        description="Name recorded in event logs for CLI operations",
    )
    cli_actor_role: Literal[
        "manager", "cashier", "kitchen", "developer", "runner", "ops"
    ] = Field(
        default="manager",
        description="Role of the CLI operator",
    )

    # Webhook configuration
    webhook_host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP API binds to",
    )
    webhook_port: int = Field(
        default=8080,
        description="Port the HTTP API binds to",
    )
    webhook_api_key: str = Field(
        default="",
        description=(
            "Shared key for POST endpoints of the HTTP API. It admits a caller "
            "but does not bind a role: the actor role in each request body is trusted"
        ),
    )
    webhook_require_auth: bool = Field(
        default=False,
        description="Reject POST requests that lack the API key",
    )

    # Demo order generator
    demo_every_n_ticks: int = Field(
        default=15,
        description="Run one demo generator cycle every N SLA ticks",
    )
    demo_seed: int | None = Field(
        default=None,
        description="Random seed for reproducible demo runs",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Debug logging and verbose stdout notifications",
    )

    @field_validator("acceptance_window_seconds", "delivery_window_seconds")
    @classmethod
    def validate_window(cls, v: int) -> int:
        """Ensure SLA windows are positive."""
        if v <= 0:
            raise ValueError("SLA windows must be positive")
        return v

    @field_validator("sla_tick_seconds")
    @classmethod
    def validate_tick(cls, v: float) -> float:
        """Ensure the tick interval is positive."""
        if v <= 0:
            raise ValueError("sla_tick_seconds must be positive")
        return v

    @field_validator("ops_approval_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Ensure the approval threshold is non-negative."""
        if v < 0:
            raise ValueError("ops_approval_threshold must be non-negative")
        return v

    @field_validator("daily_refund_limit")
    @classmethod
    def validate_daily_limit(cls, v: int | None) -> int | None:
        """Ensure the daily refund cap, when set, is positive."""
        if v is not None and v <= 0:
            raise ValueError("daily_refund_limit must be positive when set")
        return v

    @field_validator("max_queue_length", "avg_prep_time_minutes", "demo_every_n_ticks")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure queue and cadence settings are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("webhook_port")
    @classmethod
    def validate_webhook_port(cls, v: int) -> int:
        """Ensure the HTTP API port is a usable TCP port."""
        if v <= 0 or v > 65535:
            raise ValueError("webhook_port must be between 1 and 65535")
        return v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]

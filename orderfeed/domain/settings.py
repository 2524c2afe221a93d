"""Application settings with Pydantic validation.

Settings are stored as JSON and validated using Pydantic models.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ServerSettings(BaseModel):
    """Connection details for the PostgreSQL database holding the orders."""

    db_connection_string: str = ""  # PostgreSQL connection string

    # Connection pool settings
    pool_min_size: int = Field(default=1, ge=1, le=10)
    pool_max_size: int = Field(default=5, ge=1, le=50)

    model_config = {"validate_assignment": True}


class FeedSettings(BaseModel):
    """Order feed configuration.

    ``server_side_status`` controls whether the status filter is sent to the
    database. When False, the snapshot fetches the full date-bounded set and
    the view narrows it client-side.
    """

    max_rows: int = Field(default=200, ge=1, le=5000)
    table: str = Field(default="orders", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    schema_name: str = Field(default="public", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    server_side_status: bool = True

    model_config = {"validate_assignment": True}


class RealtimeSettings(BaseModel):
    """Change-stream subscription and reconnection behavior."""

    enabled: bool = True
    max_reconnect_attempts: int = Field(default=5, ge=0, le=20)  # 0 disables
    reconnect_initial_delay_seconds: float = Field(default=1.0, ge=0.0, le=10.0)
    reconnect_max_delay_seconds: float = Field(default=16.0, ge=0.0, le=300.0)
    self_test_timeout_seconds: float = Field(default=2.0, ge=0.1, le=30.0)

    model_config = {"validate_assignment": True}


class SessionSettings(BaseModel):
    """Actor used by the headless runner. Authentication itself is external."""

    actor_id: Optional[str] = None
    email: Optional[str] = None

    model_config = {"validate_assignment": True}


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


class AppSettings(BaseModel):
    """Application settings with validation.

    Example:
        >>> settings = AppSettings()
        >>> settings.feed.max_rows = 100
        >>> settings.realtime.max_reconnect_attempts = 0
    """

    server: ServerSettings = Field(default_factory=ServerSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "validate_assignment": True,  # Validate on attribute assignment
        "extra": "forbid",  # Forbid extra fields
    }

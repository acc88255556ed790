"""Configuration management for pixo-sync.

This module provides centralized configuration using Pydantic Settings,
read from environment variables or a local ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, safe defaults
    - PRODUCTION: Structured JSON logs, conservative retries
    - TESTING: In-memory override store, minimal logging, no retries
    - STAGING: Production-like but with more logging

Example:
    >>> from pixo_sync.config import settings
    >>> print(settings.rest_url)
    https://example.supabase.co/rest/v1
    >>> if not settings.is_configured:
    ...     print("Set SUPABASE_URL and SUPABASE_ANON_KEY")
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, safe defaults
        PRODUCTION: Structured logs, optimized for stability
        TESTING: In-memory store, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        supabase_url: Base URL of the Supabase project
        supabase_anon_key: Public anon key sent as ``apikey`` on every request
        data_dir: Base directory for local state (override store, logs)
        override_store_path: SQLite file backing the local override store
        request_timeout: Overall HTTP timeout in seconds
        max_retries: Attempts for idempotent reads before giving up
        realtime_heartbeat_seconds: Interval between Phoenix heartbeats
        conversation_fetch_limit: Maximum message rows fetched for grouping
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Backend Configuration
    supabase_url: Optional[str] = Field(
        None,
        alias="SUPABASE_URL",
        description="Supabase project URL (e.g. https://xyz.supabase.co)",
    )
    supabase_anon_key: Optional[str] = Field(
        None,
        alias="SUPABASE_ANON_KEY",
        description="Supabase anon (public) API key",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for local state files",
    )
    override_store_path: Path = Field(
        Path("overrides.db"),  # Will be updated to data_dir/overrides.db by validator
        description="Path to the override store SQLite file",
    )

    # Operational Parameters
    request_timeout: float = Field(
        20.0,
        gt=0,
        le=120,
        description="Overall HTTP timeout in seconds",
    )
    max_retries: int = Field(
        4,
        ge=1,
        le=10,
        description="Attempts for idempotent reads on transient failures",
    )
    realtime_heartbeat_seconds: float = Field(
        30.0,
        gt=0,
        le=300,
        description="Seconds between realtime heartbeat frames",
    )
    conversation_fetch_limit: int = Field(
        500,
        ge=1,
        le=5000,
        description="Maximum messages fetched when building the conversation list",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Normalise the project URL so path joins stay predictable."""
        if v is None:
            return None
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v

    @model_validator(mode="after")
    def set_override_store_default(self) -> "Settings":
        """Place the override store under data_dir unless set explicitly."""
        if self.override_store_path == Path("overrides.db"):
            self.override_store_path = self.data_dir / "overrides.db"
        if str(self.override_store_path) != ":memory:":
            self.override_store_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging, JSON logs
            - DEVELOPMENT: DEBUG logging, human-readable logs
            - TESTING: In-memory store, ERROR logging, no file logging, single attempt
            - STAGING: INFO logging, JSON logs
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False

        elif self.environment == Environment.TESTING:
            self.override_store_path = Path(":memory:")
            self.max_retries = 1
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True

        return self

    @property
    def rest_url(self) -> str:
        """PostgREST base URL."""
        return f"{self.supabase_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        """GoTrue base URL."""
        return f"{self.supabase_url}/auth/v1"

    @property
    def realtime_url(self) -> str:
        """Realtime websocket URL (scheme swapped to ws/wss)."""
        base = (self.supabase_url or "").replace("https://", "wss://", 1)
        base = base.replace("http://", "ws://", 1)
        return f"{base}/realtime/v1/websocket"

    @property
    def override_store_url(self) -> str:
        """Get SQLAlchemy database URL for the override store."""
        if str(self.override_store_path) == ":memory:":
            return "sqlite://"
        return f"sqlite:///{self.override_store_path}"

    @property
    def is_configured(self) -> bool:
        """Check if backend URL and key are both present."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def redact_key(self, key: Optional[str] = None) -> str:
        """Redact the anon key (or any token) for logging.

        Args:
            key: Token to redact (defaults to supabase_anon_key)

        Returns:
            Redacted token string
        """
        key = key or self.supabase_anon_key
        if not key:
            return "None"
        return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def get_settings() -> Settings:
    """Get a fresh settings instance from the current environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()

"""Scheduling service settings.

Every section reads its own environment prefix; unset variables fall back to
the defaults below.

Usage:
    from scheduling.config import get_settings
    settings = get_settings()
    ttl = settings.workflow.confirmation_ttl_minutes
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes")
    return bool(v)


class RedisSettings(BaseSettings):
    """Redis connection used by the lifecycle event bus."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    host: str = Field(default="redis", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str = Field(default="", description="Redis password")
    max_connections: int = Field(default=50, description="Maximum pool connections")
    pool_timeout_sec: float = Field(default=5.0, description="Pool timeout in seconds")
    socket_timeout: float = Field(default=5.0, description="Socket timeout in seconds")
    events_channel: str = Field(default="scheduling:events", description="Pub/sub channel for lifecycle events")


class PostgresSettings(BaseSettings):
    """PostgreSQL connection and pool sizing for the postgres store."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default="postgres", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="scheduler", description="PostgreSQL user")
    password: str = Field(default="", description="PostgreSQL password")
    database: str = Field(
        default="scheduling",
        validation_alias="POSTGRES_DB",
        description="Database name",
    )
    pool_min_size: int = Field(default=2, description="Minimum pool size")
    pool_max_size: int = Field(default=10, description="Maximum pool size")
    pool_timeout: int = Field(default=30, description="Timeout for acquiring connections")
    pool_max_lifetime: int = Field(
        default=1800, description="Maximum connection lifetime in seconds"
    )
    pool_max_idle: int = Field(
        default=300, description="Maximum idle time before closing connection"
    )

    def get_dsn(self) -> str:
        """libpq conninfo string for psycopg."""
        return (
            f"host={self.host} port={self.port} user={self.user} "
            f"password={self.password} dbname={self.database} sslmode=disable"
        )


class WorkflowSettings(BaseSettings):
    """Booking request token lifetimes."""

    model_config = SettingsConfigDict(env_prefix="WORKFLOW_", extra="ignore")

    confirmation_ttl_minutes: int = Field(default=30, ge=1, description="Guest confirmation token lifetime")
    host_approval_ttl_minutes: int = Field(default=2880, ge=1, description="Host approval token lifetime")
    token_bytes: int = Field(default=32, ge=16, description="Entropy of generated tokens")
    expiry_sweep_interval_seconds: int = Field(
        default=60, ge=0, description="Period of the stale request sweep; 0 disables it"
    )


class PollSettings(BaseSettings):
    """Poll creation limits."""

    model_config = SettingsConfigDict(env_prefix="POLL_", extra="ignore")

    max_time_slots: int = Field(default=20, description="Maximum proposed slots per poll")
    min_votes_per_participant: int = Field(default=1)
    max_votes_per_participant: int = Field(default=10)
    min_duration_minutes: int = Field(default=15)
    max_duration_minutes: int = Field(default=1440)


class StorageSettings(BaseSettings):
    """Persistence backend selection."""

    model_config = SettingsConfigDict(extra="ignore")

    backend: Literal["memory", "postgres"] = Field(default="memory", alias="storage_backend")


class CorsSettings(BaseSettings):
    """Origins allowed to call the booking and poll endpoints."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    origins_raw: str = Field(
        default="http://localhost:5173",
        validation_alias="CORS_ORIGINS",
    )

    @property
    def origins(self) -> list[str]:
        """Parse comma-separated origins into list."""
        return [o.strip() for o in self.origins_raw.split(",") if o.strip()]

    @property
    def allow_credentials(self) -> bool:
        """Credentials not allowed with wildcard origins."""
        return self.origins != ["*"]


class DebugSettings(BaseSettings):
    """Verbose logging switches."""

    model_config = SettingsConfigDict(extra="ignore")

    request: bool = Field(default=False, alias="request_debug")
    redis: bool = Field(default=False, alias="redis_debug")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class FeatureSettings(BaseSettings):
    """Optional subsystems."""

    model_config = SettingsConfigDict(extra="ignore")

    event_bus: bool = Field(default=True, alias="enable_event_bus")
    migrations: bool = Field(default=True, alias="run_migrations")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class Settings:
    """All settings sections, each loaded from its own prefix."""

    def __init__(self) -> None:
        self.redis = RedisSettings()
        self.postgres = PostgresSettings()
        self.workflow = WorkflowSettings()
        self.polls = PollSettings()
        self.storage = StorageSettings()
        self.cors = CorsSettings()
        self.debug = DebugSettings()
        self.features = FeatureSettings()


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, built on first use."""
    return Settings()


def clear_settings_cache() -> None:
    """Forget cached settings so the next call rereads the environment."""
    get_settings.cache_clear()

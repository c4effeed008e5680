"""Application settings using Pydantic Settings for configuration management."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class SyncTimings:
    """Timing and sizing knobs consumed by the sync engine."""

    backfill_days: int = 30
    batch_size: int = 50
    reconnect_delay: float = 5.0
    keepalive_interval: float = 10.0
    idle_refresh_interval: float = 300.0
    # Upper bound on a single blocking idle poll; bounds stop latency
    idle_poll_interval: float = 1.0
    stop_timeout: float = 10.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Onebox Sync"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Sync engine
    sync_backfill_days: int = 30
    sync_batch_size: int = Field(default=50, gt=0)
    sync_reconnect_delay_seconds: float = Field(default=5.0, gt=0)
    sync_keepalive_seconds: float = Field(default=10.0, gt=0)
    sync_idle_refresh_seconds: float = Field(default=300.0, gt=0)
    sync_idle_poll_seconds: float = Field(default=1.0, gt=0)
    sync_stop_timeout_seconds: float = 10.0
    # Peek by default; marking \Seen before a save succeeds can lose mail
    sync_mark_seen: bool = False

    # Storage
    store_backend: Literal["sqlite", "postgres"] = "sqlite"
    sqlite_db_path: str = "./data/onebox.db"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: SecretStr = Field(default=SecretStr("postgres"))
    postgres_db: str = "onebox"

    # Search indexing (Milvus)
    milvus_enabled: bool = False
    milvus_host: str = "localhost"
    milvus_port: int = 19530
    milvus_collection_name: str = "emails"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = 384

    # Notifications
    notify_webhook_url: str | None = None
    notify_timeout_seconds: float = 5.0

    # Fan-out
    dispatch_max_workers: int = Field(default=16, gt=0)

    @computed_field
    @property
    def postgres_dsn(self) -> str:
        """Construct PostgreSQL connection string."""
        password = self.postgres_password.get_secret_value()
        return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def milvus_uri(self) -> str:
        """Construct Milvus connection URI."""
        return f"http://{self.milvus_host}:{self.milvus_port}"

    def sync_timings(self) -> SyncTimings:
        return SyncTimings(
            backfill_days=self.sync_backfill_days,
            batch_size=self.sync_batch_size,
            reconnect_delay=self.sync_reconnect_delay_seconds,
            keepalive_interval=self.sync_keepalive_seconds,
            idle_refresh_interval=self.sync_idle_refresh_seconds,
            idle_poll_interval=self.sync_idle_poll_seconds,
            stop_timeout=self.sync_stop_timeout_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""
Payroll Sync Configuration

Environment-based settings for the payroll provider sync engine.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # Database: accepts either DATABASE_URL or individual fields
    database_url_external: str = Field(default="", alias="DATABASE_URL")
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "payroll"
    postgres_password: str = "payroll"
    postgres_db: str = "payroll"

    @computed_field
    @property
    def database_url(self) -> str:
        """Async PostgreSQL connection URL."""
        if self.database_url_external:
            url = self.database_url_external
            # Replace postgres:// with postgresql+asyncpg://
            if url.startswith("postgres://"):
                url = "postgresql+asyncpg://" + url[len("postgres://"):]
            elif url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]
            return url
        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=self.postgres_user,
                password=self.postgres_password,
                host=self.postgres_host,
                port=self.postgres_port,
                path=self.postgres_db,
            )
        )

    # Redis: accepts either REDIS_URL or individual fields
    redis_url_external: str = Field(default="", alias="REDIS_URL")
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        if self.redis_url_external:
            return self.redis_url_external
        return str(
            RedisDsn.build(
                scheme="redis",
                host=self.redis_host,
                port=self.redis_port,
                path=str(self.redis_db),
            )
        )

    # Security
    encryption_key: str = Field(
        default="",
        description=(
            "Comma-separated Fernet keys for provider credentials, primary first. "
            "Generate with Fernet.generate_key(); must be set outside development."
        ),
    )

    # Payroll sync
    payroll_request_timeout: float = Field(
        default=30.0,
        description="Seconds before a provider request is treated as a network failure",
    )
    sync_stale_run_minutes: int = Field(
        default=60,
        description="Pending sync runs older than this are considered abandoned",
    )
    default_sync_interval_minutes: int = 1440

    # Error Monitoring
    sentry_dsn: str = Field(
        default="",
        description="Sentry DSN for error monitoring (leave empty to disable)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

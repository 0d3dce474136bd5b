"""Application Configuration: environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache): single instance per process
    - transaction_max_attempts >= 1 (1 means no automatic retry)

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://docvault:docvault@db:5432/docvault"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_name: str | None = None
    database_username: str | None = None
    database_password: str | None = None

    database_max_pool_size: int = Field(10, ge=1)
    database_min_pool_size: int = Field(2, ge=0)
    database_max_idle_time_ms: int = 30_000
    database_server_selection_timeout_ms: int = 5_000
    database_socket_timeout_ms: int = 45_000
    database_isolation_level: str = "REPEATABLE READ"

    database_connect_retries: int = Field(3, ge=1)
    database_connect_retry_delay_ms: int = 2_000

    # Workflow transactions
    transaction_max_attempts: int = Field(1, ge=1)
    transaction_retry_base_delay_ms: int = 50
    transaction_retry_max_delay_ms: int = 2_000

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()

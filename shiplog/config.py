from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field
from functools import lru_cache
from pathlib import Path

# Get the project root (shiplog/..)
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):

    # Application
    app_env: str = "development"
    app_debug: bool = False
    public_base_url: str = "https://shiplog.dev"

    # PostgreSQL Configuration
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "shiplog_db"
    postgres_user: str = "shiplog_user"
    postgres_password: str = ""

    # SQLite (local dev and tests)
    use_sqlite: bool = False
    sqlite_url: str = "sqlite+aiosqlite:///./data/shiplog.db"

    @computed_field
    @property
    def database_url(self) -> str:
        """Return the appropriate database URL based on configuration."""
        if self.use_sqlite:
            return self.sqlite_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Database pooling (PostgreSQL)
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    db_connect_timeout_seconds: float = 10.0
    db_command_timeout_seconds: float = 15.0
    # Upper bound on a project lookup or entry upsert, checked at the call site
    db_operation_timeout_seconds: float = 20.0

    # OpenAI API (PR categorization)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    categorization_timeout_seconds: float = 30.0
    categorization_max_body_chars: int = 2000
    categorization_max_diff_chars: int = 3000
    categorization_batch_size: int = 5  # Concurrent categorization calls

    # Webhook retry queue
    webhook_queue_max_attempts: int = 5
    webhook_retry_batch_size: int = 10
    webhook_queue_retention_days: int = 7  # Completed items only, dead items are kept
    webhook_retry_interval_minutes: int = 5
    webhook_processing_timeout_minutes: int = 30  # Claims older than this are released as failed

    # Bearer secret for the retry trigger endpoint (empty = open, local dev only)
    cron_secret: str = ""

    # Chat notifications (Slack / Discord)
    notifications_enabled: bool = True
    notification_timeout_seconds: float = 10.0

    scheduler_enabled: bool = True

    # Sentry
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.0

    # Prometheus
    prometheus_enabled: bool = False

    # OpenTelemetry
    otel_enabled: bool = False
    otel_service_name: str = "shiplog"
    otel_exporter: str = "console"  # "console" or "otlp"
    otel_endpoint: str = ""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Singleton instance for easy import
settings = get_settings()

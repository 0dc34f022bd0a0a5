import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # HTTP Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./relay.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Shared state store: "sql" (uses DATABASE_URL) or "redis"
    state_backend: str = Field(default="sql", alias="STATE_BACKEND")
    redis_url: str = Field(default="redis://127.0.0.1:6379/0", alias="REDIS_URL")

    # Cache TTLs (seconds)
    cache_default_ttl: int = Field(default=300, alias="CACHE_DEFAULT_TTL")
    cache_ttl_weather: int = Field(default=600, alias="CACHE_TTL_WEATHER")
    cache_ttl_news: int = Field(default=900, alias="CACHE_TTL_NEWS")
    cache_ttl_exchange: int = Field(default=3600, alias="CACHE_TTL_EXCHANGE")
    cache_ttl_github: int = Field(default=1800, alias="CACHE_TTL_GITHUB")

    # Rate limiting
    rate_limit_window_ms: int = Field(default=15 * 60 * 1000, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_max_requests: int = Field(default=100, alias="RATE_LIMIT_MAX_REQUESTS")
    auth_rate_limit_window_ms: int = Field(
        default=15 * 60 * 1000, alias="AUTH_RATE_LIMIT_WINDOW_MS"
    )
    auth_rate_limit_max_attempts: int = Field(default=5, alias="AUTH_RATE_LIMIT_MAX")
    upstream_rate_limit_window_ms: int = Field(
        default=60 * 1000, alias="UPSTREAM_RATE_LIMIT_WINDOW_MS"
    )
    upstream_rate_limit_max_requests: int = Field(
        default=10, alias="UPSTREAM_RATE_LIMIT_MAX"
    )
    # "open" admits everything when the store is down, "closed" rejects everything
    rate_limit_failure_mode: str = Field(default="open", alias="RATE_LIMIT_FAILURE_MODE")

    # External providers
    upstream_timeout: float = Field(default=5.0, alias="UPSTREAM_TIMEOUT")
    weather_api_key: str = Field(default="", alias="WEATHER_API_KEY")
    news_api_key: str = Field(default="", alias="NEWS_API_KEY")
    exchange_api_key: str = Field(default="", alias="EXCHANGE_API_KEY")
    github_token: str = Field(default="", alias="GITHUB_TOKEN")

    # Credentials checked by the login-attempt route; empty disables login
    admin_username: str = Field(default="", alias="ADMIN_USERNAME")
    admin_password: str = Field(default="", alias="ADMIN_PASSWORD")

    # Job processing
    worker_concurrency: int = Field(default=2, alias="WORKER_CONCURRENCY")
    worker_poll_interval: float = Field(default=1.0, alias="WORKER_POLL_INTERVAL")
    job_lease_ms: int = Field(default=30_000, alias="JOB_LEASE_MS")
    job_retention_days: int = Field(default=7, alias="JOB_RETENTION_DAYS")
    analytics_cron: str = Field(default="0 * * * *", alias="ANALYTICS_CRON")
    cleanup_cron: str = Field(default="0 3 * * *", alias="CLEANUP_CRON")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, reading a .env file first."""
    load_dotenv(env_file)
    return Settings.model_validate(dict(os.environ))

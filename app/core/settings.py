"""Configuration and environment settings for the Spend Parser."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the Spend Parser."""

    database_url: str = "sqlite:///spend_parser.db"
    environment: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    log_file: str = "logs/pipeline.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    # Language-model backends
    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-3-haiku-20240307"
    llm_primary_provider: Literal["groq", "anthropic", "mock"] | None = None
    llm_max_tokens: int = 500
    llm_timeout_seconds: float = 20.0
    mock_latency_ms: int = 100

    # Cost controls
    llm_daily_budget_usd: float = 10.0
    llm_per_user_daily_budget_usd: float = 0.5
    llm_circuit_breaker_threshold: int = 5
    llm_circuit_breaker_timeout_seconds: float = 60.0

    # Pipeline
    heuristic_high_confidence: float = 0.85
    salary_credit_threshold: float = 20000.0
    cache_ttl_seconds: int = 24 * 60 * 60
    cache_max_age_days: int = 30
    dedup_window_minutes: int = 60
    ingest_parse_limit: int = 10
    parse_workers: int = 6

    # Scheduled work
    scheduler_enabled: bool = True
    sweep_interval_seconds: float = 60 * 60
    sweep_user_limit: int = 50
    sweep_events_per_user: int = 20
    cleanup_interval_seconds: float = 24 * 60 * 60
    summary_interval_seconds: float = 24 * 60 * 60
    summary_user_limit: int = 500

    # Weekly summaries run Monday to Monday in this UTC offset (IST)
    summary_utc_offset_minutes: int = 330

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()

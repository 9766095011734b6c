"""
Configuration Management

This module provides application-wide configuration settings using
Pydantic Settings for the CallSync transcript pipeline.

Environment variables are loaded from .env file and can be overridden
by system environment variables.

Author: CallSync Team
Date: 2026-01-12
"""

from datetime import date
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration settings.
    
    All settings can be overridden via environment variables.
    Settings are loaded from .env file by default.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database configuration
    database_url: str | None = None
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Domo (BI connector) configuration
    domo_client_id: str | None = None
    domo_client_secret: str | None = None
    domo_dataset_id: str | None = None
    domo_api_url: str = "https://api.domo.com"
    domo_query_page_size: int = 10000
    domo_timeout_seconds: float = 300.0

    # Classifier (OpenRouter chat completions) configuration
    openrouter_api_key: str | None = None
    openrouter_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_referer: str = "https://callsync.local"
    openrouter_title: str = "CallSync Transcript Analysis"
    analysis_model: str = "anthropic/claude-3.5-sonnet"
    analysis_last_n_chars: int = 1500
    analysis_temperature: float = 0.3
    analysis_max_tokens: int = 500
    professionalism_model: str = "anthropic/claude-3-haiku"
    professionalism_max_chars: int = 4000

    # Analysis dispatcher tuning
    analysis_max_concurrent: int = 20
    analysis_retry_attempts: int = 3
    analysis_retry_delay: float = 2.0   # seconds, doubled on every retry
    analysis_batch_delay: float = 0.5   # seconds between concurrency waves

    # Delta sync configuration
    sync_baseline_date: date = date(2025, 12, 1)  # never fetch before this
    sync_use_full_export: bool = True
    sync_interval_seconds: int = 86400
    sync_upsert_policy: Literal["overwrite", "fill_missing"] = "overwrite"
    error_summary_limit: int = 5

    # Reporting
    report_output_dir: str = "reports"
    professionalism_calls_per_agent: int = 8
    professionalism_min_messages: int = 4

    # Observability
    metrics_port: int = 0  # Prometheus metrics port (if >0 then enabled)
    log_level: str = "INFO"


def require_settings(*names: str, source: Settings | None = None) -> None:
    """
    Fail fast when required configuration values are missing.
    
    Args:
        names: Setting attribute names that must be non-empty
        source: Settings instance to check (defaults to the global one)
        
    Raises:
        RuntimeError: Listing every missing value
    """
    source = source or settings
    missing = [name for name in names if not getattr(source, name, None)]
    if missing:
        raise RuntimeError(
            "Missing required configuration: "
            + ", ".join(name.upper() for name in missing)
            + ". Please set them in your .env file or environment variables."
        )


# Global settings instance
settings = Settings()

"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """HealthSync insights server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; there is no auth layer in front of the insight engines.
    healthsync_host: str = "127.0.0.1"
    healthsync_port: int = 8001
    healthsync_log_level: str = "info"
    healthsync_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.healthsync/insights.db"
    encryption_key: str = ""

    # Correlation engine
    correlation_threshold: float = 0.6
    min_data_points: int = 10
    correlation_lookback_days: int = 30
    max_lookback_days: int = 3650

    # Prediction engine
    prediction_min_history: int = 7
    prediction_lookback_days: int = 30

    # Micro-moment scheduler
    max_moments_per_day: int = 8
    behavior_lookback_days: int = 30
    default_response_rate: float = 0.6

    # I/O bounds
    store_timeout_seconds: float = 5.0
    context_timeout_seconds: float = 3.0
    batch_max_concurrency: int = 4

    # External collaborators (empty = disabled)
    weather_api_url: str = ""
    notification_webhook_url: str = ""

    # Seed this user with synthetic records at startup (empty = off)
    healthsync_demo_user: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()

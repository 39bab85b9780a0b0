"""
Configuration — Environment-aware settings using Pydantic.

Every tunable of the scheduling engine lives here: weather provider access,
risk-model weights, the working calendar, and the estimator's floor value.
Values are read from environment variables (or a local .env file), so the
same build runs against a real weather provider in production and in a fully
offline, degraded mode in development and tests.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings — auto-loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""
    weather_api_key: str = ""

    # Service config
    app_name: str = "Service Scheduling Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # LLM config (schedule narrative only)
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 1200
    llm_temperature: float = 0.3

    # Weather provider
    weather_api_base_url: str = "https://api.weatherapi.com/v1"
    weather_timeout_seconds: float = 5.0
    weather_forecast_days: int = 14

    # Weather risk model
    forecast_weight: float = 0.7
    default_weather_risk: float = 0.5

    # Scheduling
    daily_capacity_hours: float = 8.0
    minimum_service_hours: float = 4.0
    work_weekends: bool = False
    default_start_lead_days: int = 14

    # Optional JSON file replacing the built-in service catalog
    catalog_path: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings loader.

    Settings are immutable for the life of the process, so they are built
    once and shared by every request.
    """
    return Settings()

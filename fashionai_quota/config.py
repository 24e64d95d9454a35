"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


def parse_key_list(raw: str) -> list[str]:
    """Split a comma-separated credential list, dropping blanks."""
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "FashionAI Quota API"
    api_version: str = "0.1.0"
    api_description: str = "Credits, rate limits and API key pools for FashionAI features"

    # Admin endpoints (X-Admin-Token header); empty disables them
    admin_api_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    tracing_sample_rate: float = 1.0  # fraction of root traces kept
    service_name: str = "fashionai-quota"

    # Credit plans (daily credits per tier)
    plan_free_credits: int = 10
    plan_pro_credits: int = 100
    plan_elite_credits: int = 300
    credit_reset_hours: int = 24

    # API key pools - comma-separated lists per vendor
    REPLICATE_API_KEYS: str = ""
    OPENAI_API_KEYS: str = ""
    STABILITY_API_KEYS: str = ""
    AI_MODEL_API_KEYS: str = ""
    api_key_daily_limit: int = 100

    # Rate limiting (per client, per feature)
    chat_rate_limit_requests: int = 5
    chat_rate_limit_window_ms: int = 60_000
    tryon_rate_limit_requests: int = 10
    tryon_rate_limit_window_ms: int = 300_000

    # Response cache
    cache_default_ttl_ms: int = 5 * 60 * 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        for name in ("plan_free_credits", "plan_pro_credits", "plan_elite_credits"):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be positive")

        positive_fields = (
            "credit_reset_hours",
            "api_key_daily_limit",
            "chat_rate_limit_requests",
            "chat_rate_limit_window_ms",
            "tryon_rate_limit_requests",
            "tryon_rate_limit_window_ms",
            "cache_default_ttl_ms",
        )
        for name in positive_fields:
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be positive")

        if not 0.0 <= self.tracing_sample_rate <= 1.0:
            errors.append("TRACING_SAMPLE_RATE must be between 0 and 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def service_key_lists(self) -> dict[str, list[str]]:
        """Configured credentials per key-pool service name."""
        return {
            "replicate": parse_key_list(self.REPLICATE_API_KEYS),
            "openai": parse_key_list(self.OPENAI_API_KEYS),
            "stability": parse_key_list(self.STABILITY_API_KEYS),
            "generic": parse_key_list(self.AI_MODEL_API_KEYS),
        }


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings

"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Delivery Billing API"
    api_prefix: str = "/api"

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    # Routing provider
    google_maps_api_key: Optional[str] = Field(
        default=None,
        description="Credential for the Google Distance Matrix API.",
    )
    distance_matrix_url: str = Field(
        default="https://maps.googleapis.com/maps/api/distancematrix/json",
        description="Distance Matrix JSON endpoint.",
    )
    routing_mode: Literal["driving", "bicycling", "walking"] = "driving"
    routing_language: str = "fr"
    routing_timeout_seconds: float = Field(default=15.0, gt=0.0)
    routing_max_retries: int = Field(
        default=0,
        ge=0,
        description="Retries on transport errors only. Provider status errors are never retried.",
    )
    routing_backoff_seconds: float = Field(default=1.0, ge=0.0)

    # Distance cache
    cache_timeout_seconds: float = Field(
        default=7.0,
        gt=0.0,
        description="Upper bound for a single route_cache read or write.",
    )

    # Processing
    rate_limit_delay_seconds: float = Field(
        default=0.2,
        ge=0.0,
        description="Pause after every distance lookup that was not served from cache.",
    )
    watchdog_seconds: float = Field(default=600.0, gt=0.0)
    leg_batch_size: int = Field(default=200, ge=1)
    processing_workers: int = Field(default=4, ge=1)
    lease_backend: Literal["memory", "database"] = "memory"
    lease_grace_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Extra lease lifetime beyond the watchdog before another process may take over.",
    )
    unknown_client_name: str = "Unknown client"
    default_country: str = "France"

    # Credits
    credit_cas_retries: int = Field(
        default=1,
        ge=0,
        description="Extra compare-and-swap attempts after a lost race on the credit balance.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()

"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Courier Dispatch API"
    api_prefix: str = "/api"
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Road routing backend used by the optimize endpoint
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv", "cycling"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)
    http_timeout_seconds: float = Field(default=20.0, gt=0.0)

    # Dispatch client engine
    dispatch_api_base_url: str = Field(
        default="http://127.0.0.1:8000/api",
        description="Base URL of the dispatch API used by the client engine (optimize, save, live map).",
    )
    expand_max_retries: int = Field(default=1, ge=0)
    depot_latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    depot_longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    fallback_speed_kmh: float = Field(
        default=25.0,
        gt=0.0,
        description="Average city speed used for approximate durations when routing falls back to haversine.",
    )
    live_sync_interval_seconds: float = Field(default=6.0, gt=0.0)
    optimize_debounce_seconds: float = Field(default=0.5, ge=0.0)
    route_deviation_meters: float = Field(
        default=140.0,
        gt=0.0,
        description="Distance from the planned route beyond which a courier's route is requested again.",
    )
    route_reroute_cooldown_seconds: float = Field(default=15.0, ge=0.0)
    route_trim_max_distance_meters: float = Field(
        default=900.0,
        gt=0.0,
        description="Couriers farther than this from their route keep the untrimmed polyline.",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
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
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            # Try comma-separated
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @property
    def depot(self) -> Optional[tuple[float, float]]:
        """Depot coordinate as (lat, lng), or None when not configured."""
        if self.depot_latitude is None or self.depot_longitude is None:
            return None
        return (self.depot_latitude, self.depot_longitude)


settings = Settings()

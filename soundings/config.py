"""Configuration loader and environment variable management"""
import os
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class AggregationConfig(BaseModel):
    """Depth aggregation grid and hazard detection"""
    cell_size_m: float = Field(default_factory=lambda: _env_float("SOUNDINGS_CELL_SIZE_M", 50.0), ge=10.0, le=100.0)
    shallow_threshold_m: float = Field(default_factory=lambda: _env_float("SOUNDINGS_SHALLOW_THRESHOLD_M", 3.0))
    hazard_min_measurements: int = Field(default=3, ge=1)
    max_query_results: int = Field(default_factory=lambda: _env_int("SOUNDINGS_MAX_QUERY_RESULTS", 1000), ge=1)
    max_age_hours_default: float = Field(default=24.0 * 30)


class RetryConfig(BaseModel):
    """Upstream call policy"""
    timeout_seconds: float = Field(default_factory=lambda: _env_float("TIDE_TIMEOUT", 10.0), gt=0)
    max_attempts: int = Field(default=2, ge=1)
    backoff_seconds: list[float] = Field(default=[0.5, 1.0])
    retry_on_timeout: bool = Field(default=False)


class TideConfig(BaseModel):
    """Tide source and correction"""
    noaa_url: str = Field(
        default_factory=lambda: os.getenv(
            "NOAA_API_URL", "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
        )
    )
    application: str = Field(default_factory=lambda: os.getenv("NOAA_APPLICATION", "soundings-api"))
    max_station_distance_m: float = Field(default=50000.0)
    table_ttl_seconds: float = Field(default=3600.0)
    live_level_ttl_seconds: float = Field(default=900.0)
    window_hours: int = Field(default=6, ge=1)
    degraded_station_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    cache_max_entries: int = Field(default=2048, ge=1)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class InterpolationConfig(BaseModel):
    """Depth field estimation"""
    search_radius_m: float = Field(default_factory=lambda: _env_float("SOUNDINGS_SEARCH_RADIUS_M", 500.0), gt=0)
    min_cell_confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ProjectorConfig(BaseModel):
    """Grounding risk projection"""
    horizon_seconds: float = Field(default=600.0, gt=0)
    target_step_m: float = Field(default=10.0, gt=0)
    avoidance_horizon_seconds: float = Field(default=300.0, gt=0)


class RoutingConfig(BaseModel):
    """Safe route search"""
    grid_spacing_m: float = Field(default_factory=lambda: _env_float("ROUTE_GRID_SPACING_M", 100.0), gt=0)
    padding_m: float = Field(default=500.0, ge=0)
    safety_weight_m: float = Field(default=1.0, ge=0)
    max_expansions: int = Field(default_factory=lambda: _env_int("ROUTE_MAX_EXPANSIONS", 50000), ge=1)
    corridor_m: float = Field(default=250.0, ge=0)
    timeout_seconds: float = Field(default_factory=lambda: _env_float("ROUTE_TIMEOUT", 20.0), gt=0)


class AlertConfig(BaseModel):
    """Alert hierarchy timers and deduplication"""
    dedup_window_seconds: float = Field(default=300.0, gt=0)
    expiry_seconds: Dict[str, float] = Field(
        default={"info": 120.0, "caution": 300.0, "warning": 600.0}
    )
    escalation_seconds: Dict[str, float] = Field(
        default={"critical": 60.0, "emergency": 30.0}
    )
    max_escalations: int = Field(default=3, ge=0)
    history_limit: int = Field(default=5000, ge=1)


class Config(BaseModel):
    """Master configuration"""
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    tide: TideConfig = Field(default_factory=TideConfig)
    interpolation: InterpolationConfig = Field(default_factory=InterpolationConfig)
    projector: ProjectorConfig = Field(default_factory=ProjectorConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    environment: str = Field(default_factory=lambda: os.getenv("SOUNDINGS_ENV", "production"))

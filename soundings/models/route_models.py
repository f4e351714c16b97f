# path: soundings/models/route_models.py

from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from soundings.models.alert_models import RiskAlert
from soundings.models.geo_models import GeoPoint
from soundings.models.vessel_models import Vessel


class RouteRequest(BaseModel):
    start: GeoPoint
    end: GeoPoint
    vessel: Vessel
    timestamp: Optional[str] = None  # ISO-8601, defaults to now

    @model_validator(mode="after")
    def validate_endpoints(self):
        for p in (self.start, self.end):
            if not (-90.0 <= p.lat <= 90.0):
                raise ValueError(f"lat out of range [-90,90]: {p.lat}")
            if not (-180.0 <= p.lon <= 180.0):
                raise ValueError(f"lon out of range [-180,180]: {p.lon}")
        return self


class RouteWaypoint(BaseModel):
    i: int = Field(ge=0)
    lat: float
    lon: float
    estimated_depth_m: float
    clearance_m: float
    confidence: float = Field(ge=0, le=1)
    cum_dist_m: float = Field(ge=0)
    seg_dist_m: float = Field(ge=0)
    bearing_deg_true: float = Field(ge=0, lt=360)


class BBoxWGS84(BaseModel):
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float


class RouteResult(BaseModel):
    waypoints: List[RouteWaypoint]
    safety_score: float = Field(ge=0, le=1)
    confidence_level: float = Field(ge=0, le=1)
    confidence_label: str
    hazard_warnings: List[RiskAlert] = Field(default_factory=list)
    total_distance_m: float = Field(ge=0)
    min_clearance_m: float
    nodes_expanded: int = Field(ge=0)
    bbox_wgs84: BBoxWGS84

    @model_validator(mode="after")
    def validate_waypoints(self):
        if len(self.waypoints) < 2:
            raise ValueError("Route must have at least 2 waypoints")
        # Ensure indexes are contiguous starting at 0
        for idx, p in enumerate(self.waypoints):
            if p.i != idx:
                raise ValueError("Waypoints must have contiguous i starting at 0")
        return self

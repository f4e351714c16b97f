# path: soundings/models/risk_models.py

from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from soundings.models.alert_models import AlertSeverity
from soundings.models.geo_models import GeoPoint
from soundings.models.vessel_models import Vessel


AssessmentStatus = Literal["risk", "clear", "insufficient_data"]
ManeuverType = Literal["turn_port", "turn_starboard", "reduce_speed", "stop"]


class RiskRequest(BaseModel):
    position: GeoPoint
    heading_deg: float
    speed_knots: float = Field(ge=0, le=60)
    vessel: Vessel
    horizon_s: Optional[float] = Field(default=None, gt=0, le=3600)
    raise_alert: bool = True

    @field_validator("heading_deg")
    @classmethod
    def normalise_heading(cls, v: float) -> float:
        return v % 360.0


class AvoidanceOption(BaseModel):
    maneuver: ManeuverType
    heading_deg: float
    speed_knots: float
    success_probability: float = Field(ge=0, le=1)
    min_clearance_m: Optional[float] = None
    time_required_s: float = Field(ge=0)
    description: str


class GroundingAssessment(BaseModel):
    status: AssessmentStatus
    severity: Optional[AlertSeverity] = None
    location: Optional[GeoPoint] = None
    time_to_impact_s: Optional[float] = None
    estimated_depth_m: Optional[float] = None
    clearance_m: Optional[float] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    coverage: float = Field(default=0.0, ge=0, le=1)
    min_clearance_m: Optional[float] = None
    steps_evaluated: int = 0
    step_seconds: float = 0.0
    description: str = ""
    avoidance: Optional[AvoidanceOption] = None
    alternatives: List[AvoidanceOption] = Field(default_factory=list)
    alert_id: Optional[str] = None

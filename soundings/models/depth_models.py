# path: soundings/models/depth_models.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional, Set
from pydantic import BaseModel, ConfigDict, Field, field_validator

from soundings.models.geo_models import GeoPoint


SourceEquipment = Literal["sonar", "lead_line", "estimated"]
ReporterExperience = Literal["beginner", "intermediate", "advanced", "professional"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class DepthObservation(BaseModel):
    """A single sounding as submitted by a vessel. Never mutated after submission."""

    model_config = ConfigDict(frozen=True)

    location: GeoPoint
    depth_m: float
    vessel_draft_m: float
    timestamp: datetime = Field(default_factory=utcnow)
    source_equipment: SourceEquipment = "estimated"
    reporter_experience: ReporterExperience = "beginner"
    device_accuracy_m: float = 5.0
    reporter_id: str = "anonymous"
    peer_verified: bool = False

    @field_validator("timestamp")
    @classmethod
    def normalise_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class StoredObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    observation: DepthObservation
    confidence: float = Field(ge=0, le=1)
    cell_key: str
    received_at: datetime = Field(default_factory=utcnow)


class AggregatedCell(BaseModel):
    """Running confidence-weighted estimate for one grid cell. Updated in place."""

    cell_key: str
    center: GeoPoint
    depth_m: float
    measurement_count: int = Field(ge=1)
    standard_deviation: float = Field(default=0.0, ge=0)
    confidence: float = Field(ge=0, le=1)
    first_seen: datetime
    last_seen: datetime
    # Welford accumulators (weighted).
    weight_sum: float = Field(default=0.0, ge=0)
    m2: float = Field(default=0.0, ge=0)
    observation_confidence_sum: float = Field(default=0.0, ge=0)
    reporters: Set[str] = Field(default_factory=set)
    hazard_flagged: bool = False


class DepthReading(BaseModel):
    cell_key: str
    location: GeoPoint
    depth_m: float
    measurement_count: int
    standard_deviation: float
    confidence: float
    confidence_label: str
    distinct_reporters: int
    first_seen: datetime
    last_seen: datetime


class SubmissionResult(BaseModel):
    id: str
    confidence: float
    cell_key: str
    cell_confidence: float
    hazard_candidate: bool = False


class HazardCandidate(BaseModel):
    cell_key: str
    location: GeoPoint
    depth_m: float
    measurement_count: int
    confidence: float
    detected_at: datetime = Field(default_factory=utcnow)


class SafeReading(BaseModel):
    cell_key: str
    location: GeoPoint
    depth_m: float
    detected_at: datetime = Field(default_factory=utcnow)


class SpatialEstimate(BaseModel):
    depth_m: float
    confidence: float = Field(ge=0, le=1)
    cell_count: int
    nearest_cell_m: float


class DepthEstimate(BaseModel):
    location: GeoPoint
    depth_m: float
    raw_depth_m: float
    confidence: float = Field(ge=0, le=1)
    confidence_label: str
    spatial_confidence: float = Field(ge=0, le=1)
    tide_confidence: float = Field(ge=0, le=1)
    cell_count: int
    tide_station_id: Optional[str] = None
    notes: List[str] = Field(default_factory=list)

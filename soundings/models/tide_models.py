# path: soundings/models/tide_models.py

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from soundings.models.geo_models import GeoPoint


PredictionKind = Literal["high", "low", "interpolated"]
PredictionInterval = Literal["hilo", "60"]


class TideStation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    location: GeoPoint
    chart_datum_offset_m: float = 0.0
    time_zone: str = "UTC"
    active: bool = True


class TidePrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    station_id: str
    timestamp: datetime
    height_m: float
    kind: PredictionKind = "interpolated"


class StationMatch(BaseModel):
    station: TideStation
    distance_m: float = Field(ge=0)
    degraded: bool = False


class TideCorrection(BaseModel):
    original_depth_m: float
    corrected_depth_m: float = Field(ge=0)
    correction_m: float = 0.0
    tide_level_m: Optional[float] = None
    confidence: float = Field(ge=0, le=1)
    station: Optional[TideStation] = None
    station_distance_m: Optional[float] = None
    degraded: bool = False
    notes: str = ""


class TideEvent(BaseModel):
    timestamp: datetime
    height_m: float


class TideStatus(BaseModel):
    station: TideStation
    station_distance_m: float
    current_level_m: float
    next_high: Optional[TideEvent] = None
    next_low: Optional[TideEvent] = None
    trend: Literal["rising", "falling", "slack"] = "slack"
    confidence: float = Field(ge=0, le=1)
    predictions: List[TidePrediction] = Field(default_factory=list)

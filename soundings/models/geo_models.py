# path: soundings/models/geo_models.py

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator


class GeoPoint(BaseModel):
    # Range checks happen at the ingest boundary so they surface as ValidationError.
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class Bounds(BaseModel):
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @model_validator(mode="after")
    def validate_order(self):
        if self.min_lat > self.max_lat:
            raise ValueError("min_lat must be <= max_lat")
        if self.min_lon > self.max_lon:
            raise ValueError("min_lon must be <= max_lon")
        if not (-90.0 <= self.min_lat and self.max_lat <= 90.0):
            raise ValueError("lat out of range [-90,90]")
        if not (-180.0 <= self.min_lon and self.max_lon <= 180.0):
            raise ValueError("lon out of range [-180,180]")
        return self

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon

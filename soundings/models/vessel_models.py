# path: soundings/models/vessel_models.py

from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel, Field


RiskTolerance = Literal["conservative", "moderate", "aggressive"]

MARGIN_FACTOR = {
    "conservative": 1.5,
    "moderate": 1.0,
    "aggressive": 0.75,
}


class Vessel(BaseModel):
    draft_m: float = Field(gt=0, le=50)
    safety_margin_m: float = Field(default=1.0, ge=0)
    risk_tolerance: RiskTolerance = "moderate"
    displacement_t: Optional[float] = Field(default=None, gt=0)
    turn_rate_deg_s: float = Field(default=5.0, gt=0)

    @property
    def effective_margin_m(self) -> float:
        return self.safety_margin_m * MARGIN_FACTOR[self.risk_tolerance]

    @property
    def required_depth_m(self) -> float:
        return self.draft_m + self.effective_margin_m

    def clearance(self, depth_m: float) -> float:
        return depth_m - self.required_depth_m

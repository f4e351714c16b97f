# path: soundings/models/alert_models.py

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, List, Literal, Optional
from pydantic import BaseModel, Field

from soundings.models.depth_models import utcnow
from soundings.models.geo_models import GeoPoint


AlertSeverity = Literal["info", "caution", "warning", "critical", "emergency"]
AlertCategory = Literal["grounding", "shallow_water", "hazard_report", "navigation"]
AlertState = Literal["created", "delivered", "acknowledged", "escalated", "expired", "resolved"]

SEVERITY_ORDER: Dict[str, int] = {
    "info": 1,
    "caution": 2,
    "warning": 3,
    "critical": 4,
    "emergency": 5,
}

PERSISTENT_SEVERITIES: FrozenSet[str] = frozenset({"critical", "emergency"})

# Forward-only state machine; "resolved" is terminal.
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "created": frozenset({"delivered", "resolved"}),
    "delivered": frozenset({"acknowledged", "expired", "escalated", "resolved"}),
    "escalated": frozenset({"delivered", "resolved"}),
    "acknowledged": frozenset({"resolved"}),
    "expired": frozenset({"resolved"}),
    "resolved": frozenset(),
}


def is_more_severe(a: str, b: str) -> bool:
    return SEVERITY_ORDER[a] > SEVERITY_ORDER[b]


class AudioContract(BaseModel):
    enabled: bool = True
    sound: Literal["beep", "alarm", "siren", "horn"]
    volume: float = Field(ge=0, le=1)
    frequency: Literal["once", "repeating", "continuous"]
    interval_s: Optional[float] = None
    priority: int = Field(ge=1, le=10)


class VisualContract(BaseModel):
    enabled: bool = True
    color: str
    animation: Literal["static", "pulse", "flash"]
    position: Literal["top", "center", "overlay"]
    full_screen: bool = False


class HapticContract(BaseModel):
    enabled: bool = True
    pattern: Literal["light", "medium", "heavy", "pulse", "emergency"]
    duration_ms: int
    repeats: int
    interval_ms: Optional[int] = None


class DeliveryContract(BaseModel):
    """What the UI layer must render. Rendering itself is not the core's concern."""

    channels: List[str]
    audio: AudioContract
    visual: VisualContract
    haptic: HapticContract
    acknowledgment_required: bool = False
    dismissible: bool = True


class AlertCandidate(BaseModel):
    severity: AlertSeverity
    category: AlertCategory = "hazard_report"
    location: GeoPoint
    message: str = ""
    time_to_impact_s: Optional[float] = Field(default=None, ge=0)
    clearance_m: Optional[float] = None
    confidence: float = Field(default=0.5, ge=0, le=1)
    cell_key: Optional[str] = None


class RiskAlert(BaseModel):
    id: str
    severity: AlertSeverity
    category: AlertCategory
    location: GeoPoint
    cell_key: str
    message: str = ""
    time_to_impact_s: Optional[float] = None
    clearance_m: Optional[float] = None
    confidence: float = Field(ge=0, le=1)
    state: AlertState = "created"
    delivery: DeliveryContract
    escalation_count: int = 0
    occurrences: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state not in ("resolved", "expired")


class AlertTransition(BaseModel):
    alert_id: str
    from_state: Optional[AlertState] = None
    to_state: AlertState
    severity: AlertSeverity
    reason: str = ""
    at: datetime = Field(default_factory=utcnow)
    alert: RiskAlert

"""
Confidence scoring.

Every score in the engine is a continuous value in [0, 1]. The formulas live
here as pure functions over small typed factor structs so each weight can be
tested on its own. The low/medium/high/verified labels are a display bucketing
of the continuous score and carry no extra meaning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from soundings.errors import check_unit_interval


EQUIPMENT_BASE = {
    "sonar": 0.70,
    "lead_line": 0.55,
    "estimated": 0.30,
}

EXPERIENCE_BONUS = {
    "beginner": 0.00,
    "intermediate": 0.05,
    "advanced": 0.10,
    "professional": 0.15,
}

PEER_VERIFICATION_BONUS = 0.15

# (threshold_m, multiplier), checked worst first
ACCURACY_PENALTIES = ((5.0, 0.6), (3.0, 0.8))

CORROBORATION_STEP = 0.10
CORROBORATION_CAP = 0.25

# (relative stddev threshold, multiplier), checked worst first
CONSISTENCY_PENALTIES = ((0.25, 0.6), (0.10, 0.85))

TIDE_DISTANCE_BANDS = ((50000.0, 0.3), (25000.0, 0.6), (10000.0, 0.8))
TIDE_CORRECTION_BANDS = ((3.0, 0.5), (1.5, 0.7))
TIDE_EXTREME_LEVEL_M = 4.0
TIDE_EXTREME_FACTOR = 0.6
TIDE_CONFIDENCE_FLOOR = 0.1


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class ObservationFactors:
    source_equipment: str
    reporter_experience: str
    device_accuracy_m: float
    peer_verified: bool = False


@dataclass(frozen=True)
class CellFactors:
    mean_observation_confidence: float
    distinct_reporters: int
    standard_deviation: float
    depth_m: float


@dataclass(frozen=True)
class TideFactors:
    station_distance_m: float
    correction_m: float
    tide_level_m: float
    degraded_station: bool = False
    degraded_factor: float = 0.8


def observation_confidence(f: ObservationFactors) -> float:
    score = EQUIPMENT_BASE.get(f.source_equipment, EQUIPMENT_BASE["estimated"])
    score += EXPERIENCE_BONUS.get(f.reporter_experience, 0.0)
    if f.peer_verified:
        score += PEER_VERIFICATION_BONUS
    for threshold, factor in ACCURACY_PENALTIES:
        if f.device_accuracy_m > threshold:
            score *= factor
            break
    return check_unit_interval(clamp01(score), "observation confidence")


def cell_confidence(f: CellFactors) -> float:
    score = f.mean_observation_confidence
    score += min(CORROBORATION_CAP, CORROBORATION_STEP * max(0, f.distinct_reporters - 1))
    relative_spread = f.standard_deviation / max(f.depth_m, 1.0)
    for threshold, factor in CONSISTENCY_PENALTIES:
        if relative_spread > threshold:
            score *= factor
            break
    return check_unit_interval(clamp01(score), "cell confidence")


def tide_confidence(f: TideFactors) -> float:
    confidence = 1.0
    for threshold, factor in TIDE_DISTANCE_BANDS:
        if f.station_distance_m > threshold:
            confidence *= factor
            break
    for threshold, factor in TIDE_CORRECTION_BANDS:
        if abs(f.correction_m) > threshold:
            confidence *= factor
            break
    if abs(f.tide_level_m) > TIDE_EXTREME_LEVEL_M:
        confidence *= TIDE_EXTREME_FACTOR
    if f.degraded_station:
        confidence *= f.degraded_factor
    return check_unit_interval(max(TIDE_CONFIDENCE_FLOOR, min(1.0, confidence)), "tide confidence")


def combined_confidence(spatial: float, tide: float) -> float:
    return check_unit_interval(spatial * tide, "combined confidence")


def confidence_label(score: Optional[float]) -> str:
    if score is None or score < 0.4:
        return "low"
    if score < 0.7:
        return "medium"
    if score < 0.9:
        return "high"
    return "verified"

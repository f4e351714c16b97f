"""
Grounding Risk Projector
========================
Dead-reckons the vessel along its current heading and speed and samples the
depth field at short time steps (about 10 m apart, between 0.1 s and 1 s).

At every sampled point:

    clearance = depth − (draft + effective safety margin)

and the point is checked against the tier table, most severe first:

    emergency  clearance < 0.5 m  within  30 s
    critical   clearance < 1.0 m  within 120 s
    warning    clearance < 2.0 m  within 300 s
    caution    clearance < draft  within 600 s

The most severe tier triggered anywhere on the path is reported, at the
earliest point it triggers. A path with no known depth at all is reported as
`insufficient_data`, never as clear.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from soundings.config import ProjectorConfig
from soundings.models.alert_models import SEVERITY_ORDER, AlertCandidate
from soundings.models.depth_models import DepthEstimate
from soundings.models.geo_models import GeoPoint
from soundings.models.risk_models import AvoidanceOption, GroundingAssessment, RiskRequest
from soundings.models.vessel_models import Vessel
from soundings.utils.geo import KNOTS_TO_MS, destination_point

log = logging.getLogger("soundings.risk_projector")

MIN_STEP_S = 0.1
MAX_STEP_S = 1.0
TURN_ANGLE_DEG = 45.0


class DepthLookup(Protocol):
    def estimate(self, lat: float, lon: float) -> Optional[DepthEstimate]: ...


@dataclass(frozen=True)
class Tier:
    severity: str
    clearance_m: Optional[float]  # None → vessel draft
    within_s: float

    def threshold(self, vessel: Vessel) -> float:
        return vessel.draft_m if self.clearance_m is None else self.clearance_m


TIERS: Tuple[Tier, ...] = (
    Tier("emergency", 0.5, 30.0),
    Tier("critical", 1.0, 120.0),
    Tier("warning", 2.0, 300.0),
    Tier("caution", None, 600.0),
)


@dataclass
class _Hit:
    tier: Tier
    t: float
    lat: float
    lon: float
    estimate: DepthEstimate
    clearance: float


def step_seconds(speed_ms: float, target_step_m: float) -> float:
    if speed_ms <= 0:
        return MAX_STEP_S
    return max(MIN_STEP_S, min(MAX_STEP_S, target_step_m / speed_ms))


def deceleration_ms2(vessel: Vessel) -> float:
    # Heavier vessels carry way longer.
    displacement = vessel.displacement_t or 10.0
    return max(0.5, 5.0 / math.sqrt(displacement))


def stopping_distance_m(speed_ms: float, vessel: Vessel) -> float:
    return speed_ms * speed_ms / (2.0 * deceleration_ms2(vessel))


def clearance_success(min_clearance: Optional[float]) -> float:
    if min_clearance is None:
        return 0.3
    if min_clearance >= 2.0:
        return 0.9
    if min_clearance >= 0.5:
        return 0.7
    if min_clearance >= 0.0:
        return 0.4
    return 0.1


class GroundingRiskProjector:
    def __init__(self, config: Optional[ProjectorConfig] = None):
        self.config = config or ProjectorConfig()

    def _track(self, lat: float, lon: float, heading: float, speed_ms: float, horizon_s: float):
        """Yields (t, lat, lon) along a straight track."""
        if speed_ms <= 0:
            yield 0.0, lat, lon
            return
        dt = step_seconds(speed_ms, self.config.target_step_m)
        n = int(horizon_s / dt)
        for i in range(n + 1):
            t = i * dt
            p_lat, p_lon = destination_point(lat, lon, heading, speed_ms * t)
            yield t, p_lat, p_lon

    def _min_clearance(
        self,
        field: DepthLookup,
        vessel: Vessel,
        legs: List[Tuple[float, float, float, float, float]],
    ) -> Optional[float]:
        """Minimum known clearance over consecutive legs of (lat, lon, heading, speed_ms, duration_s)."""
        lowest: Optional[float] = None
        for lat, lon, heading, speed_ms, duration in legs:
            for _, p_lat, p_lon in self._track(lat, lon, heading, speed_ms, duration):
                est = field.estimate(p_lat, p_lon)
                if est is None:
                    continue
                c = vessel.clearance(est.depth_m)
                if lowest is None or c < lowest:
                    lowest = c
        return lowest

    def assess(
        self,
        field: DepthLookup,
        position: GeoPoint,
        heading_deg: float,
        speed_knots: float,
        vessel: Vessel,
        horizon_s: Optional[float] = None,
    ) -> GroundingAssessment:
        horizon = horizon_s or self.config.horizon_seconds
        heading = heading_deg % 360.0
        speed_ms = max(0.0, speed_knots) * KNOTS_TO_MS
        dt = step_seconds(speed_ms, self.config.target_step_m)

        best: Optional[_Hit] = None
        total = known = 0
        min_clearance: Optional[float] = None
        conf_sum = 0.0

        for t, lat, lon in self._track(position.lat, position.lon, heading, speed_ms, horizon):
            total += 1
            est = field.estimate(lat, lon)
            if est is None:
                continue
            known += 1
            conf_sum += est.confidence
            clearance = vessel.clearance(est.depth_m)
            if min_clearance is None or clearance < min_clearance:
                min_clearance = clearance

            for tier in TIERS:
                if best is not None and SEVERITY_ORDER[tier.severity] <= SEVERITY_ORDER[best.tier.severity]:
                    break
                if clearance < tier.threshold(vessel) and t <= tier.within_s:
                    best = _Hit(tier, t, lat, lon, est, clearance)
                    break

        coverage = known / total if total else 0.0
        common = dict(
            coverage=coverage,
            min_clearance_m=min_clearance,
            steps_evaluated=total,
            step_seconds=dt if speed_ms > 0 else 0.0,
        )

        if known == 0:
            return GroundingAssessment(
                status="insufficient_data",
                description="No depth data along the projected track",
                **common,
            )

        if best is None:
            return GroundingAssessment(
                status="clear",
                confidence=(conf_sum / known) * coverage,
                description=f"No grounding risk within {horizon:.0f}s; minimum clearance {min_clearance:.1f}m",
                **common,
            )

        options = self.avoidance_options(field, position, heading, speed_ms, vessel, best)
        description = (
            f"{best.tier.severity.upper()}: depth {best.estimate.depth_m:.1f}m "
            f"(clearance {best.clearance:.1f}m) in {best.t:.0f}s"
        )
        log.warning(
            "Grounding risk %s at (%.5f, %.5f): tti=%.1fs clearance=%.2f",
            best.tier.severity, best.lat, best.lon, best.t, best.clearance,
        )
        return GroundingAssessment(
            status="risk",
            severity=best.tier.severity,
            location=GeoPoint(lat=best.lat, lon=best.lon),
            time_to_impact_s=best.t,
            estimated_depth_m=best.estimate.depth_m,
            clearance_m=best.clearance,
            confidence=best.estimate.confidence,
            description=description,
            avoidance=options[0] if options else None,
            alternatives=options,
            **common,
        )

    def avoidance_options(
        self,
        field: DepthLookup,
        position: GeoPoint,
        heading: float,
        speed_ms: float,
        vessel: Vessel,
        hit: _Hit,
    ) -> List[AvoidanceOption]:
        horizon = self.config.avoidance_horizon_seconds
        speed_knots = speed_ms / KNOTS_TO_MS
        turn_time = TURN_ANGLE_DEG / vessel.turn_rate_deg_s
        distance_to_hazard = speed_ms * hit.t
        options: List[AvoidanceOption] = []

        for maneuver, sign in (("turn_port", -1.0), ("turn_starboard", 1.0)):
            new_heading = (heading + sign * TURN_ANGLE_DEG) % 360.0
            # Hold course while turning, then run the new heading.
            pivot_lat, pivot_lon = destination_point(position.lat, position.lon, heading, speed_ms * turn_time)
            lowest = self._min_clearance(field, vessel, [
                (position.lat, position.lon, heading, speed_ms, turn_time),
                (pivot_lat, pivot_lon, new_heading, speed_ms, horizon),
            ])
            success = clearance_success(lowest)
            if turn_time > hit.t:
                success *= 0.5
            side = "port" if sign < 0 else "starboard"
            options.append(AvoidanceOption(
                maneuver=maneuver,
                heading_deg=new_heading,
                speed_knots=speed_knots,
                success_probability=success,
                min_clearance_m=lowest,
                time_required_s=turn_time,
                description=f"Turn {TURN_ANGLE_DEG:.0f}° to {side} onto {new_heading:.0f}°",
            ))

        half = speed_ms / 2.0
        decel = deceleration_ms2(vessel)
        slow_stops_short = stopping_distance_m(half, vessel) < distance_to_hazard
        options.append(AvoidanceOption(
            maneuver="reduce_speed",
            heading_deg=heading,
            speed_knots=speed_knots / 2.0,
            success_probability=0.6 if slow_stops_short else 0.3,
            min_clearance_m=hit.clearance,
            time_required_s=half / decel,
            description=f"Reduce speed to {speed_knots / 2.0:.1f} knots and verify depth",
        ))

        stop_distance = stopping_distance_m(speed_ms, vessel)
        options.append(AvoidanceOption(
            maneuver="stop",
            heading_deg=heading,
            speed_knots=0.0,
            success_probability=0.8 if stop_distance < 0.8 * distance_to_hazard else 0.2,
            min_clearance_m=None,
            time_required_s=speed_ms / decel,
            description=f"All stop (stopping distance {stop_distance:.0f}m, hazard {distance_to_hazard:.0f}m ahead)",
        ))

        options.sort(key=lambda o: (-o.success_probability, o.time_required_s))
        return options


def alert_for(assessment: GroundingAssessment, cell_key: Optional[str] = None) -> Optional[AlertCandidate]:
    if assessment.status != "risk" or assessment.severity is None or assessment.location is None:
        return None
    return AlertCandidate(
        severity=assessment.severity,
        category="grounding",
        location=assessment.location,
        message=assessment.description,
        time_to_impact_s=assessment.time_to_impact_s,
        clearance_m=assessment.clearance_m,
        confidence=assessment.confidence,
        cell_key=cell_key,
    )


class RiskService:
    """Resolves the depth field for a request, projects it and raises the alert."""

    def __init__(self, interpolator, projector: GroundingRiskProjector, hierarchy=None):
        self.interpolator = interpolator
        self.projector = projector
        self.hierarchy = hierarchy

    async def assess(self, request: RiskRequest, timestamp: Optional[datetime] = None) -> GroundingAssessment:
        field = await self.interpolator.snapshot(request.position, timestamp)
        assessment = await asyncio.to_thread(
            self.projector.assess,
            field,
            request.position,
            request.heading_deg,
            request.speed_knots,
            request.vessel,
            request.horizon_s,
        )
        if request.raise_alert and self.hierarchy is not None and assessment.location is not None:
            cell_key = self.interpolator.store.cell_key_for(assessment.location.lat, assessment.location.lon)
            candidate = alert_for(assessment, cell_key)
            if candidate is not None:
                alert_id = self.hierarchy.raise_alert(candidate)
                assessment = assessment.model_copy(update={"alert_id": alert_id})
        return assessment

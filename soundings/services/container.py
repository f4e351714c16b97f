# path: soundings/services/container.py
#
# Wires the engine components together. One container per process; the API
# reaches it through app.state.services.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from soundings.config import Config
from soundings.models.alert_models import AlertCandidate
from soundings.models.depth_models import HazardCandidate, SafeReading
from soundings.services.alert_hierarchy import SafetyAlertHierarchy
from soundings.services.cache import TTLCache
from soundings.services.depth_store import DepthAggregationStore
from soundings.services.interpolator import DepthFieldInterpolator
from soundings.services.risk_projector import GroundingRiskProjector, RiskService
from soundings.services.route_planner import SafeRoutePlanner
from soundings.services.tide_engine import TideCorrectionEngine
from soundings.services.tide_source import (
    FALLBACK_STATIONS,
    NoaaTideSource,
    StaticStationDirectory,
    StationDirectory,
    TideSource,
)

log = logging.getLogger("soundings.container")

# Shallower than this many metres reports as a warning rather than a caution.
HAZARD_WARNING_DEPTH_M = 1.5


@dataclass
class Services:
    config: Config
    cache: TTLCache
    store: DepthAggregationStore
    tides: TideCorrectionEngine
    interpolator: DepthFieldInterpolator
    projector: GroundingRiskProjector
    risk: RiskService
    planner: SafeRoutePlanner
    alerts: SafetyAlertHierarchy


def hazard_alert(candidate: HazardCandidate) -> AlertCandidate:
    severity = "warning" if candidate.depth_m < HAZARD_WARNING_DEPTH_M else "caution"
    return AlertCandidate(
        severity=severity,
        category="shallow_water",
        location=candidate.location,
        message=(
            f"Shallow water reported: {candidate.depth_m:.1f}m "
            f"({candidate.measurement_count} soundings)"
        ),
        confidence=candidate.confidence,
        cell_key=candidate.cell_key,
    )


def build_services(
    config: Optional[Config] = None,
    tide_source: Optional[TideSource] = None,
    station_directory: Optional[StationDirectory] = None,
) -> Services:
    config = config or Config()
    cache = TTLCache(max_entries=config.tide.cache_max_entries)
    store = DepthAggregationStore(config.aggregation)
    tides = TideCorrectionEngine(
        source=tide_source or NoaaTideSource(config.tide),
        directory=station_directory or StaticStationDirectory(FALLBACK_STATIONS),
        cache=cache,
        config=config.tide,
    )
    interpolator = DepthFieldInterpolator(store, tides, config.interpolation)
    alerts = SafetyAlertHierarchy(config.alerts, cell_size_m=config.aggregation.cell_size_m)
    projector = GroundingRiskProjector(config.projector)

    def on_hazard(candidate: HazardCandidate) -> None:
        alerts.raise_alert(hazard_alert(candidate))

    def on_safe(reading: SafeReading) -> None:
        resolved = alerts.resolve_cell(reading.cell_key)
        if resolved:
            log.info("Resolved %d alert(s) for cell %s after safe reading", resolved, reading.cell_key)

    store.add_hazard_listener(on_hazard)
    store.add_safe_reading_listener(on_safe)

    return Services(
        config=config,
        cache=cache,
        store=store,
        tides=tides,
        interpolator=interpolator,
        projector=projector,
        risk=RiskService(interpolator, projector, alerts),
        planner=SafeRoutePlanner(interpolator, alerts, config.routing),
        alerts=alerts,
    )

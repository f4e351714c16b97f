"""
Depth Field Interpolator
========================
Estimates depth at arbitrary coordinates from aggregated cells.

Spatial part: inverse-distance weighting (1/d²) over cells within the search
radius; a point that sits on a cell centre takes that cell's value directly.
Spatial confidence is the IDW-weighted mean cell confidence scaled by a
coverage factor (how many cells contributed and how well they surround the
point).

Temporal part: the tide correction for the area. `estimate_depth` resolves it
per call; `snapshot` resolves it once and hands back a synchronous
`DepthField` so the projector and planner loops never await.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from soundings.config import InterpolationConfig
from soundings.models.depth_models import DepthEstimate, SpatialEstimate
from soundings.models.geo_models import GeoPoint
from soundings.services.confidence import combined_confidence, confidence_label
from soundings.services.depth_store import DepthAggregationStore
from soundings.services.tide_engine import ResolvedTide, TideCorrectionEngine
from soundings.utils.geo import bearing_deg_true

EXACT_HIT_M = 1.0
SPARSE_NOTE_M = 200.0


def coverage_factor(cell_count: int, quadrants: int) -> float:
    """1 cell on one side → ~0.52, 4+ cells on 3+ sides → 1.0"""
    count_part = min(1.0, 0.5 + 0.125 * cell_count)
    spread_part = 0.75 + 0.25 * min(1.0, quadrants / 3.0)
    return count_part * spread_part


def combine(point: GeoPoint, spatial: SpatialEstimate, tide: ResolvedTide) -> DepthEstimate:
    correction = tide.apply(spatial.depth_m)
    notes = []
    if correction.notes:
        notes.append(correction.notes)
    if spatial.cell_count == 1:
        notes.append("Single nearby sounding")
    if spatial.nearest_cell_m > SPARSE_NOTE_M:
        notes.append(f"Nearest sounding {spatial.nearest_cell_m:.0f}m away")
    confidence = combined_confidence(spatial.confidence, correction.confidence)
    return DepthEstimate(
        location=point,
        depth_m=correction.corrected_depth_m,
        raw_depth_m=spatial.depth_m,
        confidence=confidence,
        confidence_label=confidence_label(confidence),
        spatial_confidence=spatial.confidence,
        tide_confidence=correction.confidence,
        cell_count=spatial.cell_count,
        tide_station_id=correction.station.id if correction.station else None,
        notes=notes,
    )


class DepthField:
    """Depth lookup for one area and moment. Synchronous and I/O free."""

    def __init__(self, interpolator: "DepthFieldInterpolator", tide: ResolvedTide):
        self.interpolator = interpolator
        self.tide = tide

    def estimate(self, lat: float, lon: float) -> Optional[DepthEstimate]:
        spatial = self.interpolator.spatial_estimate(lat, lon)
        if spatial is None:
            return None
        return combine(GeoPoint(lat=lat, lon=lon), spatial, self.tide)


class DepthFieldInterpolator:
    def __init__(
        self,
        store: DepthAggregationStore,
        tides: TideCorrectionEngine,
        config: Optional[InterpolationConfig] = None,
    ):
        self.store = store
        self.tides = tides
        self.config = config or InterpolationConfig()

    def spatial_estimate(self, lat: float, lon: float) -> Optional[SpatialEstimate]:
        neighbours = [
            (cell, d)
            for cell, d in self.store.cells_near(lat, lon, self.config.search_radius_m)
            if cell.confidence >= self.config.min_cell_confidence
        ]
        if not neighbours:
            return None

        nearest_cell, nearest_d = min(neighbours, key=lambda cd: cd[1])
        if nearest_d < EXACT_HIT_M:
            return SpatialEstimate(
                depth_m=nearest_cell.depth_m,
                confidence=nearest_cell.confidence,
                cell_count=1,
                nearest_cell_m=nearest_d,
            )

        weight_sum = 0.0
        depth_sum = 0.0
        conf_sum = 0.0
        quadrants = set()
        for cell, d in neighbours:
            w = 1.0 / (d * d)
            weight_sum += w
            depth_sum += w * cell.depth_m
            conf_sum += w * cell.confidence
            quadrants.add(int(bearing_deg_true(lat, lon, cell.center.lat, cell.center.lon) // 90) % 4)

        confidence = (conf_sum / weight_sum) * coverage_factor(len(neighbours), len(quadrants))
        return SpatialEstimate(
            depth_m=depth_sum / weight_sum,
            confidence=max(0.0, min(1.0, confidence)),
            cell_count=len(neighbours),
            nearest_cell_m=nearest_d,
        )

    async def estimate_depth(self, point: GeoPoint, timestamp: Optional[datetime] = None) -> Optional[DepthEstimate]:
        """Tide-corrected depth at a point, or None when no soundings are in range."""
        if not (math.isfinite(point.lat) and math.isfinite(point.lon)):
            return None
        spatial = self.spatial_estimate(point.lat, point.lon)
        if spatial is None:
            return None
        tide = await self.tides.resolve(point, timestamp)
        return combine(point, spatial, tide)

    async def snapshot(self, center: GeoPoint, timestamp: Optional[datetime] = None) -> DepthField:
        tide = await self.tides.resolve(center, timestamp)
        return DepthField(self, tide)

"""
Tide Correction Engine
======================
Brings raw soundings to a common chart datum:

    correction     = tideLevel − chartDatumOffset
    correctedDepth = max(0, rawDepth − correction)

Station lookup goes through the injected `StationDirectory`; when it is
unreachable a small built-in station list is used and confidence is reduced.
Prediction tables (high/low turning points plus hourly heights) are cached per
station per hourly bucket. When no station or no prediction is available the
depth is returned unchanged with confidence 0 and an explanatory note, so a
missing correction is always visible to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from soundings.config import TideConfig
from soundings.errors import InsufficientData, ValidationError
from soundings.models.depth_models import as_utc, utcnow
from soundings.models.geo_models import GeoPoint
from soundings.models.tide_models import StationMatch, TideCorrection, TideEvent, TidePrediction, TideStatus
from soundings.services.cache import TTLCache
from soundings.services.confidence import TideFactors, tide_confidence
from soundings.services.resilience import RetryPolicy, call_upstream
from soundings.services.tide_source import FALLBACK_STATIONS, StationDirectory, TideSource, closest_station

log = logging.getLogger("soundings.tide_engine")

TREND_LOOKAHEAD = timedelta(minutes=15)
SLACK_THRESHOLD_M = 0.02


def hour_bucket(ts: datetime) -> datetime:
    return as_utc(ts).replace(minute=0, second=0, microsecond=0)


def interpolate_level(predictions: Sequence[TidePrediction], timestamp: datetime) -> Optional[float]:
    """
    Water level at `timestamp` from samples sorted by time.

    Exact sample → its height; bracketing samples → linear interpolation;
    only one side available → that sample; no samples → None.
    """
    ts = as_utc(timestamp)
    before: Optional[TidePrediction] = None
    after: Optional[TidePrediction] = None
    for p in predictions:
        if p.timestamp <= ts:
            before = p
        else:
            after = p
            break

    if before is None and after is None:
        return None
    if before is None:
        return after.height_m
    if after is None or before.timestamp == ts:
        return before.height_m

    span = (after.timestamp - before.timestamp).total_seconds()
    if span <= 0:
        return before.height_m
    ratio = (ts - before.timestamp).total_seconds() / span
    return before.height_m + (after.height_m - before.height_m) * ratio


@dataclass(frozen=True)
class ResolvedTide:
    """Tide state for one place and time, reusable across many depths."""

    match: Optional[StationMatch]
    level_m: Optional[float]
    correction_m: float
    confidence: float
    notes: str

    def apply(self, depth_m: float) -> TideCorrection:
        if self.level_m is None:
            corrected = depth_m
        else:
            corrected = max(0.0, depth_m - self.correction_m)
        return TideCorrection(
            original_depth_m=depth_m,
            corrected_depth_m=corrected,
            correction_m=self.correction_m,
            tide_level_m=self.level_m,
            confidence=self.confidence,
            station=self.match.station if self.match else None,
            station_distance_m=self.match.distance_m if self.match else None,
            degraded=bool(self.match and self.match.degraded),
            notes=self.notes,
        )


class TideCorrectionEngine:
    def __init__(
        self,
        source: TideSource,
        directory: Optional[StationDirectory] = None,
        cache: Optional[TTLCache] = None,
        config: Optional[TideConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.directory = directory
        self.config = config or TideConfig()
        self.cache = cache or TTLCache(max_entries=self.config.cache_max_entries)
        self.policy = RetryPolicy.from_config(self.config.retry)
        self._clock = clock

    # ── stations ─────────────────────────────────────────────────────────────

    async def nearest_station(
        self, location: GeoPoint, max_distance_m: Optional[float] = None
    ) -> Optional[StationMatch]:
        max_d = self.config.max_station_distance_m if max_distance_m is None else max_distance_m
        if self.directory is not None:
            result = await call_upstream(
                "station_directory",
                lambda: self.directory.nearest(location, max_d),
                self.policy,
            )
            if result.ok:
                return result.value
            log.warning("Station directory unavailable (%s); using fallback stations", result.error.reason)

        match = closest_station(FALLBACK_STATIONS, location, max_d)
        if match is None:
            return None
        return match.model_copy(update={"degraded": True})

    # ── prediction tables ────────────────────────────────────────────────────

    async def _fetch_table(self, station_id: str, begin: datetime, end: datetime) -> Optional[List[TidePrediction]]:
        hilo, hourly = await asyncio.gather(
            call_upstream("noaa", lambda: self.source.predictions(station_id, begin, end, "hilo"), self.policy),
            call_upstream("noaa", lambda: self.source.predictions(station_id, begin, end, "60"), self.policy),
        )
        if not hilo.ok and not hourly.ok:
            log.warning("No tide predictions for station %s: %s", station_id, hourly.error.reason)
            return None
        merged: List[TidePrediction] = []
        for result in (hilo, hourly):
            if result.ok:
                merged.extend(result.value)
        merged.sort(key=lambda p: p.timestamp)
        return merged

    async def predictions_for(self, station_id: str, timestamp: datetime) -> Optional[List[TidePrediction]]:
        bucket = hour_bucket(timestamp)
        window = timedelta(hours=self.config.window_hours)
        return await self.cache.get_or_load(
            ("tide_table", station_id, bucket),
            lambda: self._fetch_table(station_id, bucket - window, bucket + window + timedelta(hours=1)),
            ttl_seconds=self.config.table_ttl_seconds,
            should_cache=lambda table: table is not None,
        )

    async def level_at(self, station_id: str, timestamp: datetime) -> Optional[float]:
        table = await self.predictions_for(station_id, timestamp)
        if not table:
            return None
        return interpolate_level(table, timestamp)

    # ── correction ───────────────────────────────────────────────────────────

    async def resolve(self, location: GeoPoint, timestamp: Optional[datetime] = None) -> ResolvedTide:
        ts = as_utc(timestamp or self._clock())
        match = await self.nearest_station(location)
        if match is None:
            return ResolvedTide(None, None, 0.0, 0.0, "No tide station available within range")

        level = await self.level_at(match.station.id, ts)
        if level is None:
            return ResolvedTide(match, None, 0.0, 0.0, "Tide data unavailable for this time")

        correction = level - match.station.chart_datum_offset_m
        confidence = tide_confidence(TideFactors(
            station_distance_m=match.distance_m,
            correction_m=correction,
            tide_level_m=level,
            degraded_station=match.degraded,
            degraded_factor=self.config.degraded_station_factor,
        ))
        notes = f"Tide correction: {'+' if correction > 0 else ''}{correction:.2f}m"
        if match.distance_m > 10000:
            notes += f" (station {match.distance_m / 1000:.1f}km away)"
        if match.degraded:
            notes += " [fallback station list]"
        return ResolvedTide(match, level, correction, confidence, notes)

    async def correct(
        self, depth_m: float, location: GeoPoint, timestamp: Optional[datetime] = None
    ) -> TideCorrection:
        if not math.isfinite(depth_m) or depth_m < 0:
            raise ValidationError(f"depth must be a finite number >= 0: {depth_m}")
        resolved = await self.resolve(location, timestamp)
        result = resolved.apply(depth_m)
        log.debug(
            "Tide correction at (%.5f, %.5f): %.2f -> %.2f (confidence %.2f)",
            location.lat, location.lon, depth_m, result.corrected_depth_m, result.confidence,
        )
        return result

    # ── live level ───────────────────────────────────────────────────────────

    async def tide_status(self, location: GeoPoint, now: Optional[datetime] = None) -> TideStatus:
        """Current level, trend and next high/low at the nearest station. Raises InsufficientData when unknown."""
        now = as_utc(now or self._clock())
        match = await self.nearest_station(location)
        if match is None:
            raise InsufficientData("No tide station within range")

        bucket = now.replace(minute=(now.minute // 15) * 15, second=0, microsecond=0)
        table = await self.cache.get_or_load(
            ("tide_live", match.station.id, bucket),
            lambda: self._fetch_table(match.station.id, now - timedelta(hours=1), now + timedelta(hours=12)),
            ttl_seconds=self.config.live_level_ttl_seconds,
            should_cache=lambda t: t is not None,
        )
        if not table:
            raise InsufficientData("Tide predictions unavailable")

        level = interpolate_level(table, now)
        if level is None:
            raise InsufficientData("Tide predictions unavailable")
        later = interpolate_level(table, now + TREND_LOOKAHEAD)
        if later is None or abs(later - level) < SLACK_THRESHOLD_M:
            trend = "slack"
        else:
            trend = "rising" if later > level else "falling"

        def _next(kind: str) -> Optional[TideEvent]:
            for p in table:
                if p.kind == kind and p.timestamp > now:
                    return TideEvent(timestamp=p.timestamp, height_m=p.height_m)
            return None

        return TideStatus(
            station=match.station,
            station_distance_m=match.distance_m,
            current_level_m=level,
            next_high=_next("high"),
            next_low=_next("low"),
            trend=trend,
            confidence=tide_confidence(TideFactors(
                station_distance_m=match.distance_m,
                correction_m=0.0,
                tide_level_m=level,
                degraded_station=match.degraded,
                degraded_factor=self.config.degraded_station_factor,
            )),
            predictions=table,
        )

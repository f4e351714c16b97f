"""
Depth Aggregation Store
=======================
Ingests crowdsourced soundings, snaps them to a fixed-resolution grid and keeps
one running confidence-weighted estimate per cell.

Merging
-------
Each observation is weighted by its intrinsic confidence (equipment,
experience, device accuracy, submitter-declared verification). The cell mean
and variance are maintained with the weighted form of Welford's algorithm, so
with equal weights the mean reduces to (oldMean*n + value)/(n+1) and the final
estimate does not depend on arrival order.

Cells are replaced copy-on-write under a per-cell lock: submissions to one
cell serialise, submissions to different cells never wait on each other, and
readers always see a consistent cell.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Union

from soundings.config import AggregationConfig
from soundings.errors import ValidationError
from soundings.models.depth_models import (
    AggregatedCell,
    DepthObservation,
    DepthReading,
    HazardCandidate,
    SafeReading,
    StoredObservation,
    SubmissionResult,
    as_utc,
    utcnow,
)
from soundings.models.geo_models import Bounds, GeoPoint
from soundings.services.confidence import (
    CellFactors,
    ObservationFactors,
    cell_confidence,
    confidence_label,
    observation_confidence,
)
from soundings.services.repository import DepthRepository, InMemoryDepthRepository
from soundings.utils.geo import GridSnapper, haversine_m

log = logging.getLogger("soundings.depth_store")

MAX_DEPTH_M = 11000.0
MAX_DRAFT_M = 50.0
MIN_WEIGHT = 0.01
PEER_TOLERANCE_M = 0.5
PEER_TOLERANCE_RATIO = 0.10

HazardListener = Callable[[HazardCandidate], None]
SafeReadingListener = Callable[[SafeReading], None]


def validate_observation(obs: DepthObservation) -> None:
    lat, lon = obs.location.lat, obs.location.lon
    for name, value in (
        ("lat", lat),
        ("lon", lon),
        ("depth_m", obs.depth_m),
        ("vessel_draft_m", obs.vessel_draft_m),
        ("device_accuracy_m", obs.device_accuracy_m),
    ):
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be a finite number: {value}")
    if not (-90.0 <= lat <= 90.0):
        raise ValidationError(f"lat out of range [-90,90]: {lat}")
    if not (-180.0 <= lon <= 180.0):
        raise ValidationError(f"lon out of range [-180,180]: {lon}")
    if not (0.0 <= obs.depth_m <= MAX_DEPTH_M):
        raise ValidationError(f"depth out of range [0,{MAX_DEPTH_M:.0f}] m: {obs.depth_m}")
    if not (0.0 < obs.vessel_draft_m <= MAX_DRAFT_M):
        raise ValidationError(f"draft out of range (0,{MAX_DRAFT_M:.0f}] m: {obs.vessel_draft_m}")
    if obs.device_accuracy_m < 0:
        raise ValidationError(f"device accuracy must be >= 0: {obs.device_accuracy_m}")


def to_reading(cell: AggregatedCell) -> DepthReading:
    return DepthReading(
        cell_key=cell.cell_key,
        location=cell.center,
        depth_m=cell.depth_m,
        measurement_count=cell.measurement_count,
        standard_deviation=cell.standard_deviation,
        confidence=cell.confidence,
        confidence_label=confidence_label(cell.confidence),
        distinct_reporters=len(cell.reporters),
        first_seen=cell.first_seen,
        last_seen=cell.last_seen,
    )


class DepthAggregationStore:
    def __init__(
        self,
        config: Optional[AggregationConfig] = None,
        repository: Optional[DepthRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or AggregationConfig()
        self.grid = GridSnapper(self.config.cell_size_m)
        self.repository: DepthRepository = repository or InMemoryDepthRepository()
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._hazard_listeners: List[HazardListener] = []
        self._safe_listeners: List[SafeReadingListener] = []

    # ── listeners ────────────────────────────────────────────────────────────

    def add_hazard_listener(self, listener: HazardListener) -> None:
        self._hazard_listeners.append(listener)

    def add_safe_reading_listener(self, listener: SafeReadingListener) -> None:
        self._safe_listeners.append(listener)

    # ── ingest ───────────────────────────────────────────────────────────────

    def _lock_for(self, cell_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(cell_key)
            if lock is None:
                lock = self._locks[cell_key] = threading.Lock()
            return lock

    def submit(self, obs: DepthObservation) -> SubmissionResult:
        validate_observation(obs)
        cell_key = self.grid.key(obs.location.lat, obs.location.lon)

        with self._lock_for(cell_key):
            existing = self.repository.get_cell(cell_key)
            peer = obs.peer_verified or self._has_agreeing_peer(existing, obs)
            confidence = observation_confidence(ObservationFactors(
                source_equipment=obs.source_equipment,
                reporter_experience=obs.reporter_experience,
                device_accuracy_m=obs.device_accuracy_m,
                peer_verified=peer,
            ))
            # Merge weight ignores peer status so the mean is arrival-order independent.
            weight = max(MIN_WEIGHT, observation_confidence(ObservationFactors(
                source_equipment=obs.source_equipment,
                reporter_experience=obs.reporter_experience,
                device_accuracy_m=obs.device_accuracy_m,
                peer_verified=obs.peer_verified,
            )))
            stored = StoredObservation(
                id=str(uuid.uuid4()),
                observation=obs,
                confidence=confidence,
                cell_key=cell_key,
                received_at=self._clock(),
            )
            cell = self._merge(existing, cell_key, obs, weight, confidence)
            cell, signal = self._hazard_transition(cell)
            self.repository.add_observation(stored)
            self.repository.put_cell(cell)

        if obs.depth_m < obs.vessel_draft_m:
            log.warning(
                "Depth reading below reporting vessel draft: cell=%s depth=%.2f draft=%.2f",
                cell_key, obs.depth_m, obs.vessel_draft_m,
            )
        self._emit(signal)

        log.info(
            "Depth reading submitted: id=%s cell=%s depth=%.2f confidence=%.2f cell_confidence=%.2f n=%d",
            stored.id, cell_key, obs.depth_m, confidence, cell.confidence, cell.measurement_count,
        )
        return SubmissionResult(
            id=stored.id,
            confidence=confidence,
            cell_key=cell_key,
            cell_confidence=cell.confidence,
            hazard_candidate=isinstance(signal, HazardCandidate),
        )

    @staticmethod
    def _has_agreeing_peer(cell: Optional[AggregatedCell], obs: DepthObservation) -> bool:
        if cell is None or not (cell.reporters - {obs.reporter_id}):
            return False
        tolerance = max(PEER_TOLERANCE_M, PEER_TOLERANCE_RATIO * obs.depth_m)
        return abs(cell.depth_m - obs.depth_m) <= tolerance

    def _merge(
        self,
        cell: Optional[AggregatedCell],
        cell_key: str,
        obs: DepthObservation,
        weight: float,
        confidence: float,
    ) -> AggregatedCell:
        value = obs.depth_m
        if cell is None:
            row, col = self.grid.parse_key(cell_key)
            lat, lon = self.grid.center(row, col)
            reporters = {obs.reporter_id}
            return AggregatedCell(
                cell_key=cell_key,
                center=GeoPoint(lat=lat, lon=lon),
                depth_m=value,
                measurement_count=1,
                standard_deviation=0.0,
                confidence=cell_confidence(CellFactors(
                    mean_observation_confidence=confidence,
                    distinct_reporters=1,
                    standard_deviation=0.0,
                    depth_m=value,
                )),
                first_seen=obs.timestamp,
                last_seen=obs.timestamp,
                weight_sum=weight,
                m2=0.0,
                observation_confidence_sum=confidence,
                reporters=reporters,
            )

        weight_sum = cell.weight_sum + weight
        delta = value - cell.depth_m
        mean = cell.depth_m + (weight / weight_sum) * delta
        m2 = max(0.0, cell.m2 + weight * delta * (value - mean))
        std = math.sqrt(m2 / weight_sum)
        count = cell.measurement_count + 1
        conf_sum = cell.observation_confidence_sum + confidence
        reporters = cell.reporters | {obs.reporter_id}

        return cell.model_copy(update={
            "depth_m": mean,
            "measurement_count": count,
            "standard_deviation": std,
            "confidence": cell_confidence(CellFactors(
                mean_observation_confidence=conf_sum / count,
                distinct_reporters=len(reporters),
                standard_deviation=std,
                depth_m=mean,
            )),
            "first_seen": min(cell.first_seen, obs.timestamp),
            "last_seen": max(cell.last_seen, obs.timestamp),
            "weight_sum": weight_sum,
            "m2": m2,
            "observation_confidence_sum": conf_sum,
            "reporters": reporters,
        })

    def _hazard_transition(
        self, cell: AggregatedCell
    ) -> Tuple[AggregatedCell, Union[HazardCandidate, SafeReading, None]]:
        shallow = cell.depth_m < self.config.shallow_threshold_m
        if shallow and cell.measurement_count >= self.config.hazard_min_measurements:
            candidate = HazardCandidate(
                cell_key=cell.cell_key,
                location=cell.center,
                depth_m=cell.depth_m,
                measurement_count=cell.measurement_count,
                confidence=cell.confidence,
                detected_at=self._clock(),
            )
            return cell.model_copy(update={"hazard_flagged": True}), candidate
        if cell.hazard_flagged and not shallow:
            safe = SafeReading(
                cell_key=cell.cell_key,
                location=cell.center,
                depth_m=cell.depth_m,
                detected_at=self._clock(),
            )
            return cell.model_copy(update={"hazard_flagged": False}), safe
        return cell, None

    def _emit(self, signal: Union[HazardCandidate, SafeReading, None]) -> None:
        if signal is None:
            return
        if isinstance(signal, HazardCandidate):
            log.warning(
                "Shallow hazard candidate: cell=%s depth=%.2f n=%d confidence=%.2f",
                signal.cell_key, signal.depth_m, signal.measurement_count, signal.confidence,
            )
            listeners = self._hazard_listeners
        else:
            log.info("Cell back above shallow threshold: cell=%s depth=%.2f", signal.cell_key, signal.depth_m)
            listeners = self._safe_listeners
        for listener in listeners:
            try:
                listener(signal)
            except Exception:
                log.exception("Hazard listener failed for cell %s", signal.cell_key)

    # ── queries ──────────────────────────────────────────────────────────────

    def get_cell(self, cell_key: str) -> Optional[AggregatedCell]:
        return self.repository.get_cell(cell_key)

    def get_observations(self, cell_key: str) -> List[StoredObservation]:
        return self.repository.observations_for_cell(cell_key)

    def cell_key_for(self, lat: float, lon: float) -> str:
        return self.grid.key(lat, lon)

    def query_area(
        self,
        bounds: Bounds,
        max_age_hours: Optional[float] = None,
        min_confidence: float = 0.0,
        now: Optional[datetime] = None,
    ) -> List[DepthReading]:
        now = as_utc(now or self._clock())
        age = max_age_hours if max_age_hours is not None else self.config.max_age_hours_default
        oldest = now - timedelta(hours=age)

        matches = [
            c for c in self.repository.all_cells()
            if bounds.contains(c.center.lat, c.center.lon)
            and c.last_seen >= oldest
            and c.confidence >= min_confidence
        ]
        matches.sort(key=lambda c: (c.confidence, c.last_seen), reverse=True)

        cap = self.config.max_query_results
        if len(matches) > cap:
            log.debug("query_area truncated %d cells to %d", len(matches), cap)
            matches = matches[:cap]
        return [to_reading(c) for c in matches]

    def cells_near(self, lat: float, lon: float, radius_m: float) -> List[Tuple[AggregatedCell, float]]:
        """Cells whose centre lies within radius_m of (lat, lon), with distances."""
        out: List[Tuple[AggregatedCell, float]] = []
        for cell in self.repository.get_cells(self.grid.keys_within(lat, lon, radius_m)):
            d = haversine_m(lat, lon, cell.center.lat, cell.center.lon)
            if d <= radius_m:
                out.append((cell, d))
        return out

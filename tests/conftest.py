"""
Shared fakes for the soundings test-suite.

Upstream collaborators are replaced by in-process fakes; nothing here touches
the network.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

os.environ.setdefault("SOUNDINGS_ENV", "test")

from soundings.config import AggregationConfig, RetryConfig, TideConfig
from soundings.errors import UpstreamUnavailable
from soundings.models.depth_models import DepthEstimate, DepthObservation
from soundings.models.geo_models import GeoPoint
from soundings.models.tide_models import StationMatch, TidePrediction, TideStation
from soundings.services.depth_store import DepthAggregationStore
from soundings.services.interpolator import DepthFieldInterpolator
from soundings.services.tide_engine import TideCorrectionEngine
from soundings.services.tide_source import StaticStationDirectory
from soundings.utils.geo import METERS_PER_DEG_LAT, meters_per_deg_lon

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ORIGIN = GeoPoint(lat=37.80, lon=-122.40)
STATION = TideStation(
    id="TEST1",
    name="Test Harbour",
    location=GeoPoint(lat=37.81, lon=-122.41),
    chart_datum_offset_m=0.0,
)


def hourly(level: float, around: datetime = NOW, hours: int = 24, station_id: str = "TEST1") -> List[TidePrediction]:
    base = around.replace(minute=0, second=0, microsecond=0)
    return [
        TidePrediction(station_id=station_id, timestamp=base + timedelta(hours=h), height_m=level)
        for h in range(-hours, hours + 1)
    ]


class FakeTideSource:
    def __init__(
        self,
        hourly_table: Optional[List[TidePrediction]] = None,
        hilo_table: Optional[List[TidePrediction]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.hourly_table = hourly_table if hourly_table is not None else hourly(0.0)
        self.hilo_table = hilo_table or []
        self.fail = fail
        self.delay = delay
        self.calls: List[tuple] = []

    async def predictions(self, station_id, begin, end, interval):
        self.calls.append((station_id, interval, begin, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamUnavailable("fake", "tide source down")
        table = self.hilo_table if interval == "hilo" else self.hourly_table
        return [p for p in table if begin <= p.timestamp <= end]


class FailingDirectory:
    async def nearest(self, location, max_distance_m) -> Optional[StationMatch]:
        raise UpstreamUnavailable("directory", "station directory down")


class FakeField:
    """DepthLookup over a plain function of local east/north metres from ORIGIN."""

    def __init__(self, depth_fn: Callable[[float, float], Optional[float]], origin: GeoPoint = ORIGIN,
                 confidence: float = 0.9):
        self.depth_fn = depth_fn
        self.origin = origin
        self.confidence = confidence
        self.calls = 0

    def xy(self, lat: float, lon: float):
        return (
            (lon - self.origin.lon) * meters_per_deg_lon(self.origin.lat),
            (lat - self.origin.lat) * METERS_PER_DEG_LAT,
        )

    def estimate(self, lat: float, lon: float) -> Optional[DepthEstimate]:
        self.calls += 1
        depth = self.depth_fn(*self.xy(lat, lon))
        if depth is None:
            return None
        return DepthEstimate(
            location=GeoPoint(lat=lat, lon=lon),
            depth_m=depth,
            raw_depth_m=depth,
            confidence=self.confidence,
            confidence_label="high",
            spatial_confidence=self.confidence,
            tide_confidence=1.0,
            cell_count=1,
        )


def offset(origin: GeoPoint, east_m: float, north_m: float) -> GeoPoint:
    return GeoPoint(
        lat=origin.lat + north_m / METERS_PER_DEG_LAT,
        lon=origin.lon + east_m / meters_per_deg_lon(origin.lat),
    )


def sounding(point: GeoPoint, depth: float, reporter: str = "alice", **kw) -> DepthObservation:
    fields = dict(
        location=point,
        depth_m=depth,
        vessel_draft_m=1.5,
        timestamp=NOW,
        source_equipment="sonar",
        reporter_id=reporter,
    )
    fields.update(kw)
    return DepthObservation(**fields)


@pytest.fixture
def store():
    return DepthAggregationStore(AggregationConfig(cell_size_m=50.0), clock=lambda: NOW)


@pytest.fixture
def cell_center(store):
    row, col = store.grid.cell_index(ORIGIN.lat, ORIGIN.lon)
    lat, lon = store.grid.center(row, col)
    return GeoPoint(lat=lat, lon=lon)


@pytest.fixture
def tide_source():
    return FakeTideSource()


@pytest.fixture
def directory():
    return StaticStationDirectory([STATION])


@pytest.fixture
def tide_config():
    return TideConfig(retry=RetryConfig(timeout_seconds=1.0, max_attempts=1, backoff_seconds=[0.0]))


@pytest.fixture
def engine(tide_source, directory, tide_config):
    return TideCorrectionEngine(tide_source, directory, config=tide_config, clock=lambda: NOW)


@pytest.fixture
def interpolator(store, engine):
    return DepthFieldInterpolator(store, engine)

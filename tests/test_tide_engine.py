"""Tide Correction Engine: interpolation, correction, degradation, caching."""

from datetime import timedelta

import pytest

from conftest import NOW, ORIGIN, STATION, FailingDirectory, FakeTideSource, hourly
from soundings.config import RetryConfig, TideConfig
from soundings.errors import InsufficientData, UpstreamUnavailable, ValidationError
from soundings.models.geo_models import GeoPoint
from soundings.models.tide_models import TidePrediction
from soundings.services.tide_engine import TideCorrectionEngine, interpolate_level
from soundings.services.tide_source import StaticStationDirectory, parse_noaa_predictions


def pred(minutes: float, height: float, kind: str = "interpolated") -> TidePrediction:
    return TidePrediction(station_id="TEST1", timestamp=NOW + timedelta(minutes=minutes), height_m=height, kind=kind)


# ══════════════════════════════════════════════════════════════════════════════
# Level interpolation
# ══════════════════════════════════════════════════════════════════════════════
class TestInterpolateLevel:

    def test_midpoint(self):
        """1.0 m and 2.0 m an hour apart → 1.5 m half way."""
        table = [pred(0, 1.0), pred(60, 2.0)]
        assert interpolate_level(table, NOW + timedelta(minutes=30)) == pytest.approx(1.5)

    def test_exact_sample(self):
        table = [pred(0, 1.0), pred(60, 2.0)]
        assert interpolate_level(table, NOW + timedelta(minutes=60)) == pytest.approx(2.0)

    def test_only_earlier_sample(self):
        assert interpolate_level([pred(0, 1.2)], NOW + timedelta(hours=1)) == pytest.approx(1.2)

    def test_only_later_sample(self):
        assert interpolate_level([pred(60, 0.7)], NOW) == pytest.approx(0.7)

    def test_empty(self):
        assert interpolate_level([], NOW) is None

    def test_naive_timestamp_treated_as_utc(self):
        table = [pred(0, 1.0), pred(60, 2.0)]
        naive = (NOW + timedelta(minutes=15)).replace(tzinfo=None)
        assert interpolate_level(table, naive) == pytest.approx(1.25)


# ══════════════════════════════════════════════════════════════════════════════
# Correction
# ══════════════════════════════════════════════════════════════════════════════
class TestCorrect:

    def _engine(self, level, directory=None, **kw):
        source = FakeTideSource(hourly_table=hourly(level))
        config = TideConfig(retry=RetryConfig(timeout_seconds=1.0, max_attempts=1, backoff_seconds=[0.0]))
        return TideCorrectionEngine(source, directory or StaticStationDirectory([STATION]),
                                    config=config, clock=lambda: NOW, **kw), source

    async def test_positive_correction(self):
        engine, _ = self._engine(2.0)
        result = await engine.correct(10.0, ORIGIN, NOW)
        assert result.corrected_depth_m == pytest.approx(8.0)
        assert result.correction_m == pytest.approx(2.0)
        assert result.station.id == "TEST1"
        assert result.confidence == pytest.approx(0.7)

    async def test_clamped_at_zero(self):
        engine, _ = self._engine(3.0)
        result = await engine.correct(1.0, ORIGIN, NOW)
        assert result.corrected_depth_m == 0.0

    async def test_chart_datum_offset(self):
        station = STATION.model_copy(update={"chart_datum_offset_m": 0.5})
        engine, _ = self._engine(1.0, directory=StaticStationDirectory([station]))
        result = await engine.correct(5.0, ORIGIN, NOW)
        assert result.correction_m == pytest.approx(0.5)
        assert result.corrected_depth_m == pytest.approx(4.5)

    async def test_no_station_in_range(self):
        engine, source = self._engine(2.0)
        result = await engine.correct(10.0, GeoPoint(lat=0.0, lon=0.0), NOW)
        assert result.corrected_depth_m == 10.0
        assert result.confidence == 0.0
        assert result.station is None
        assert "No tide station" in result.notes
        assert source.calls == []

    async def test_rejects_negative_depth(self):
        engine, _ = self._engine(0.0)
        with pytest.raises(ValidationError):
            await engine.correct(-1.0, ORIGIN, NOW)

    async def test_directory_outage_uses_fallback_list(self):
        engine, _ = self._engine(0.0, directory=FailingDirectory())
        near_sf = GeoPoint(lat=37.78, lon=-122.42)
        result = await engine.correct(6.0, near_sf, NOW)
        assert result.degraded
        assert result.station.id == "9414290"
        assert result.confidence == pytest.approx(0.8)
        assert "fallback" in result.notes

    async def test_source_timeout_degrades_to_zero_confidence(self):
        source = FakeTideSource(delay=0.5)
        config = TideConfig(retry=RetryConfig(timeout_seconds=0.05, max_attempts=1, backoff_seconds=[0.0]))
        engine = TideCorrectionEngine(source, StaticStationDirectory([STATION]), config=config, clock=lambda: NOW)
        result = await engine.correct(7.0, ORIGIN, NOW)
        assert result.corrected_depth_m == 7.0
        assert result.confidence == 0.0
        assert result.tide_level_m is None

    async def test_source_error_degrades(self):
        source = FakeTideSource(fail=True)
        engine = TideCorrectionEngine(source, StaticStationDirectory([STATION]), clock=lambda: NOW,
                                      config=TideConfig(retry=RetryConfig(max_attempts=1, backoff_seconds=[0.0])))
        result = await engine.correct(7.0, ORIGIN, NOW)
        assert result.confidence == 0.0
        assert "unavailable" in result.notes

    async def test_unexpected_source_error_degrades(self):
        class ResetSource(FakeTideSource):
            async def predictions(self, station_id, begin, end, interval):
                raise ConnectionError("socket reset")

        engine = TideCorrectionEngine(ResetSource(), StaticStationDirectory([STATION]), clock=lambda: NOW,
                                      config=TideConfig(retry=RetryConfig(max_attempts=1, backoff_seconds=[0.0])))
        result = await engine.correct(10.0, ORIGIN, NOW)
        assert result.corrected_depth_m == 10.0
        assert result.confidence == 0.0

    async def test_unexpected_directory_error_uses_fallback_list(self):
        class BrokenDirectory:
            async def nearest(self, location, max_distance_m):
                raise RuntimeError("directory returned garbage")

        engine, _ = self._engine(0.0, directory=BrokenDirectory())
        match = await engine.nearest_station(GeoPoint(lat=37.78, lon=-122.42))
        assert match.degraded
        assert match.station.id == "9414290"


# ══════════════════════════════════════════════════════════════════════════════
# Caching
# ══════════════════════════════════════════════════════════════════════════════
class TestTableCache:

    async def test_same_hour_loads_once(self, engine, tide_source):
        await engine.correct(5.0, ORIGIN, NOW)
        await engine.correct(6.0, ORIGIN, NOW + timedelta(minutes=20))
        assert len(tide_source.calls) == 2  # one hilo + one hourly request
        assert {c[1] for c in tide_source.calls} == {"hilo", "60"}

    async def test_next_hour_loads_again(self, engine, tide_source):
        await engine.correct(5.0, ORIGIN, NOW)
        await engine.correct(5.0, ORIGIN, NOW + timedelta(hours=1))
        assert len(tide_source.calls) == 4

    async def test_failed_load_not_cached(self, directory, tide_config):
        source = FakeTideSource(fail=True)
        engine = TideCorrectionEngine(source, directory, config=tide_config, clock=lambda: NOW)
        await engine.correct(5.0, ORIGIN, NOW)
        source.fail = False
        result = await engine.correct(5.0, ORIGIN, NOW)
        assert result.confidence == pytest.approx(1.0)


# ══════════════════════════════════════════════════════════════════════════════
# Live status
# ══════════════════════════════════════════════════════════════════════════════
class TestTideStatus:

    async def test_rising_with_next_turning_points(self, directory, tide_config):
        base = NOW.replace(minute=0)
        rising = [
            TidePrediction(station_id="TEST1", timestamp=base + timedelta(hours=h), height_m=0.2 * h)
            for h in range(-2, 13)
        ]
        hilo = [
            TidePrediction(station_id="TEST1", timestamp=base - timedelta(hours=4), height_m=-0.6, kind="low"),
            TidePrediction(station_id="TEST1", timestamp=base + timedelta(hours=3), height_m=1.8, kind="high"),
            TidePrediction(station_id="TEST1", timestamp=base + timedelta(hours=9), height_m=-0.4, kind="low"),
        ]
        engine = TideCorrectionEngine(FakeTideSource(hourly_table=rising, hilo_table=hilo), directory,
                                      config=tide_config, clock=lambda: NOW)
        status = await engine.tide_status(ORIGIN, NOW)
        assert status.trend == "rising"
        assert status.current_level_m == pytest.approx(0.0)
        assert status.next_high.height_m == pytest.approx(1.8)
        assert status.next_low.timestamp == base + timedelta(hours=9)
        assert status.station.id == "TEST1"

    async def test_no_station(self, engine):
        with pytest.raises(InsufficientData, match="station"):
            await engine.tide_status(GeoPoint(lat=0.0, lon=0.0), NOW)


# ══════════════════════════════════════════════════════════════════════════════
# NOAA payload parsing
# ══════════════════════════════════════════════════════════════════════════════
class TestNoaaPayload:

    def test_parses_turning_points(self):
        payload = {"predictions": [
            {"t": "2024-06-01 06:12", "v": "1.734", "type": "H"},
            {"t": "2024-06-01 12:40", "v": "-0.120", "type": "L"},
        ]}
        rows = parse_noaa_predictions("9414290", payload)
        assert [r.kind for r in rows] == ["high", "low"]
        assert rows[0].height_m == pytest.approx(1.734)
        assert rows[0].timestamp.tzinfo is not None

    def test_skips_malformed_rows(self):
        payload = {"predictions": [{"t": "2024-06-01 06:00", "v": "0.5"}, "junk", {"t": "bad", "v": "1"}]}
        assert len(parse_noaa_predictions("9414290", payload)) == 1

    @pytest.mark.parametrize("payload", [[], "maintenance", None, {"predictions": "none"}])
    def test_rejects_unexpected_bodies(self, payload):
        with pytest.raises(UpstreamUnavailable):
            parse_noaa_predictions("9414290", payload)

    def test_error_message_surfaces(self):
        with pytest.raises(UpstreamUnavailable, match="No Predictions data"):
            parse_noaa_predictions("9414290", {"error": {"message": "No Predictions data was found"}})

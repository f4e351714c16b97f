"""Safe Route Planner: navigability, A* search, budget and cancellation."""

import threading
import time

import pytest

from conftest import ORIGIN, FakeField, offset
from soundings.config import RoutingConfig
from soundings.errors import NoRouteFound, RouteSearchCancelled, ValidationError
from soundings.models.alert_models import AlertCandidate
from soundings.models.route_models import RouteRequest
from soundings.models.vessel_models import Vessel
from soundings.services import route_planner
from soundings.services.alert_hierarchy import SafetyAlertHierarchy
from soundings.services.route_planner import SafeRoutePlanner

VESSEL = Vessel(draft_m=2.0, safety_margin_m=1.0)
END = offset(ORIGIN, 1000, 0)


def wall(x_from, x_to, y_from, y_to, limit=800.0):
    """Open water with a drying shoal; nothing is known beyond `limit` metres north/south."""
    def depth(x, y):
        if abs(y) > limit:
            return None
        if x_from <= x <= x_to and y_from <= y <= y_to:
            return 1.0
        return 10.0
    return depth


def assert_all_navigable(field, result):
    for w in result.waypoints:
        est = field.estimate(w.lat, w.lon)
        assert est is not None
        assert est.depth_m > VESSEL.required_depth_m
        assert w.clearance_m > 0


# ══════════════════════════════════════════════════════════════════════════════
# Search
# ══════════════════════════════════════════════════════════════════════════════
class TestPlan:

    def test_open_water_runs_straight(self):
        field = FakeField(lambda x, y: 10.0)
        result = SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)
        assert result.waypoints[0].lat == ORIGIN.lat and result.waypoints[0].lon == ORIGIN.lon
        assert result.waypoints[-1].lat == END.lat and result.waypoints[-1].lon == END.lon
        assert result.total_distance_m == pytest.approx(1000.0, rel=0.02)
        assert result.min_clearance_m == pytest.approx(7.0)
        assert result.safety_score == pytest.approx(1.0)
        assert_all_navigable(field, result)

    def test_diagonal_leg_uses_diagonal_steps(self):
        field = FakeField(lambda x, y: 10.0)
        end = offset(ORIGIN, 500, 500)
        result = SafeRoutePlanner().plan(field, ORIGIN, end, VESSEL)
        assert len(result.waypoints) == 6
        assert result.total_distance_m == pytest.approx(500 * 2 ** 0.5, rel=0.02)
        assert result.waypoints[1].seg_dist_m == pytest.approx(100 * 2 ** 0.5, rel=0.02)
        assert result.waypoints[0].bearing_deg_true == pytest.approx(45.0, abs=0.5)

    def test_detours_around_shoal(self):
        field = FakeField(wall(400, 600, -300, 250))
        result = SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)
        assert_all_navigable(field, result)
        norths = [field.xy(w.lat, w.lon)[1] for w in result.waypoints]
        assert max(norths) > 250
        assert result.total_distance_m > 1000.0

    def test_never_uses_unknown_water(self):
        def depth(x, y):
            if 300 <= x <= 700 and -50 <= y <= 50:
                return None
            return 8.0
        field = FakeField(depth)
        result = SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)
        assert_all_navigable(field, result)

    def test_waypoint_bookkeeping(self):
        field = FakeField(wall(400, 600, -300, 250))
        result = SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)
        assert [w.i for w in result.waypoints] == list(range(len(result.waypoints)))
        cums = [w.cum_dist_m for w in result.waypoints]
        assert cums == sorted(cums)
        assert cums[-1] == pytest.approx(sum(w.seg_dist_m for w in result.waypoints))
        assert all(0.0 <= w.bearing_deg_true < 360.0 for w in result.waypoints)
        assert result.bbox_wgs84.min_lat <= ORIGIN.lat <= result.bbox_wgs84.max_lat

    def test_start_equals_end(self):
        field = FakeField(lambda x, y: 10.0)
        result = SafeRoutePlanner().plan(field, ORIGIN, ORIGIN, VESSEL)
        assert len(result.waypoints) == 2
        assert result.total_distance_m == pytest.approx(0.0)


# ══════════════════════════════════════════════════════════════════════════════
# Failure modes
# ══════════════════════════════════════════════════════════════════════════════
class TestNoRoute:

    def test_blocked_channel(self):
        field = FakeField(wall(400, 600, -5000, 5000))
        with pytest.raises(NoRouteFound) as exc:
            SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)
        assert exc.value.nodes_expanded > 0

    def test_start_not_navigable(self):
        field = FakeField(lambda x, y: 2.0 if abs(x) < 10 else 10.0)
        with pytest.raises(NoRouteFound, match="Start"):
            SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)

    def test_end_unknown(self):
        field = FakeField(lambda x, y: None if x > 900 else 10.0)
        with pytest.raises(NoRouteFound, match="End"):
            SafeRoutePlanner().plan(field, ORIGIN, END, VESSEL)

    def test_expansion_budget(self):
        field = FakeField(wall(400, 600, -300, 250))
        planner = SafeRoutePlanner(config=RoutingConfig(max_expansions=3))
        with pytest.raises(NoRouteFound, match="budget"):
            planner.plan(field, ORIGIN, END, VESSEL)

    def test_cancel_event(self, monkeypatch):
        monkeypatch.setattr(route_planner, "CANCEL_CHECK_EVERY", 1)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RouteSearchCancelled):
            SafeRoutePlanner().plan(FakeField(lambda x, y: 10.0), ORIGIN, END, VESSEL, cancel)

    def test_route_too_long(self):
        far = offset(ORIGIN, 600_000, 0)
        with pytest.raises(ValidationError):
            SafeRoutePlanner().plan(FakeField(lambda x, y: 10.0), ORIGIN, far, VESSEL)


# ══════════════════════════════════════════════════════════════════════════════
# Async entry point and hazard warnings
# ══════════════════════════════════════════════════════════════════════════════
class FieldInterpolator:
    def __init__(self, field):
        self.field = field

    async def snapshot(self, center, timestamp=None):
        return self.field


class TestPlanRoute:

    async def test_returns_route(self):
        planner = SafeRoutePlanner(FieldInterpolator(FakeField(lambda x, y: 10.0)))
        result = await planner.plan_route(RouteRequest(start=ORIGIN, end=END, vessel=VESSEL))
        assert len(result.waypoints) >= 2

    async def test_timeout_cancels_search(self, monkeypatch):
        monkeypatch.setattr(route_planner, "CANCEL_CHECK_EVERY", 1)

        def slow(x, y):
            time.sleep(0.005)
            return 10.0

        planner = SafeRoutePlanner(FieldInterpolator(FakeField(slow)), config=RoutingConfig(timeout_seconds=0.05))
        far = offset(ORIGIN, 20_000, 0)
        with pytest.raises(RouteSearchCancelled):
            await planner.plan_route(RouteRequest(start=ORIGIN, end=far, vessel=VESSEL))

    async def test_invalid_timestamp(self):
        planner = SafeRoutePlanner(FieldInterpolator(FakeField(lambda x, y: 10.0)))
        with pytest.raises(ValidationError):
            await planner.plan_route(RouteRequest(start=ORIGIN, end=END, vessel=VESSEL, timestamp="yesterday"))

    def test_hazard_warnings_in_corridor(self):
        alerts = SafetyAlertHierarchy()
        near = alerts.raise_alert(AlertCandidate(severity="caution", category="shallow_water",
                                                 location=offset(ORIGIN, 500, 100)))
        alerts.raise_alert(AlertCandidate(severity="caution", category="shallow_water",
                                          location=offset(ORIGIN, 500, 3000)))
        planner = SafeRoutePlanner(hierarchy=alerts)
        result = planner.plan(FakeField(lambda x, y: 10.0), ORIGIN, END, VESSEL)
        assert [a.id for a in result.hazard_warnings] == [near]

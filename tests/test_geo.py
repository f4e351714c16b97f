"""Geodesy helpers and the fixed-resolution grid."""

import math

import pytest

from soundings.utils.geo import (
    GridSnapper,
    bbox_wgs84,
    bearing_deg_true,
    destination_point,
    haversine_m,
    meters_per_deg_lon,
)


# ══════════════════════════════════════════════════════════════════════════════
# Distances and bearings
# ══════════════════════════════════════════════════════════════════════════════
class TestGreatCircle:

    def test_zero_distance(self):
        assert haversine_m(37.8, -122.4, 37.8, -122.4) == 0.0

    def test_one_degree_of_latitude(self):
        """1° of latitude on a 6371 km sphere ≈ 111,195 m."""
        assert abs(haversine_m(0.0, 0.0, 1.0, 0.0) - 111_194.9) < 1.0

    def test_bearing_north_and_east(self):
        assert bearing_deg_true(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0, abs=1e-9)
        assert bearing_deg_true(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0, abs=1e-9)

    def test_bearing_in_range(self):
        b = bearing_deg_true(0.0, 0.0, -1.0, -0.001)
        assert 0.0 <= b < 360.0

    @pytest.mark.parametrize("bearing", [0.0, 45.0, 135.0, 270.0])
    def test_destination_point_travels_requested_distance(self, bearing):
        lat, lon = destination_point(37.8, -122.4, bearing, 1000.0)
        assert haversine_m(37.8, -122.4, lat, lon) == pytest.approx(1000.0, abs=0.5)
        delta = (bearing_deg_true(37.8, -122.4, lat, lon) - bearing + 180.0) % 360.0 - 180.0
        assert abs(delta) < 0.1

    def test_destination_zero_distance(self):
        assert destination_point(10.0, 20.0, 123.0, 0.0) == (10.0, 20.0)

    def test_bbox(self):
        box = bbox_wgs84([(1.0, 5.0), (-2.0, 7.0), (0.5, 6.0)])
        assert box == {"min_lat": -2.0, "min_lon": 5.0, "max_lat": 1.0, "max_lon": 7.0}

    def test_meters_per_deg_lon_shrinks_with_latitude(self):
        assert meters_per_deg_lon(60.0) == pytest.approx(111_320.0 * 0.5, rel=1e-6)
        assert meters_per_deg_lon(90.0) > 0


# ══════════════════════════════════════════════════════════════════════════════
# Grid snapping
# ══════════════════════════════════════════════════════════════════════════════
class TestGridSnapper:

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            GridSnapper(0)

    def test_cells_are_roughly_square(self):
        grid = GridSnapper(50.0)
        row, col = grid.cell_index(37.8, -122.4)
        lat, lon = grid.center(row, col)
        east = haversine_m(lat, lon, lat, lon + grid.dlon_for_row(row))
        north = haversine_m(lat, lon, lat + grid.dlat, lon)
        assert east == pytest.approx(50.0, rel=0.01)
        assert north == pytest.approx(50.0, rel=0.01)

    def test_points_near_centre_share_a_key(self):
        grid = GridSnapper(50.0)
        row, col = grid.cell_index(37.8, -122.4)
        lat, lon = grid.center(row, col)
        key = grid.key(lat, lon)
        for d_north, d_east in [(10, 10), (-10, 10), (10, -10), (-10, -10)]:
            p_lat, p_lon = destination_point(lat, lon, math.degrees(math.atan2(d_east, d_north)), math.hypot(d_north, d_east))
            assert grid.key(p_lat, p_lon) == key

    def test_key_round_trips_through_parse(self):
        grid = GridSnapper(25.0)
        key = grid.key(-33.8688, 151.2093)
        row, col = grid.parse_key(key)
        assert f"{row}:{col}" == key
        assert grid.key(*grid.center(row, col)) == key

    def test_keys_within_covers_nearby_cells(self):
        grid = GridSnapper(50.0)
        keys = set(grid.keys_within(37.8, -122.4, 200.0))
        for bearing in range(0, 360, 30):
            lat, lon = destination_point(37.8, -122.4, bearing, 190.0)
            assert grid.key(lat, lon) in keys

    def test_longitude_folded_into_one_range(self):
        grid = GridSnapper(50.0)
        assert grid.key(10.0, 190.0) == grid.key(10.0, -170.0)
        assert grid.key(10.0, -180.0) == grid.key(10.0, 180.0)

    def test_keys_within_wraps_across_antimeridian(self):
        grid = GridSnapper(50.0)
        keys = set(grid.keys_within(-17.0, 179.9999, 200.0))
        for bearing in (60, 90, 120):
            lat, lon = destination_point(-17.0, 179.9999, bearing, 150.0)
            assert lon < 0
            assert grid.key(lat, lon) in keys
        assert grid.key(-17.0, 179.9999) in keys

    def test_edge_column_centre_stays_in_range(self):
        grid = GridSnapper(50.0)
        row = grid.row_of(-17.0)
        for col in grid.column_range(row):
            lat, lon = grid.center(row, col)
            assert -180.0 <= lon < 180.0
            assert grid.key(lat, lon) == f"{row}:{col}"

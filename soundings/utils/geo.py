# path: soundings/utils/geo.py

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple
import math


EARTH_RADIUS_M = 6371000.0
METERS_PER_DEG_LAT = 111320.0
KNOTS_TO_MS = 0.514444


def bbox_wgs84(points_latlon: Iterable[Tuple[float, float]]) -> Dict[str, float]:
    pts = list(points_latlon)
    lats = [p[0] for p in pts]
    lons = [p[1] for p in pts]
    return {
        "min_lat": min(lats),
        "min_lon": min(lons),
        "max_lat": max(lats),
        "max_lon": max(lons),
    }


def haversine_m(a_lat: float, a_lon: float, b_lat: float, b_lon: float) -> float:
    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    dphi = math.radians(b_lat - a_lat)
    dlmb = math.radians(b_lon - a_lon)

    s = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, s)))


def bearing_deg_true(a_lat: float, a_lon: float, b_lat: float, b_lon: float) -> float:
    # Initial bearing (forward azimuth), degrees true, [0,360)
    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    dlmb = math.radians(b_lon - a_lon)

    y = math.sin(dlmb) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    brng = math.degrees(math.atan2(y, x))
    return (brng + 360.0) % 360.0


def destination_point(lat: float, lon: float, bearing_deg: float, distance_m: float) -> Tuple[float, float]:
    """
    Returns (lat, lon) reached after travelling distance_m on bearing_deg from (lat, lon).
    Spherical earth; longitude normalised to [-180, 180).
    """
    if distance_m == 0:
        return lat, lon
    d = distance_m / EARTH_RADIUS_M
    b = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lmb1 = math.radians(lon)

    phi2 = math.asin(math.sin(phi1) * math.cos(d) + math.cos(phi1) * math.sin(d) * math.cos(b))
    lmb2 = lmb1 + math.atan2(
        math.sin(b) * math.sin(d) * math.cos(phi1),
        math.cos(d) - math.sin(phi1) * math.sin(phi2),
    )
    out_lon = (math.degrees(lmb2) + 540.0) % 360.0 - 180.0
    return math.degrees(phi2), out_lon


def wrap_lon(lon: float) -> float:
    """Longitude folded into [-180, 180)."""
    return (lon + 180.0) % 360.0 - 180.0


def meters_per_deg_lon(lat: float) -> float:
    # Floor keeps the grid finite near the poles.
    return METERS_PER_DEG_LAT * max(math.cos(math.radians(lat)), 1e-6)


class GridSnapper:
    """
    Fixed-resolution lat/lon grid.

    Rows are equal-height bands of `cell_size_m`; columns are sized with the
    longitude scale at the row's centre latitude, so every cell is roughly
    `cell_size_m` on a side. Keys are "row:col" strings. Longitudes are folded
    into [-180, 180) so both sides of the antimeridian share one set of columns.
    """

    def __init__(self, cell_size_m: float):
        if cell_size_m <= 0:
            raise ValueError(f"cell_size_m must be > 0: {cell_size_m}")
        self.cell_size_m = float(cell_size_m)
        self.dlat = self.cell_size_m / METERS_PER_DEG_LAT

    def row_of(self, lat: float) -> int:
        return int(math.floor(lat / self.dlat))

    def dlon_for_row(self, row: int) -> float:
        center_lat = (row + 0.5) * self.dlat
        return self.cell_size_m / meters_per_deg_lon(center_lat)

    def cell_index(self, lat: float, lon: float) -> Tuple[int, int]:
        row = self.row_of(lat)
        col = int(math.floor(wrap_lon(lon) / self.dlon_for_row(row)))
        return row, col

    def key(self, lat: float, lon: float) -> str:
        row, col = self.cell_index(lat, lon)
        return f"{row}:{col}"

    @staticmethod
    def parse_key(key: str) -> Tuple[int, int]:
        row, col = key.split(":")
        return int(row), int(col)

    def center(self, row: int, col: int) -> Tuple[float, float]:
        dlon = self.dlon_for_row(row)
        # Edge columns are clipped at the antimeridian.
        west = max(col * dlon, -180.0)
        east = min((col + 1) * dlon, 180.0)
        return (row + 0.5) * self.dlat, (west + east) / 2.0

    def column_range(self, row: int) -> Tuple[int, int]:
        """First and last column index used by `row`."""
        dlon = self.dlon_for_row(row)
        return int(math.floor(-180.0 / dlon)), int(math.ceil(180.0 / dlon)) - 1

    def keys_within(self, lat: float, lon: float, radius_m: float) -> List[str]:
        """Candidate cell keys whose cells may intersect the circle (superset)."""
        row_span = int(math.ceil(radius_m / self.cell_size_m)) + 1
        center_row = self.row_of(lat)
        keys: List[str] = []
        seen = set()
        for row in range(center_row - row_span, center_row + row_span + 1):
            dlon = self.dlon_for_row(row)
            col_center = int(math.floor(wrap_lon(lon) / dlon))
            col_span = int(math.ceil(radius_m / (dlon * meters_per_deg_lon(lat)))) + 1
            first, last = self.column_range(row)
            n_cols = last - first + 1
            for col in range(col_center - col_span, col_center + col_span + 1):
                # Columns past the antimeridian map onto the far side.
                key = f"{row}:{first + (col - first) % n_cols}"
                if key not in seen:
                    seen.add(key)
                    keys.append(key)
        return keys

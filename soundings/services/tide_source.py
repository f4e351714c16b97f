"""
Tide collaborators
==================
`TideSource` and `StationDirectory` are the only ways the engine reaches
environmental data. Both raise `UpstreamUnavailable` on any failure; the tide
engine turns that into reduced confidence.

`NoaaTideSource` talks to the NOAA CO-OPS datagetter:

    product=predictions  datum=MLLW  units=metric  time_zone=gmt  format=json
    interval=hilo  → high/low turning points  ({"t", "v", "type": "H"|"L"})
    interval=60    → hourly heights           ({"t", "v"})
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Sequence

import httpx

from soundings.config import TideConfig
from soundings.errors import UpstreamUnavailable
from soundings.models.geo_models import GeoPoint
from soundings.models.tide_models import PredictionInterval, StationMatch, TidePrediction, TideStation
from soundings.utils.geo import haversine_m

log = logging.getLogger("soundings.tide_source")

NOAA_TIME_FORMAT = "%Y-%m-%d %H:%M"
NOAA_QUERY_FORMAT = "%Y%m%d %H:%M"


class TideSource(Protocol):
    async def predictions(
        self,
        station_id: str,
        begin: datetime,
        end: datetime,
        interval: PredictionInterval,
    ) -> List[TidePrediction]: ...


class StationDirectory(Protocol):
    async def nearest(self, location: GeoPoint, max_distance_m: float) -> Optional[StationMatch]: ...


# Used when the station directory cannot be reached.
FALLBACK_STATIONS: List[TideStation] = [
    TideStation(
        id="9414290",
        name="San Francisco Bay",
        location=GeoPoint(lat=37.7749, lon=-122.4194),
        chart_datum_offset_m=0.0,
        time_zone="PST8PDT",
    ),
    TideStation(
        id="8518750",
        name="New York Harbor",
        location=GeoPoint(lat=40.7067, lon=-74.0141),
        chart_datum_offset_m=0.0,
        time_zone="EST5EDT",
    ),
    TideStation(
        id="9447130",
        name="Seattle",
        location=GeoPoint(lat=47.6024, lon=-122.3394),
        chart_datum_offset_m=0.0,
        time_zone="PST8PDT",
    ),
]


def closest_station(
    stations: Sequence[TideStation],
    location: GeoPoint,
    max_distance_m: float,
) -> Optional[StationMatch]:
    best: Optional[StationMatch] = None
    for station in stations:
        if not station.active:
            continue
        d = haversine_m(location.lat, location.lon, station.location.lat, station.location.lon)
        if d <= max_distance_m and (best is None or d < best.distance_m):
            best = StationMatch(station=station, distance_m=d)
    return best


class StaticStationDirectory:
    """Station directory over a fixed list (reference data loaded at start-up)."""

    def __init__(self, stations: Sequence[TideStation]):
        self.stations = list(stations)

    async def nearest(self, location: GeoPoint, max_distance_m: float) -> Optional[StationMatch]:
        return closest_station(self.stations, location, max_distance_m)

    def get(self, station_id: str) -> Optional[TideStation]:
        for s in self.stations:
            if s.id == station_id:
                return s
        return None


def parse_noaa_time(value: str) -> datetime:
    return datetime.strptime(value, NOAA_TIME_FORMAT).replace(tzinfo=timezone.utc)


def parse_noaa_predictions(station_id: str, payload: object) -> List[TidePrediction]:
    if not isinstance(payload, dict):
        raise UpstreamUnavailable("noaa", f"unexpected response body: {type(payload).__name__}")
    if "error" in payload:
        message = payload["error"].get("message", "unknown error") if isinstance(payload["error"], dict) else str(payload["error"])
        raise UpstreamUnavailable("noaa", message)
    rows = payload.get("predictions")
    if not isinstance(rows, list):
        raise UpstreamUnavailable("noaa", "response has no predictions")

    out: List[TidePrediction] = []
    for row in rows:
        try:
            kind = {"H": "high", "L": "low"}.get(row.get("type", ""), "interpolated")
            out.append(TidePrediction(
                station_id=station_id,
                timestamp=parse_noaa_time(row["t"]),
                height_m=float(row["v"]),
                kind=kind,
            ))
        except (AttributeError, KeyError, TypeError, ValueError):
            log.debug("Skipping malformed NOAA row for %s: %r", station_id, row)
    return out


class NoaaTideSource:
    def __init__(self, config: Optional[TideConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or TideConfig()
        self._client = client

    async def predictions(
        self,
        station_id: str,
        begin: datetime,
        end: datetime,
        interval: PredictionInterval,
    ) -> List[TidePrediction]:
        params = {
            "product": "predictions",
            "application": self.config.application,
            "station": station_id,
            "begin_date": begin.astimezone(timezone.utc).strftime(NOAA_QUERY_FORMAT),
            "end_date": end.astimezone(timezone.utc).strftime(NOAA_QUERY_FORMAT),
            "datum": "MLLW",
            "units": "metric",
            "time_zone": "gmt",
            "format": "json",
            "interval": interval,
        }
        try:
            if self._client is not None:
                resp = await self._client.get(self.config.noaa_url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.config.retry.timeout_seconds) as client:
                    resp = await client.get(self.config.noaa_url, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailable("noaa", f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable("noaa", str(exc) or exc.__class__.__name__) from exc
        return parse_noaa_predictions(station_id, payload)

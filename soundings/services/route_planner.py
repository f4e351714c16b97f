# path: soundings/services/route_planner.py

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from soundings.config import RoutingConfig
from soundings.errors import NoRouteFound, RouteSearchCancelled, ValidationError
from soundings.models.depth_models import DepthEstimate
from soundings.models.geo_models import GeoPoint
from soundings.models.route_models import BBoxWGS84, RouteRequest, RouteResult, RouteWaypoint
from soundings.models.vessel_models import Vessel
from soundings.services.confidence import confidence_label
from soundings.services.risk_projector import DepthLookup
from soundings.utils.geo import (
    METERS_PER_DEG_LAT,
    bbox_wgs84,
    bearing_deg_true,
    haversine_m,
    meters_per_deg_lon,
)

log = logging.getLogger("soundings.route_planner")

MAX_ROUTE_M = 500_000.0
SAFE_CLEARANCE_M = 2.0
CANCEL_CHECK_EVERY = 256
SQRT2 = math.sqrt(2.0)

Node = Tuple[int, int]
NEIGHBOURS: Tuple[Node, ...] = (
    (1, 0), (-1, 0), (0, 1), (0, -1),
    (1, 1), (1, -1), (-1, 1), (-1, -1),
)


class LocalGrid:
    """
    Equirectangular grid anchored at the start point.

    Node (0, 0) is the start; node (i, j) lies i*spacing east and j*spacing
    north of it. Good enough at harbour scale.
    """

    def __init__(self, origin: GeoPoint, spacing_m: float):
        self.lat0 = origin.lat
        self.lon0 = origin.lon
        self.spacing_m = spacing_m
        self.m_per_deg_lon = meters_per_deg_lon(origin.lat)

    def to_xy(self, lat: float, lon: float) -> Tuple[float, float]:
        return (lon - self.lon0) * self.m_per_deg_lon, (lat - self.lat0) * METERS_PER_DEG_LAT

    def node_of(self, lat: float, lon: float) -> Node:
        x, y = self.to_xy(lat, lon)
        return int(round(x / self.spacing_m)), int(round(y / self.spacing_m))

    def latlon(self, node: Node) -> Tuple[float, float]:
        i, j = node
        return (
            self.lat0 + j * self.spacing_m / METERS_PER_DEG_LAT,
            self.lon0 + i * self.spacing_m / self.m_per_deg_lon,
        )


class SafeRoutePlanner:
    def __init__(self, interpolator=None, hierarchy=None, config: Optional[RoutingConfig] = None):
        self.interpolator = interpolator
        self.hierarchy = hierarchy
        self.config = config or RoutingConfig()

    def plan(
        self,
        field: DepthLookup,
        start: GeoPoint,
        end: GeoPoint,
        vessel: Vessel,
        cancel: Optional[threading.Event] = None,
    ) -> RouteResult:
        """
        A* over a lazily evaluated grid. Nodes with unknown depth or depth at
        or below draft + margin are never part of the result.
        """
        direct = haversine_m(start.lat, start.lon, end.lat, end.lon)
        if direct > MAX_ROUTE_M:
            raise ValidationError(f"Route too long (> {MAX_ROUTE_M:.0f} m): {direct:.1f} m")

        spacing = self.config.grid_spacing_m
        grid = LocalGrid(start, spacing)
        evaluated: Dict[Node, Optional[Tuple[DepthEstimate, float]]] = {}

        def sample(lat: float, lon: float) -> Optional[Tuple[DepthEstimate, float]]:
            est = field.estimate(lat, lon)
            if est is None:
                return None
            clearance = vessel.clearance(est.depth_m)
            if clearance <= 0:
                return None
            return est, clearance

        def node_info(node: Node) -> Optional[Tuple[DepthEstimate, float]]:
            if node not in evaluated:
                evaluated[node] = sample(*grid.latlon(node))
            return evaluated[node]

        start_info = sample(start.lat, start.lon)
        if start_info is None:
            raise NoRouteFound("Start position is not navigable (unknown or too shallow)")
        end_info = sample(end.lat, end.lon)
        if end_info is None:
            raise NoRouteFound("End position is not navigable (unknown or too shallow)")

        start_node: Node = (0, 0)
        goal = grid.node_of(end.lat, end.lon)
        evaluated[start_node] = start_info
        if goal != start_node and node_info(goal) is None:
            raise NoRouteFound("No navigable grid node near the destination")

        pad = int(math.ceil(self.config.padding_m / spacing))
        min_i, max_i = min(0, goal[0]) - pad, max(0, goal[0]) + pad
        min_j, max_j = min(0, goal[1]) - pad, max(0, goal[1]) + pad

        def h(node: Node) -> float:
            return math.hypot(node[0] - goal[0], node[1] - goal[1]) * spacing

        counter = itertools.count()
        g: Dict[Node, float] = {start_node: 0.0}
        conf: Dict[Node, float] = {start_node: start_info[0].confidence}
        came_from: Dict[Node, Node] = {}
        closed = set()
        heap = [(h(start_node), -conf[start_node], next(counter), start_node)]
        expanded = 0

        while heap:
            _, _, _, node = heapq.heappop(heap)
            if node in closed:
                continue
            if node == goal:
                break
            closed.add(node)
            expanded += 1
            if expanded > self.config.max_expansions:
                raise NoRouteFound(
                    f"Search budget of {self.config.max_expansions} expansions exceeded", expanded
                )
            if cancel is not None and expanded % CANCEL_CHECK_EVERY == 0 and cancel.is_set():
                raise RouteSearchCancelled("Route search cancelled", expanded)

            for di, dj in NEIGHBOURS:
                nxt = (node[0] + di, node[1] + dj)
                if nxt in closed or not (min_i <= nxt[0] <= max_i and min_j <= nxt[1] <= max_j):
                    continue
                info = node_info(nxt)
                if info is None:
                    continue
                est, clearance = info
                step = spacing * (SQRT2 if di and dj else 1.0)
                cost = g[node] + step * (1.0 + self.config.safety_weight_m / clearance)
                nxt_conf = conf[node] + est.confidence
                better = cost < g.get(nxt, math.inf) or (
                    cost == g.get(nxt) and nxt_conf > conf.get(nxt, -math.inf)
                )
                if better:
                    g[nxt] = cost
                    conf[nxt] = nxt_conf
                    came_from[nxt] = node
                    heapq.heappush(heap, (cost + h(nxt), -nxt_conf, next(counter), nxt))
        else:
            raise NoRouteFound("No navigable path between start and end", expanded)

        path: List[Node] = [goal]
        while path[-1] != start_node:
            path.append(came_from[path[-1]])
        path.reverse()

        points: List[Tuple[float, float, DepthEstimate, float]] = [
            (start.lat, start.lon, start_info[0], start_info[1])
        ]
        # The goal node is replaced by the exact destination.
        for node in path[1:-1]:
            est, clearance = evaluated[node]
            lat, lon = grid.latlon(node)
            points.append((lat, lon, est, clearance))
        points.append((end.lat, end.lon, end_info[0], end_info[1]))

        log.info(
            "Route found: %d waypoints, %d nodes expanded, %d nodes evaluated",
            len(points), expanded, len(evaluated),
        )
        return self._result(points, expanded)

    def _result(self, points: List[Tuple[float, float, DepthEstimate, float]], expanded: int) -> RouteResult:
        waypoints: List[RouteWaypoint] = []
        cum = 0.0
        for idx, (lat, lon, est, clearance) in enumerate(points):
            seg = 0.0
            if idx > 0:
                p_lat, p_lon = points[idx - 1][0], points[idx - 1][1]
                seg = haversine_m(p_lat, p_lon, lat, lon)
                cum += seg
            if idx < len(points) - 1:
                brng = bearing_deg_true(lat, lon, points[idx + 1][0], points[idx + 1][1])
            else:
                brng = waypoints[-1].bearing_deg_true if waypoints else 0.0
            waypoints.append(RouteWaypoint(
                i=idx,
                lat=lat,
                lon=lon,
                estimated_depth_m=est.depth_m,
                clearance_m=clearance,
                confidence=est.confidence,
                cum_dist_m=cum,
                seg_dist_m=seg,
                bearing_deg_true=brng % 360.0,
            ))

        clearances = [w.clearance_m for w in waypoints]
        per_point = [min(1.0, c / SAFE_CLEARANCE_M) for c in clearances]
        safety = 0.5 * (sum(per_point) / len(per_point)) + 0.5 * min(per_point)
        confidence = sum(w.confidence for w in waypoints) / len(waypoints)

        warnings = []
        if self.hierarchy is not None:
            warnings = self.hierarchy.alerts_near([(w.lat, w.lon) for w in waypoints], self.config.corridor_m)

        return RouteResult(
            waypoints=waypoints,
            safety_score=max(0.0, min(1.0, safety)),
            confidence_level=confidence,
            confidence_label=confidence_label(confidence),
            hazard_warnings=warnings,
            total_distance_m=cum,
            min_clearance_m=min(clearances),
            nodes_expanded=expanded,
            bbox_wgs84=BBoxWGS84(**bbox_wgs84([(w.lat, w.lon) for w in waypoints])),
        )

    async def plan_route(self, request: RouteRequest, timestamp: Optional[datetime] = None) -> RouteResult:
        """Runs the search in a worker thread; a timeout cancels it."""
        if timestamp is None and request.timestamp:
            try:
                timestamp = datetime.fromisoformat(request.timestamp.replace("Z", "+00:00"))
            except ValueError as e:
                raise ValidationError(f"Invalid timestamp: {request.timestamp}") from e
        center = GeoPoint(
            lat=(request.start.lat + request.end.lat) / 2.0,
            lon=(request.start.lon + request.end.lon) / 2.0,
        )
        field = await self.interpolator.snapshot(center, timestamp)
        cancel = threading.Event()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.plan, field, request.start, request.end, request.vessel, cancel),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            cancel.set()
            log.warning("Route search timed out after %.1fs", self.config.timeout_seconds)
            raise RouteSearchCancelled(f"Route search timed out after {self.config.timeout_seconds:.0f}s")

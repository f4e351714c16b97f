# path: soundings/api/routes/depth.py

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from soundings.api.deps import get_services
from soundings.models.depth_models import DepthObservation, DepthReading, SubmissionResult
from soundings.models.geo_models import Bounds, GeoPoint
from soundings.services.container import Services

router = APIRouter(prefix="/depth", tags=["depth"])


@router.post("/observations", response_model=SubmissionResult)
def submit_observation(obs: DepthObservation, services: Services = Depends(get_services)) -> SubmissionResult:
    try:
        return services.store.submit(obs)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/area", response_model=List[DepthReading])
def query_area(
    min_lat: float,
    min_lon: float,
    max_lat: float,
    max_lon: float,
    max_age_hours: Optional[float] = Query(default=None, gt=0),
    min_confidence: float = Query(default=0.0, ge=0, le=1),
    services: Services = Depends(get_services),
) -> List[DepthReading]:
    try:
        bounds = Bounds(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return services.store.query_area(bounds, max_age_hours=max_age_hours, min_confidence=min_confidence)


@router.get("/estimate")
async def estimate_depth(
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
    timestamp: Optional[datetime] = None,
    services: Services = Depends(get_services),
):
    estimate = await services.interpolator.estimate_depth(GeoPoint(lat=lat, lon=lon), timestamp)
    if estimate is None:
        # Unknown is never reported as safe.
        return {"status": "unknown", "lat": lat, "lon": lon}
    return estimate

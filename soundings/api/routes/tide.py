# path: soundings/api/routes/tide.py

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from soundings.api.deps import get_services
from soundings.errors import InsufficientData
from soundings.models.geo_models import GeoPoint
from soundings.models.tide_models import TideCorrection, TideStatus
from soundings.services.container import Services

router = APIRouter(prefix="/tide", tags=["tide"])


@router.get("/correction", response_model=TideCorrection)
async def tide_correction(
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
    depth: float = Query(ge=0),
    timestamp: Optional[datetime] = None,
    services: Services = Depends(get_services),
) -> TideCorrection:
    try:
        return await services.tides.correct(depth, GeoPoint(lat=lat, lon=lon), timestamp)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/status", response_model=TideStatus)
async def tide_status(
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
    services: Services = Depends(get_services),
) -> TideStatus:
    try:
        return await services.tides.tide_status(GeoPoint(lat=lat, lon=lon))
    except InsufficientData as e:
        raise HTTPException(status_code=503, detail=str(e))

# path: soundings/api/routes/navigation.py

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from soundings.api.deps import get_services
from soundings.errors import NoRouteFound, RouteSearchCancelled
from soundings.models.risk_models import GroundingAssessment, RiskRequest
from soundings.models.route_models import RouteRequest, RouteResult
from soundings.services.container import Services

router = APIRouter(prefix="/navigation", tags=["navigation"])


@router.post("/risk", response_model=GroundingAssessment)
async def assess_risk(req: RiskRequest, services: Services = Depends(get_services)) -> GroundingAssessment:
    try:
        return await services.risk.assess(req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/route", response_model=RouteResult)
async def plan_route(req: RouteRequest, services: Services = Depends(get_services)) -> RouteResult:
    try:
        return await services.planner.plan_route(req)
    except RouteSearchCancelled as e:
        raise HTTPException(status_code=504, detail=str(e))
    except NoRouteFound as e:
        raise HTTPException(status_code=404, detail={"reason": e.reason, "nodes_expanded": e.nodes_expanded})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

# path: soundings/api/routes/alerts.py

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from soundings.api.deps import get_services
from soundings.errors import AlertNotFound
from soundings.models.alert_models import AlertCandidate, AlertSeverity, AlertState, AlertTransition, RiskAlert
from soundings.services.container import Services

log = logging.getLogger("soundings.api.alerts")

router = APIRouter(prefix="/alerts", tags=["alerts"])


class RaiseAlertResponse(BaseModel):
    alert_id: str
    alert: RiskAlert


class AlertActionResponse(BaseModel):
    alert_id: str
    changed: bool
    state: AlertState


@router.post("", response_model=RaiseAlertResponse)
def raise_alert(candidate: AlertCandidate, services: Services = Depends(get_services)) -> RaiseAlertResponse:
    alert_id = services.alerts.raise_alert(candidate)
    return RaiseAlertResponse(alert_id=alert_id, alert=services.alerts.get(alert_id))


@router.get("", response_model=List[RiskAlert])
def list_alerts(
    min_severity: Optional[AlertSeverity] = None,
    services: Services = Depends(get_services),
) -> List[RiskAlert]:
    return services.alerts.active_alerts(min_severity)


@router.get("/stats")
def alert_stats(services: Services = Depends(get_services)) -> dict:
    return services.alerts.stats()


@router.get("/{alert_id}", response_model=RiskAlert)
def get_alert(alert_id: str, services: Services = Depends(get_services)) -> RiskAlert:
    try:
        return services.alerts.get(alert_id)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


def _act(services: Services, alert_id: str, action) -> AlertActionResponse:
    try:
        changed = action()
        return AlertActionResponse(alert_id=alert_id, changed=changed, state=services.alerts.get(alert_id).state)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{alert_id}/acknowledge", response_model=AlertActionResponse)
def acknowledge_alert(alert_id: str, services: Services = Depends(get_services)) -> AlertActionResponse:
    return _act(services, alert_id, lambda: services.alerts.acknowledge(alert_id))


@router.post("/{alert_id}/dismiss", response_model=AlertActionResponse)
def dismiss_alert(alert_id: str, services: Services = Depends(get_services)) -> AlertActionResponse:
    return _act(services, alert_id, lambda: services.alerts.dismiss(alert_id))


@router.post("/{alert_id}/resolve", response_model=AlertActionResponse)
def resolve_alert(
    alert_id: str,
    reason: str = "resolved by operator",
    services: Services = Depends(get_services),
) -> AlertActionResponse:
    return _act(services, alert_id, lambda: services.alerts.resolve(alert_id, reason))


@router.websocket("/stream")
async def alert_stream(websocket: WebSocket) -> None:
    services: Services = websocket.app.state.services
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[dict]" = asyncio.Queue()

    def forward(event: AlertTransition) -> None:
        # Transitions can fire on worker threads.
        loop.call_soon_threadsafe(queue.put_nowait, event.model_dump(mode="json"))

    async def pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    unsubscribe = services.alerts.subscribe(forward)
    await websocket.accept()
    sender = asyncio.create_task(pump())
    try:
        # Inbound frames are ignored; receiving surfaces the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        log.debug("Alert stream client disconnected")
    finally:
        sender.cancel()
        unsubscribe()

"""
Safety Alert Hierarchy
======================
Owns every alert from creation to resolution.

    created → delivered | resolved
    delivered → acknowledged | expired | escalated | resolved
    escalated → delivered | resolved
    acknowledged → resolved
    expired → resolved
    resolved    (terminal)

info/caution/warning alerts expire after a per-severity TTL. critical and
emergency alerts never expire: while unacknowledged they escalate on a timer
(critical → emergency, emergency → re-issued on more channels) up to a bounded
number of times.

Timers are `call_later` handles on the attached asyncio loop. A firing timer
re-checks the alert's generation and state under the hierarchy lock, so an
acknowledge or resolve that got there first always wins.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from soundings.config import AlertConfig
from soundings.errors import AlertNotFound, InvariantViolation
from soundings.models.alert_models import (
    PERSISTENT_SEVERITIES,
    SEVERITY_ORDER,
    TRANSITIONS,
    AlertCandidate,
    AlertTransition,
    AudioContract,
    DeliveryContract,
    HapticContract,
    RiskAlert,
    VisualContract,
    is_more_severe,
)
from soundings.models.depth_models import utcnow
from soundings.services.repository import AlertRepository, InMemoryAlertRepository
from soundings.utils.geo import GridSnapper, haversine_m

log = logging.getLogger("soundings.alerts")

Subscriber = Callable[[AlertTransition], None]

AUDIO = {
    "info": AudioContract(sound="beep", volume=0.3, frequency="once", priority=1),
    "caution": AudioContract(sound="beep", volume=0.5, frequency="once", priority=2),
    "warning": AudioContract(sound="alarm", volume=0.7, frequency="repeating", interval_s=5, priority=4),
    "critical": AudioContract(sound="siren", volume=0.9, frequency="repeating", interval_s=2, priority=7),
    "emergency": AudioContract(sound="horn", volume=1.0, frequency="continuous", priority=10),
}

VISUAL = {
    "info": VisualContract(color="#00C851", animation="static", position="top"),
    "caution": VisualContract(color="#FFB000", animation="pulse", position="top"),
    "warning": VisualContract(color="#FF8800", animation="flash", position="center"),
    "critical": VisualContract(color="#FF4444", animation="flash", position="center", full_screen=True),
    "emergency": VisualContract(color="#CC0000", animation="flash", position="overlay", full_screen=True),
}

HAPTIC = {
    "info": HapticContract(pattern="light", duration_ms=100, repeats=1),
    "caution": HapticContract(pattern="medium", duration_ms=200, repeats=1),
    "warning": HapticContract(pattern="heavy", duration_ms=300, repeats=2, interval_ms=500),
    "critical": HapticContract(pattern="pulse", duration_ms=500, repeats=3, interval_ms=300),
    "emergency": HapticContract(pattern="emergency", duration_ms=1000, repeats=5, interval_ms=200),
}

CHANNELS = {
    "info": ["visual"],
    "caution": ["visual", "haptic"],
    "warning": ["visual", "audio", "haptic"],
    "critical": ["visual", "audio", "haptic", "push"],
    "emergency": ["visual", "audio", "haptic", "push"],
}

ESCALATION_CHANNELS = ["broadcast", "emergency_contacts"]


def delivery_contract(severity: str, escalation_count: int = 0) -> DeliveryContract:
    channels = list(CHANNELS[severity])
    if escalation_count > 0:
        channels.extend(ESCALATION_CHANNELS[:escalation_count])
    return DeliveryContract(
        channels=channels,
        audio=AUDIO[severity],
        visual=VISUAL[severity],
        haptic=HAPTIC[severity],
        acknowledgment_required=SEVERITY_ORDER[severity] >= SEVERITY_ORDER["warning"],
        dismissible=severity not in PERSISTENT_SEVERITIES,
    )


class SafetyAlertHierarchy:
    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        repository: Optional[AlertRepository] = None,
        clock: Callable[[], datetime] = utcnow,
        cell_size_m: float = 50.0,
    ):
        self.config = config or AlertConfig()
        self.repository: AlertRepository = repository or InMemoryAlertRepository(self.config.history_limit)
        self.grid = GridSnapper(cell_size_m)
        self._clock = clock
        self._lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._generation: Dict[str, int] = {}
        self._dedup: Dict[Tuple[str, str], str] = {}
        self._subscribers: List[Subscriber] = []
        self._counts: Counter = Counter()

    # ── lifecycle ────────────────────────────────────────────────────────────

    def attach(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def detach(self) -> None:
        with self._lock:
            for alert_id in list(self._timers):
                self._cancel_timer(alert_id)
            self._loop = None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # ── internals ────────────────────────────────────────────────────────────

    def _require(self, alert_id: str) -> RiskAlert:
        alert = self.repository.get(alert_id)
        if alert is None:
            raise AlertNotFound(f"Alert not found: {alert_id}")
        return alert

    def _transition(
        self,
        alert: RiskAlert,
        to_state: str,
        reason: str,
        events: List[AlertTransition],
        **updates,
    ) -> RiskAlert:
        if to_state not in TRANSITIONS[alert.state]:
            raise InvariantViolation(f"Illegal alert transition {alert.state} -> {to_state} ({alert.id})")
        now = self._clock()
        updated = alert.model_copy(update={"state": to_state, "updated_at": now, **updates})
        self.repository.put(updated)
        events.append(AlertTransition(
            alert_id=alert.id,
            from_state=alert.state,
            to_state=to_state,
            severity=updated.severity,
            reason=reason,
            at=now,
            alert=updated,
        ))
        log.info("Alert %s %s -> %s (%s): %s", alert.id, alert.state, to_state, updated.severity, reason)
        return updated

    def _publish(self, events: Iterable[AlertTransition]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for event in events:
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    log.exception("Alert subscriber failed for %s", event.alert_id)

    def _drop_dedup(self, alert: RiskAlert) -> None:
        key = (alert.category, alert.cell_key)
        if self._dedup.get(key) == alert.id:
            del self._dedup[key]

    # ── timers ───────────────────────────────────────────────────────────────

    def _cancel_timer(self, alert_id: str) -> None:
        self._generation[alert_id] = self._generation.get(alert_id, 0) + 1
        handle = self._timers.pop(alert_id, None)
        if handle is not None and self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(handle.cancel)
            except RuntimeError:
                handle.cancel()

    def _schedule(self, alert: RiskAlert) -> None:
        self._cancel_timer(alert.id)
        if alert.severity in PERSISTENT_SEVERITIES:
            if alert.escalation_count >= self.config.max_escalations:
                return
            delay = self.config.escalation_seconds.get(alert.severity)
            action = "escalate"
        else:
            delay = self.config.expiry_seconds.get(alert.severity)
            action = "expire"
        if delay is None:
            return

        loop = self._loop
        if loop is None:
            log.warning("No event loop attached; %s timer for alert %s not scheduled", action, alert.id)
            return
        generation = self._generation[alert.id]

        def arm() -> None:
            with self._lock:
                if self._generation.get(alert.id) != generation:
                    return
                self._timers[alert.id] = loop.call_later(delay, self._fire, alert.id, generation, action)

        try:
            loop.call_soon_threadsafe(arm)
        except RuntimeError:
            log.warning("Event loop closed; %s timer for alert %s not scheduled", action, alert.id)

    def _fire(self, alert_id: str, generation: int, action: str) -> None:
        events: List[AlertTransition] = []
        with self._lock:
            if self._generation.get(alert_id) != generation:
                return
            self._timers.pop(alert_id, None)
            alert = self.repository.get(alert_id)
            if alert is None or alert.state != "delivered":
                return
            if action == "expire":
                self._transition(alert, "expired", "time to live elapsed", events)
                self._drop_dedup(alert)
                self._counts["expired"] += 1
            else:
                self._escalate(alert, None, "not acknowledged in time", events)
        self._publish(events)

    def _escalate(
        self,
        alert: RiskAlert,
        severity: Optional[str],
        reason: str,
        events: List[AlertTransition],
    ) -> RiskAlert:
        if severity is None:
            severity = "emergency"
        count = alert.escalation_count + 1
        escalated = self._transition(
            alert,
            "escalated",
            reason,
            events,
            severity=severity,
            escalation_count=count,
            delivery=delivery_contract(severity, count),
        )
        self._counts["escalations"] += 1
        if escalated.severity == "emergency" and alert.severity == "emergency":
            log.error("Emergency alert %s re-issued (escalation %d)", alert.id, count)
        delivered = self._transition(escalated, "delivered", "re-issued after escalation", events)
        self._schedule(delivered)
        return delivered

    # ── operations ───────────────────────────────────────────────────────────

    def _fold_duplicate(
        self,
        existing: RiskAlert,
        candidate: AlertCandidate,
        now: datetime,
        events: List[AlertTransition],
    ) -> Optional[str]:
        """Folds a duplicate into an open alert. Returns None when a new alert is needed instead."""
        bumped = existing.model_copy(update={"occurrences": existing.occurrences + 1, "updated_at": now})
        self._counts["deduplicated"] += 1
        if not is_more_severe(candidate.severity, existing.severity):
            self.repository.put(bumped)
            return existing.id
        if existing.state == "delivered":
            self._escalate(bumped, candidate.severity, "more severe duplicate reported", events)
            return existing.id
        # An acknowledged alert cannot escalate; it is superseded by a fresh one.
        self._cancel_timer(existing.id)
        self._transition(bumped, "resolved", "superseded by more severe alert", events,
                         resolved_at=now, resolution="superseded")
        return None

    def raise_alert(self, candidate: AlertCandidate) -> str:
        """Create (or fold into an open duplicate) and deliver. Returns the alert id."""
        events: List[AlertTransition] = []
        with self._lock:
            cell_key = candidate.cell_key or self.grid.key(candidate.location.lat, candidate.location.lon)
            key = (candidate.category, cell_key)
            now = self._clock()

            existing_id = self._dedup.get(key)
            existing = self.repository.get(existing_id) if existing_id else None
            alert_id: Optional[str] = None
            if (
                existing is not None
                and existing.is_open
                and (now - existing.created_at).total_seconds() <= self.config.dedup_window_seconds
            ):
                alert_id = self._fold_duplicate(existing, candidate, now, events)

            if alert_id is None:
                alert = RiskAlert(
                    id=str(uuid.uuid4()),
                    severity=candidate.severity,
                    category=candidate.category,
                    location=candidate.location,
                    cell_key=cell_key,
                    message=candidate.message,
                    time_to_impact_s=candidate.time_to_impact_s,
                    clearance_m=candidate.clearance_m,
                    confidence=candidate.confidence,
                    delivery=delivery_contract(candidate.severity),
                    created_at=now,
                    updated_at=now,
                )
                self.repository.put(alert)
                events.append(AlertTransition(
                    alert_id=alert.id,
                    to_state="created",
                    severity=alert.severity,
                    reason="raised",
                    at=now,
                    alert=alert,
                ))
                delivered = self._transition(alert, "delivered", "delivered to channels", events)
                self._dedup[key] = alert.id
                self._counts["raised"] += 1
                self._counts[f"severity:{alert.severity}"] += 1
                self._counts[f"category:{alert.category}"] += 1
                self._schedule(delivered)
                alert_id = alert.id
                if alert.severity in PERSISTENT_SEVERITIES:
                    log.warning("%s alert %s at %s: %s", alert.severity.upper(), alert.id, cell_key, alert.message)

        self._publish(events)
        return alert_id

    def acknowledge(self, alert_id: str) -> bool:
        events: List[AlertTransition] = []
        with self._lock:
            alert = self._require(alert_id)
            if "acknowledged" not in TRANSITIONS[alert.state]:
                return False
            self._cancel_timer(alert_id)
            self._transition(alert, "acknowledged", "acknowledged by operator", events,
                             acknowledged_at=self._clock())
            self._counts["acknowledged"] += 1
        self._publish(events)
        return True

    def dismiss(self, alert_id: str) -> bool:
        """Close a non-critical alert without action. critical/emergency alerts are never dropped this way."""
        alert = self._require(alert_id)
        if alert.severity in PERSISTENT_SEVERITIES:
            log.warning("Refusing to dismiss %s alert %s", alert.severity, alert_id)
            return False
        if not alert.is_open:
            return False
        return self.resolve(alert_id, "dismissed")

    def resolve(self, alert_id: str, reason: str = "resolved") -> bool:
        events: List[AlertTransition] = []
        with self._lock:
            alert = self._require(alert_id)
            if "resolved" not in TRANSITIONS[alert.state]:
                return False
            self._cancel_timer(alert_id)
            self._transition(alert, "resolved", reason, events,
                             resolved_at=self._clock(), resolution=reason)
            self._drop_dedup(alert)
            self._counts["resolved"] += 1
        self._publish(events)
        return True

    def resolve_cell(self, cell_key: str, reason: str = "follow-up reading above threshold") -> int:
        """Resolve the open depth alerts for a cell. Returns how many were resolved."""
        targets = [
            a.id for a in self.repository.all()
            if a.cell_key == cell_key
            and a.state != "resolved"
            and a.category in ("shallow_water", "hazard_report")
        ]
        return sum(1 for alert_id in targets if self.resolve(alert_id, reason))

    def get(self, alert_id: str) -> RiskAlert:
        return self._require(alert_id)

    def active_alerts(self, min_severity: Optional[str] = None) -> List[RiskAlert]:
        floor = SEVERITY_ORDER[min_severity] if min_severity else 0
        alerts = [
            a for a in self.repository.all()
            if a.is_open and SEVERITY_ORDER[a.severity] >= floor
        ]
        alerts.sort(key=lambda a: (SEVERITY_ORDER[a.severity], a.created_at), reverse=True)
        return alerts

    def alerts_near(self, points: Iterable[Tuple[float, float]], radius_m: float) -> List[RiskAlert]:
        pts = list(points)
        return [
            a for a in self.active_alerts()
            if any(haversine_m(lat, lon, a.location.lat, a.location.lon) <= radius_m for lat, lon in pts)
        ]

    def stats(self) -> Dict[str, object]:
        with self._lock:
            counts = dict(self._counts)
            active = self.active_alerts()
        return {
            "active": len(active),
            "active_by_severity": dict(Counter(a.severity for a in active)),
            "raised": counts.get("raised", 0),
            "by_severity": {k.split(":", 1)[1]: v for k, v in counts.items() if k.startswith("severity:")},
            "by_category": {k.split(":", 1)[1]: v for k, v in counts.items() if k.startswith("category:")},
            "acknowledged": counts.get("acknowledged", 0),
            "resolved": counts.get("resolved", 0),
            "expired": counts.get("expired", 0),
            "escalations": counts.get("escalations", 0),
            "deduplicated": counts.get("deduplicated", 0),
            "pending_timers": len(self._timers),
        }

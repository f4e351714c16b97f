# path: soundings/errors.py

from __future__ import annotations

import logging
import math
import os

log = logging.getLogger("soundings.errors")


class SoundingsError(Exception):
    """Base class for all decision-engine errors."""


class ValidationError(SoundingsError, ValueError):
    """Malformed caller input. Rejected, never retried."""


class UpstreamUnavailable(SoundingsError):
    """A tide/weather collaborator failed or timed out."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class InsufficientData(SoundingsError):
    """No nearby cells or predictions. Callers report Unknown, never 'safe'."""


class NoRouteFound(SoundingsError):
    def __init__(self, reason: str, nodes_expanded: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.nodes_expanded = nodes_expanded


class RouteSearchCancelled(NoRouteFound):
    pass


class AlertNotFound(SoundingsError, LookupError):
    pass


class InvariantViolation(SoundingsError, AssertionError):
    """Programming error. Raised in development, clamped in production."""


def _strict() -> bool:
    return os.getenv("SOUNDINGS_ENV", "production").lower() in ("development", "dev", "test")


def check_unit_interval(value: float, name: str = "confidence") -> float:
    if not math.isnan(value) and 0.0 <= value <= 1.0:
        return value
    if _strict():
        raise InvariantViolation(f"{name} out of [0,1]: {value}")
    log.error("invariant violated: %s=%r clamped into [0,1]", name, value)
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))

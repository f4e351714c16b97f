# path: soundings/api/deps.py

from __future__ import annotations

from fastapi import Request

from soundings.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services

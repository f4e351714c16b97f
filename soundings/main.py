# path: soundings/main.py

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from soundings.api.routes.alerts import router as alerts_router
from soundings.api.routes.depth import router as depth_router
from soundings.api.routes.navigation import router as navigation_router
from soundings.api.routes.tide import router as tide_router
from soundings.config import Config
from soundings.services.container import Services, build_services

log = logging.getLogger("soundings")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
    )


def create_app(config: Optional[Config] = None, services: Optional[Services] = None) -> FastAPI:
    config = config or (services.config if services else Config())
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services.alerts.attach()
        log.info("soundings-api started (environment=%s)", config.environment)
        yield
        app.state.services.alerts.detach()
        log.info("soundings-api stopped")

    app = FastAPI(title="soundings-api", lifespan=lifespan)
    app.state.services = services or build_services(config)

    app.include_router(depth_router)
    app.include_router(tide_router)
    app.include_router(navigation_router)
    app.include_router(alerts_router)

    @app.get("/health")
    def health() -> dict:
        svc: Services = app.state.services
        return {
            "status": "ok",
            "environment": config.environment,
            "cells": len(svc.store.repository.all_cells()),
            "active_alerts": len(svc.alerts.active_alerts()),
            "cache": svc.cache.stats(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("soundings.main:app", host="0.0.0.0", port=port)

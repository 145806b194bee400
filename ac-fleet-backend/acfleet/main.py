# acfleet/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from acfleet.database import settings
from acfleet.init_db import init_database
from acfleet.services.scheduler import start_scheduler, stop_scheduler

# Routers
from acfleet.routers import (
    health_router, events_router, devices_router, stream_router, ws_router,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="AC Fleet Scheduler API",
        description="Event scheduling and device synchronization for climate-control fleets",
        version="1.0.0",
        debug=settings.debug,
    )

    # CORS for the dashboard dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    app.include_router(health_router)            # /healthz, /api/v1/health
    app.include_router(events_router)            # /api/v1/events/...
    app.include_router(devices_router)           # /api/v1/devices/...
    app.include_router(stream_router)            # /api/v1/stream/sse
    app.include_router(ws_router)                # /ws/device, /ws/observer

    # Startup: DB + seed + scheduler (idempotent)
    @app.on_event("startup")
    async def _startup():
        init_database()
        if settings.scheduler_enabled:
            start_scheduler()
        else:
            logger.info("Scheduler disabled by configuration")

    @app.on_event("shutdown")
    async def _shutdown():
        stop_scheduler()

    return app


app = create_app()

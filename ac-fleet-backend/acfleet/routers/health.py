from fastapi import APIRouter

from acfleet.providers.device_bridge import device_bridge
from acfleet.routers.stream import subscriber_count
from acfleet.services.scheduler import scheduler

router = APIRouter(tags=["health"])

@router.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "ac-fleet-scheduler"}

@router.get("/api/v1/health")
async def api_health_check():
    """API health check endpoint"""
    return {
        "status": "ok",
        "api_version": "v1",
        "scheduler_running": scheduler.running,
        "connected_devices": device_bridge.connected_serials,
        "sse_subscribers": subscriber_count(),
    }

from .health import router as health_router
from .events import router as events_router
from .devices import router as devices_router
from .stream import router as stream_router
from .ws import router as ws_router

__all__ = [
    "health_router",
    "events_router",
    "devices_router",
    "stream_router",
    "ws_router",
]

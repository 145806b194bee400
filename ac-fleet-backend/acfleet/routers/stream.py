from fastapi import APIRouter
from fastapi.responses import StreamingResponse
import asyncio, json
from typing import Dict, Any, Set

from acfleet.providers.device_bridge import device_bridge

router = APIRouter(prefix="/api/v1/stream", tags=["stream"])

_subscribers: Set[asyncio.Queue] = set()


class QueueObserver:
    """Bridge observer that feeds one SSE client's queue"""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    async def send_json(self, data: Dict[str, Any]):
        self.queue.put_nowait(data)


async def _event_stream():
    queue: asyncio.Queue = asyncio.Queue()
    observer = QueueObserver(queue)
    _subscribers.add(queue)
    device_bridge.add_observer(observer)
    try:
        while True:
            data = await queue.get()
            yield f"data: {json.dumps(data, default=str)}\n\n"
    finally:
        _subscribers.discard(queue)
        device_bridge.remove_observer(observer)

@router.get("/sse")
async def sse():
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_stream(), media_type="text/event-stream", headers=headers)

def subscriber_count() -> int:
    return len(_subscribers)

"""WebSocket endpoints for devices and dashboard observers."""
import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from acfleet.providers.device_bridge import DeviceBridge, get_bridge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])


@router.websocket("/device")
async def device_socket(websocket: WebSocket, bridge: DeviceBridge = Depends(get_bridge)):
    """Device transport. The first message should be DEVICE_CONNECTED with the serial."""
    await websocket.accept()
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError as e:
                logger.warning(f"Undecodable device frame ignored: {e}")
                continue
            await bridge.handle_device_message(websocket, data)
    except WebSocketDisconnect:
        pass
    finally:
        await bridge.unregister_connection(websocket)


@router.websocket("/observer")
async def observer_socket(websocket: WebSocket, bridge: DeviceBridge = Depends(get_bridge)):
    await websocket.accept()
    bridge.add_observer(websocket)
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError as e:
                logger.warning(f"Undecodable observer frame ignored: {e}")
                continue
            await bridge.handle_observer_message(data)
    except WebSocketDisconnect:
        pass
    finally:
        bridge.remove_observer(websocket)

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session
from typing import List
import logging

from acfleet.database import get_db, get_utc_datetime
from acfleet.models.device import Device
from acfleet.providers.device_bridge import DeviceBridge, get_bridge
from acfleet.routers.events import get_actor
from acfleet.schemas.device import (
    DeviceResponse, PowerCommand, TemperatureCommand, LockCommand, CommandResponse,
)
from acfleet.services.actors import Actor
from acfleet.services.directory import device_query_for
from acfleet.services.errors import TransportError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/devices", tags=["devices"])

def _to_response(device: Device, bridge: DeviceBridge) -> DeviceResponse:
    response = DeviceResponse.model_validate(device)
    response.connected = bridge.is_connected(device.serial_number)
    return response

def _owned(db: Session, actor: Actor, device_id: int) -> Device:
    device = device_query_for(db, actor).filter(Device.id == device_id).first()
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return device

@router.get("/", response_model=List[DeviceResponse])
async def list_devices(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    """Devices visible to the caller"""
    return [_to_response(d, bridge) for d in device_query_for(db, actor).all()]

@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    return _to_response(_owned(db, actor, device_id), bridge)

@router.post("/{device_id}/power", response_model=CommandResponse)
async def set_power(
    device_id: int,
    command: PowerCommand,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    """Manual power change; hardware echoes are ignored for a short window"""
    serial_number = _owned(db, actor, device_id).serial_number
    delivered = await bridge.apply_manual_power(serial_number, command.on, changed_by=actor.role.value)
    return CommandResponse(
        success=True,
        serial_number=serial_number,
        delivered=delivered,
        message=f"Power {'on' if command.on else 'off'}" + ("" if delivered else " saved; device not reachable"),
    )

@router.post("/{device_id}/temperature", response_model=CommandResponse)
async def set_temperature(
    device_id: int,
    command: TemperatureCommand,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    device = _owned(db, actor, device_id)
    device.temperature = command.temperature
    device.last_temperature_change = get_utc_datetime()
    device.changed_by = actor.role.value
    db.commit()

    delivered = True
    try:
        await bridge.start_temperature_sync(device.serial_number, command.temperature)
    except TransportError as e:
        logger.warning(f"Temperature command for {device.serial_number} not delivered: {e}")
        delivered = False
    return CommandResponse(
        success=True,
        serial_number=device.serial_number,
        delivered=delivered,
        message=f"Temperature set to {command.temperature}",
    )

@router.post("/{device_id}/lock", response_model=CommandResponse)
async def set_lock(
    device_id: int,
    command: LockCommand,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    device = _owned(db, actor, device_id)
    device.locked = command.locked
    db.commit()

    delivered = True
    try:
        await bridge.send_lock_command(device.serial_number, command.locked)
    except TransportError as e:
        logger.warning(f"Lock command for {device.serial_number} not delivered: {e}")
        delivered = False
    return CommandResponse(
        success=True,
        serial_number=device.serial_number,
        delivered=delivered,
        message="Locked" if command.locked else "Unlocked",
    )

@router.post("/{device_id}/request-room-temperature", response_model=CommandResponse)
async def request_room_temperature(
    device_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    bridge: DeviceBridge = Depends(get_bridge),
):
    serial_number = _owned(db, actor, device_id).serial_number
    try:
        await bridge.request_room_temperature(serial_number)
    except TransportError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CommandResponse(success=True, serial_number=serial_number, delivered=True,
                           message="Room temperature requested")

"""
Bridge between the persistent device records and live device connections.

Devices connect over a websocket keyed by serial number.  The database is
the source of truth: on connect the bridge pushes the persisted power,
temperature and lock state to the hardware, and inbound telemetry only
updates the record opportunistically.  Outbound commands are
fire-and-forget and fail with DeviceNotConnected when no session exists.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Set

from acfleet.database import SessionLocal, settings, get_utc_datetime
from acfleet.models.device import Device
from acfleet.services.errors import DeviceCommandFailed, DeviceNotConnected

logger = logging.getLogger(__name__)


@dataclass
class DeviceSession:
    serial_number: str
    connection: Any
    power: bool = False
    temperature: Optional[int] = None
    locked: bool = False
    connected_at: Any = field(default_factory=get_utc_datetime)


class DeviceBridge:
    def __init__(self, session_factory: Callable = SessionLocal):
        self.session_factory = session_factory
        self._sessions: Dict[str, DeviceSession] = {}
        self._observers: Set[Any] = set()
        self._lock = asyncio.Lock()

    # Registry

    def is_connected(self, serial_number: str) -> bool:
        return serial_number in self._sessions

    def get_session(self, serial_number: str) -> Optional[DeviceSession]:
        return self._sessions.get(serial_number)

    @property
    def connected_serials(self):
        return sorted(self._sessions.keys())

    async def register_device(self, serial_number: str, connection) -> DeviceSession:
        async with self._lock:
            previous = self._sessions.get(serial_number)
            if previous and previous.connection is not connection:
                logger.info(f"Device {serial_number} reconnected, replacing previous session")
            session = DeviceSession(
                serial_number=serial_number,
                connection=connection,
                temperature=settings.default_device_temperature,
            )
            self._sessions[serial_number] = session

        logger.info(f"Device connected: {serial_number} (total={len(self._sessions)})")
        await self.restore_device_state(serial_number)
        await self.broadcast({"type": "CONNECTED", "serial_number": serial_number})
        return session

    async def unregister_connection(self, connection) -> None:
        async with self._lock:
            gone = [s for s, sess in self._sessions.items() if sess.connection is connection]
            for serial_number in gone:
                del self._sessions[serial_number]
        for serial_number in gone:
            logger.info(f"Device disconnected: {serial_number}")
            await self.broadcast({"type": "DISCONNECTED", "serial_number": serial_number})

    def add_observer(self, connection) -> None:
        self._observers.add(connection)
        logger.info(f"Observer connected (total={len(self._observers)})")

    def remove_observer(self, connection) -> None:
        self._observers.discard(connection)

    async def restore_device_state(self, serial_number: str) -> None:
        """Push the persisted record to freshly connected hardware"""
        db = self.session_factory()
        try:
            device = db.query(Device).filter(Device.serial_number == serial_number).first()
            if not device:
                logger.warning(f"No device record for serial {serial_number}, nothing to restore")
                return
            power, temperature, locked = bool(device.is_on), device.temperature, bool(device.locked)
        finally:
            db.close()

        session = self._sessions.get(serial_number)
        if session:
            async with self._lock:
                session.power = power
                if temperature is not None:
                    session.temperature = temperature
                session.locked = locked

        try:
            await self.send_power_command(serial_number, power)
            if temperature is not None:
                await self.send_set_temp_command(serial_number, temperature)
            if locked:
                await self.send_lock_command(serial_number, True)
            logger.info(f"Restored state for {serial_number}: power={power} temp={temperature} locked={locked}")
        except (DeviceNotConnected, DeviceCommandFailed) as e:
            logger.warning(f"Could not restore state for {serial_number}: {e}")

    # Outbound commands

    async def _send(self, serial_number: str, payload: Dict[str, Any]) -> None:
        session = self._sessions.get(serial_number)
        if not session:
            raise DeviceNotConnected(serial_number)
        try:
            await session.connection.send_json(payload)
        except Exception as e:
            raise DeviceCommandFailed(f"Send to {serial_number} failed: {e}") from e
        logger.debug(f"-> {serial_number}: {payload}")

    async def send_power_command(self, serial_number: str, on: bool) -> None:
        await self._send(serial_number, {"type": "POWER_ON" if on else "POWER_OFF"})
        session = self._sessions.get(serial_number)
        if session:
            session.power = on

    async def send_set_temp_command(self, serial_number: str, temperature: int) -> None:
        await self._send(serial_number, {"type": "SET_TEMP", "temp": int(temperature)})
        session = self._sessions.get(serial_number)
        if session:
            session.temperature = int(temperature)

    async def send_pulse_command(self, serial_number: str, diff: int) -> None:
        """Relative change as a signed count of remote-control presses"""
        await self._send(serial_number, {"type": "TEMP_PULSE", "diff": int(diff)})

    async def send_temperature_command(self, serial_number: str, direction: str, count: int = 1) -> None:
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        steps = abs(int(count))
        await self.send_pulse_command(serial_number, steps if direction == "up" else -steps)

    async def start_temperature_sync(self, serial_number: str, target_temperature: int) -> None:
        """Always an absolute set: the persisted target wins over reported state"""
        await self.send_set_temp_command(serial_number, target_temperature)

    async def send_lock_command(self, serial_number: str, locked: bool) -> None:
        await self._send(serial_number, {"type": "LOCK" if locked else "UNLOCK"})
        session = self._sessions.get(serial_number)
        if session:
            session.locked = locked

    async def request_room_temperature(self, serial_number: str) -> None:
        await self._send(serial_number, {"type": "REQUEST_ROOM_TEMP"})

    async def send_event_status(self, serial_number: str, status: str, data: Optional[Dict[str, Any]] = None) -> None:
        await self._send(serial_number, {"type": "EVENT_STATUS", "status": status, **(data or {})})

    async def broadcast(self, message: Dict[str, Any]) -> None:
        message.setdefault("timestamp", get_utc_datetime().isoformat())
        disconnected = set()
        for observer in list(self._observers):
            try:
                await observer.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send to observer: {e}")
                disconnected.add(observer)
        for observer in disconnected:
            self.remove_observer(observer)

    # Manual operator control

    async def apply_manual_power(self, serial_number: str, on: bool, changed_by: str = "operator") -> bool:
        """Persist an operator power change and open the override window.

        Returns whether the command reached the device.
        """
        now = get_utc_datetime()
        db = self.session_factory()
        try:
            device = db.query(Device).filter(Device.serial_number == serial_number).first()
            if device:
                device.is_on = on
                device.last_power_change_at = now
                device.last_power_change_by = changed_by
                device.manual_override_until = now + timedelta(seconds=settings.manual_override_seconds)
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        try:
            await self.send_power_command(serial_number, on)
            return True
        except (DeviceNotConnected, DeviceCommandFailed) as e:
            logger.warning(f"Manual power command for {serial_number} not delivered: {e}")
            return False

    # Inbound messages

    async def handle_device_message(self, connection, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object device message: {data!r}")
            return
        message_type = data.get("type")
        serial_number = data.get("serial") or data.get("device_id") or data.get("serialNumber")
        if not serial_number:
            logger.warning(f"Device message without serial number ignored: {data}")
            return

        if message_type == "DEVICE_CONNECTED":
            await self.register_device(serial_number, connection)
            return

        session = self._sessions.get(serial_number)
        if not session:
            logger.warning(f"Message from unregistered device {serial_number} ignored: {message_type}")
            return

        try:
            if message_type == "TEMP_UPDATE":
                await self._on_temp_update(session, data.get("temp"))
            elif message_type == "POWER_UPDATE":
                await self._on_power_update(session, data.get("power"))
            elif message_type == "LOCK_UPDATE":
                await self._on_lock_update(session, data.get("locked"))
            elif message_type == "IR_VIOLATION":
                await self._on_ir_violation(session)
            elif "room_temp" in data:
                await self._on_room_temperature(session, data.get("room_temp"))
            else:
                logger.debug(f"Unhandled message from {serial_number}: {message_type}")
        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed {message_type} message from {serial_number} ignored: {e}")

    async def _on_temp_update(self, session: DeviceSession, temp) -> None:
        if temp is None:
            return
        temp = int(temp)
        async with self._lock:
            session.temperature = temp

        if settings.min_temperature <= temp <= settings.max_temperature:
            self._persist(session.serial_number, temperature=temp, changed_by="device",
                          last_temperature_change=get_utc_datetime())

        await self.broadcast({"type": "TEMP_UPDATE", "serial_number": session.serial_number, "temp": temp})

    async def _on_power_update(self, session: DeviceSession, power) -> None:
        on = power in (1, True, "1", "on", "ON")
        async with self._lock:
            session.power = on

        if self._override_active(session.serial_number):
            logger.info(f"Power echo from {session.serial_number} ignored during manual override")
        else:
            now = get_utc_datetime()
            self._persist(session.serial_number, is_on=on, last_power_change_at=now,
                          last_power_change_by="device")

        await self.broadcast({"type": "POWER_UPDATE", "serial_number": session.serial_number, "power": 1 if on else 0})

    async def _on_lock_update(self, session: DeviceSession, locked) -> None:
        is_locked = locked in (1, True, "1", "locked")
        async with self._lock:
            session.locked = is_locked
        self._persist(session.serial_number, locked=is_locked)
        await self.broadcast({"type": "LOCK_UPDATE", "serial_number": session.serial_number, "locked": is_locked})

    async def _on_ir_violation(self, session: DeviceSession) -> None:
        """Undo a physical remote change by pulsing back to the persisted target"""
        db = self.session_factory()
        try:
            device = db.query(Device).filter(Device.serial_number == session.serial_number).first()
            target = device.temperature if device and device.temperature is not None else settings.default_device_temperature
        finally:
            db.close()

        current = session.temperature if session.temperature is not None else settings.default_device_temperature
        diff = target - current
        logger.warning(f"IR violation on {session.serial_number}: target={target} current={current} diff={diff}")
        if diff != 0:
            try:
                await self.send_pulse_command(session.serial_number, diff)
            except (DeviceNotConnected, DeviceCommandFailed) as e:
                logger.warning(f"Corrective pulse for {session.serial_number} failed: {e}")

        await self.broadcast({
            "type": "IR_VIOLATION",
            "serial_number": session.serial_number,
            "target_temp": target,
            "diff": diff,
        })

    async def _on_room_temperature(self, session: DeviceSession, room_temp) -> None:
        if room_temp is None:
            return
        value = float(room_temp)
        self._persist(session.serial_number, room_temperature=value,
                      last_room_temp_update=get_utc_datetime())
        await self.broadcast({
            "type": "ROOM_TEMPERATURE",
            "serial_number": session.serial_number,
            "room_temp": value,
        })

    async def handle_observer_message(self, data: Dict[str, Any]) -> None:
        """Dashboard control messages, only forwarded to connected devices"""
        if not isinstance(data, dict):
            return
        message_type = data.get("type")
        serial_number = data.get("serial") or data.get("serial_number") or data.get("serialNumber")
        if not serial_number or not self.is_connected(serial_number):
            logger.warning(f"Observer command {message_type} for unavailable device {serial_number}")
            return

        try:
            if message_type in ("POWER_ON", "POWER_OFF"):
                await self.apply_manual_power(serial_number, message_type == "POWER_ON")
            elif message_type == "SET_TEMP":
                await self.send_set_temp_command(serial_number, int(data["temp"]))
            elif message_type == "TEMP_PULSE":
                await self.send_pulse_command(serial_number, int(data.get("diff", 0)))
            elif message_type in ("LOCK", "UNLOCK"):
                await self.send_lock_command(serial_number, message_type == "LOCK")
            else:
                logger.debug(f"Unhandled observer message: {message_type}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed observer message {data}: {e}")
        except (DeviceNotConnected, DeviceCommandFailed) as e:
            logger.warning(f"Observer command {message_type} for {serial_number} failed: {e}")

    # Persistence helpers

    def _override_active(self, serial_number: str) -> bool:
        db = self.session_factory()
        try:
            device = db.query(Device).filter(Device.serial_number == serial_number).first()
            return bool(device and device.manual_override_until and device.manual_override_until > get_utc_datetime())
        finally:
            db.close()

    def _persist(self, serial_number: str, **fields) -> None:
        db = self.session_factory()
        try:
            device = db.query(Device).filter(Device.serial_number == serial_number).first()
            if not device:
                return
            for key, value in fields.items():
                setattr(device, key, value)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to persist telemetry for {serial_number}: {e}")
        finally:
            db.close()


device_bridge = DeviceBridge()


def get_bridge() -> DeviceBridge:
    return device_bridge

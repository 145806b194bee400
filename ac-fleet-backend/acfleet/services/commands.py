"""
Device commands collected during a transaction and sent after it commits.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from acfleet.services.errors import TransportError

logger = logging.getLogger(__name__)


class CommandBatch:
    def __init__(self, bridge):
        self.bridge = bridge
        self._pending: List[Tuple[str, Callable[[], Awaitable[Any]]]] = []

    def __len__(self):
        return len(self._pending)

    def power(self, serial_number: Optional[str], on: bool):
        if serial_number:
            self._pending.append((
                f"power {'on' if on else 'off'} -> {serial_number}",
                lambda: self.bridge.send_power_command(serial_number, on),
            ))

    def temperature_sync(self, serial_number: Optional[str], temperature: Optional[int]):
        if serial_number and temperature is not None:
            self._pending.append((
                f"temperature {temperature} -> {serial_number}",
                lambda: self.bridge.start_temperature_sync(serial_number, temperature),
            ))

    def status(self, serial_number: Optional[str], status: str, data: Optional[Dict[str, Any]] = None):
        if serial_number:
            self._pending.append((
                f"status '{status}' -> {serial_number}",
                lambda: self.bridge.send_event_status(serial_number, status, data or {}),
            ))

    def broadcast(self, message: Dict[str, Any]):
        self._pending.append((
            f"broadcast {message.get('type')}",
            lambda: self.bridge.broadcast(message),
        ))

    async def flush(self) -> List[str]:
        """Send everything in order; return warnings for what failed"""
        warnings = []
        pending, self._pending = self._pending, []
        for label, send in pending:
            try:
                await send()
            except TransportError as e:
                logger.warning(f"Device command failed ({label}): {e}")
                warnings.append(str(e))
            except Exception as e:
                logger.error(f"Unexpected error dispatching {label}: {e}")
                warnings.append(f"{label}: {e}")
        return warnings

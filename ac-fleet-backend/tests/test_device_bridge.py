"""Tests for the device bridge: session registry, commands and telemetry."""
from datetime import timedelta

import pytest

from acfleet.database import get_utc_datetime
from acfleet.models import Device
from acfleet.services.errors import DeviceCommandFailed, DeviceNotConnected

from conftest import FakeConnection


def device_record(db, tenancy) -> Device:
    db.expire_all()
    return db.get(Device, tenancy.device.id)


async def test_connect_restores_persisted_state(db, tenancy, bridge, observer):
    tenancy.device.is_on = True
    tenancy.device.temperature = 21
    tenancy.device.locked = True
    db.commit()

    connection = FakeConnection()
    await bridge.handle_device_message(connection, {"type": "DEVICE_CONNECTED", "serial": "AC-001"})

    assert bridge.is_connected("AC-001")
    assert connection.sent == [
        {"type": "POWER_ON"},
        {"type": "SET_TEMP", "temp": 21},
        {"type": "LOCK"},
    ]
    session = bridge.get_session("AC-001")
    assert (session.power, session.temperature, session.locked) == (True, 21, True)
    assert observer.of_type("CONNECTED")[0]["serial_number"] == "AC-001"


async def test_disconnect_removes_session(tenancy, bridge, device_conn, observer):
    await bridge.unregister_connection(device_conn)
    assert not bridge.is_connected("AC-001")
    assert observer.of_type("DISCONNECTED")
    with pytest.raises(DeviceNotConnected):
        await bridge.send_power_command("AC-001", True)


async def test_reconnect_replaces_session(tenancy, bridge, device_conn):
    replacement = FakeConnection()
    await bridge.register_device("AC-001", replacement)
    await bridge.send_power_command("AC-001", False)
    assert replacement.sent[-1] == {"type": "POWER_OFF"}
    assert device_conn.sent == []


async def test_commands_to_unknown_device_fail(bridge):
    with pytest.raises(DeviceNotConnected):
        await bridge.start_temperature_sync("NOPE", 22)


async def test_send_failure_is_a_transport_error(tenancy, bridge):
    await bridge.register_device("AC-001", FakeConnection(fail=True))
    with pytest.raises(DeviceCommandFailed):
        await bridge.send_lock_command("AC-001", True)


async def test_command_shapes(tenancy, bridge, device_conn):
    await bridge.start_temperature_sync("AC-001", 19)
    await bridge.send_pulse_command("AC-001", -2)
    await bridge.send_temperature_command("AC-001", "up", 3)
    await bridge.send_lock_command("AC-001", False)
    await bridge.request_room_temperature("AC-001")
    await bridge.send_event_status("AC-001", "event temp", {"event_id": 7, "temperature": 19})

    assert device_conn.sent == [
        {"type": "SET_TEMP", "temp": 19},
        {"type": "TEMP_PULSE", "diff": -2},
        {"type": "TEMP_PULSE", "diff": 3},
        {"type": "UNLOCK"},
        {"type": "REQUEST_ROOM_TEMP"},
        {"type": "EVENT_STATUS", "status": "event temp", "event_id": 7, "temperature": 19},
    ]


async def test_temp_update_persists_in_range_only(db, tenancy, bridge, device_conn, observer):
    await bridge.handle_device_message(device_conn, {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": 26})
    assert device_record(db, tenancy).temperature == 26

    await bridge.handle_device_message(device_conn, {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": 40})
    assert device_record(db, tenancy).temperature == 26
    assert bridge.get_session("AC-001").temperature == 40
    assert [m["temp"] for m in observer.of_type("TEMP_UPDATE")] == [26, 40]


async def test_power_update_persists(db, tenancy, bridge, device_conn, observer):
    await bridge.handle_device_message(device_conn, {"type": "POWER_UPDATE", "device_id": "AC-001", "power": 1})
    assert device_record(db, tenancy).is_on is True
    assert observer.of_type("POWER_UPDATE")[-1]["power"] == 1


async def test_power_echo_ignored_during_manual_override(db, tenancy, bridge, device_conn):
    delivered = await bridge.apply_manual_power("AC-001", True)
    assert delivered
    assert device_conn.sent[-1] == {"type": "POWER_ON"}

    await bridge.handle_device_message(device_conn, {"type": "POWER_UPDATE", "serial": "AC-001", "power": 0})
    assert device_record(db, tenancy).is_on is True

    device = device_record(db, tenancy)
    device.manual_override_until = get_utc_datetime() - timedelta(seconds=1)
    db.commit()
    await bridge.handle_device_message(device_conn, {"type": "POWER_UPDATE", "serial": "AC-001", "power": 0})
    assert device_record(db, tenancy).is_on is False


async def test_lock_update_persists(db, tenancy, bridge, device_conn):
    await bridge.handle_device_message(device_conn, {"type": "LOCK_UPDATE", "serial": "AC-001", "locked": 1})
    assert device_record(db, tenancy).locked is True


async def test_ir_violation_pulses_back_to_target(db, tenancy, bridge, device_conn, observer):
    await bridge.handle_device_message(device_conn, {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": 27})
    tenancy_device = device_record(db, tenancy)
    tenancy_device.temperature = 22
    db.commit()
    device_conn.sent.clear()

    await bridge.handle_device_message(device_conn, {"type": "IR_VIOLATION", "serial": "AC-001"})

    assert device_conn.sent == [{"type": "TEMP_PULSE", "diff": -5}]
    assert observer.of_type("IR_VIOLATION")[0]["diff"] == -5


async def test_ir_violation_without_drift_sends_nothing(tenancy, bridge, device_conn):
    await bridge.handle_device_message(device_conn, {"type": "IR_VIOLATION", "serial": "AC-001"})
    assert device_conn.sent == []


async def test_room_temperature_is_recorded(db, tenancy, bridge, device_conn, observer):
    await bridge.handle_device_message(device_conn, {"serial": "AC-001", "room_temp": 29.5})
    device = device_record(db, tenancy)
    assert device.room_temperature == 29.5
    assert device.last_room_temp_update is not None
    assert observer.of_type("ROOM_TEMPERATURE")[0]["room_temp"] == 29.5


async def test_messages_from_unregistered_devices_are_ignored(db, tenancy, bridge):
    stranger = FakeConnection()
    await bridge.handle_device_message(stranger, {"type": "POWER_UPDATE", "serial": "AC-001", "power": 1})
    assert device_record(db, tenancy).is_on is False


async def test_observer_commands_are_forwarded(db, tenancy, bridge, device_conn):
    await bridge.handle_observer_message({"type": "SET_TEMP", "serial": "AC-001", "temp": 20})
    await bridge.handle_observer_message({"type": "TEMP_PULSE", "serial": "AC-001", "diff": 2})
    await bridge.handle_observer_message({"type": "LOCK", "serial": "AC-001"})
    await bridge.handle_observer_message({"type": "POWER_OFF", "serial": "AC-001"})

    assert device_conn.types() == ["SET_TEMP", "TEMP_PULSE", "LOCK", "POWER_OFF"]
    assert device_record(db, tenancy).manual_override_until is not None


async def test_observer_commands_for_offline_devices_are_dropped(bridge):
    await bridge.handle_observer_message({"type": "POWER_ON", "serial": "AC-404"})


async def test_broadcast_drops_broken_observers(bridge):
    healthy, broken = FakeConnection(), FakeConnection(fail=True)
    bridge.add_observer(healthy)
    bridge.add_observer(broken)

    await bridge.broadcast({"type": "PING"})
    await bridge.broadcast({"type": "PING"})

    assert len(healthy.sent) == 2
    assert "timestamp" in healthy.sent[0]
    assert broken not in bridge._observers


@pytest.mark.parametrize("message", [
    {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": "warm"},
    {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": [24]},
    {"serial": "AC-001", "room_temp": "n/a"},
    {"serial": "AC-001", "room_temp": {"value": 30}},
])
async def test_malformed_telemetry_keeps_device_registered(db, tenancy, bridge, device_conn, observer, message):
    await bridge.handle_device_message(device_conn, message)

    assert bridge.is_connected("AC-001")
    device = device_record(db, tenancy)
    assert device.temperature == 24
    assert device.room_temperature is None
    assert observer.of_type("TEMP_UPDATE") == []
    assert observer.of_type("ROOM_TEMPERATURE") == []

    await bridge.handle_device_message(device_conn, {"type": "TEMP_UPDATE", "serial": "AC-001", "temp": 22})
    assert device_record(db, tenancy).temperature == 22

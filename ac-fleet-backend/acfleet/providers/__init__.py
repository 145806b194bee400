from .device_bridge import DeviceBridge, DeviceSession, device_bridge, get_bridge

__all__ = [
    "DeviceBridge",
    "DeviceSession",
    "device_bridge",
    "get_bridge",
]

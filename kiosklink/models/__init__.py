"""Value types shared by the kiosklink connection and sensor components."""
from .device_address import DEFAULT_ADB_PORT, DeviceAddress
from .device_status import BatteryInfo, DeviceStatus, SensorSnapshot

__all__ = [
    "DEFAULT_ADB_PORT",
    "DeviceAddress",
    "DeviceStatus",
    "BatteryInfo",
    "SensorSnapshot",
]

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class DeviceStatus:
    """On-demand aggregate of the tablet's state.

    Fields that could not be queried keep their zero value; the snapshot is
    never cached or persisted.
    """
    connected: bool = False
    screen_on: bool = False
    battery_level: int = 0
    battery_charging: bool = False
    brightness: int = 0
    screen_timeout: int = 0
    light_level: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "screenOn": self.screen_on,
            "batteryLevel": self.battery_level,
            "batteryCharging": self.battery_charging,
            "brightness": self.brightness,
            "screenTimeout": self.screen_timeout,
            "lightLevel": self.light_level,
        }


@dataclass
class BatteryInfo:
    level: int = 0
    charging: bool = False


@dataclass
class SensorSnapshot:
    """Latest presence and ambient-light readings; ``None`` when unreadable."""
    near: Optional[bool] = None
    light_level: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"near": self.near, "lightLevel": self.light_level}

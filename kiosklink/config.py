"""Environment-driven settings for the CLI and HTTP API."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from kiosklink.models import DeviceAddress

T = TypeVar("T")

DEFAULT_ADB_PATH = os.getenv("KIOSKLINK_DEFAULT_ADB_PATH", "adb")


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _read(source: Mapping[str, str], name: str, convert: Callable[[str], T], default: T) -> T:
    raw = source.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return convert(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name}: {exc}") from exc


@dataclass
class Settings:
    device: Optional[str] = None
    adb_path: str = DEFAULT_ADB_PATH
    command_timeout: float = 10.0
    health_interval: float = 10.0
    proximity_interval: float = 1.0
    brightness_interval: float = 5.0
    min_brightness: int = 10
    max_brightness: int = 255
    auto_brightness: bool = True
    metrics_log: Optional[str] = None

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> "Settings":
        source = os.environ if env is None else env
        settings = Settings(
            device=_read(source, "KIOSKLINK_DEVICE", str, None),
            adb_path=_read(source, "KIOSKLINK_ADB_PATH", str, DEFAULT_ADB_PATH),
            command_timeout=_read(source, "KIOSKLINK_COMMAND_TIMEOUT", float, 10.0),
            health_interval=_read(source, "KIOSKLINK_HEALTH_INTERVAL", float, 10.0),
            proximity_interval=_read(source, "KIOSKLINK_PROXIMITY_INTERVAL", float, 1.0),
            brightness_interval=_read(source, "KIOSKLINK_BRIGHTNESS_INTERVAL", float, 5.0),
            min_brightness=_read(source, "KIOSKLINK_MIN_BRIGHTNESS", int, 10),
            max_brightness=_read(source, "KIOSKLINK_MAX_BRIGHTNESS", int, 255),
            auto_brightness=_read(source, "KIOSKLINK_AUTO_BRIGHTNESS", _parse_bool, True),
            metrics_log=_read(source, "KIOSKLINK_METRICS_LOG", str, None),
        )
        for name in ("command_timeout", "health_interval", "proximity_interval", "brightness_interval"):
            if getattr(settings, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return settings

    def device_address(self) -> DeviceAddress:
        if not self.device:
            raise ValueError("no device configured; set KIOSKLINK_DEVICE or pass --device")
        return DeviceAddress.parse(self.device)


__all__ = ["Settings", "DEFAULT_ADB_PATH"]

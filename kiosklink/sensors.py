"""Shell commands and parsers for the tablet's sensor and settings dumps."""
from __future__ import annotations

import logging
import math
from typing import List

from kiosklink.errors import SensorParseError
from kiosklink.models import BatteryInfo

logger = logging.getLogger(__name__)

PROXIMITY_COMMAND = "dumpsys sensorservice | grep -A2 'Proximity Sensor:' | tail -1"
LIGHT_COMMAND = "dumpsys sensorservice | grep -A2 'Light Sensor:' | tail -1"
BATTERY_COMMAND = "dumpsys battery"
WAKEFULNESS_COMMAND = "dumpsys power | grep mWakefulness"
BRIGHTNESS_SETTING = "screen_brightness"
BRIGHTNESS_MODE_SETTING = "screen_brightness_mode"
SCREEN_TIMEOUT_SETTING = "screen_off_timeout"

# Battery "status:" codes that count as charging (2 = charging, 5 = full).
CHARGING_STATUSES = frozenset({2, 5})
NEAR_THRESHOLD = 1.0


def parse_sensor_values(output: str) -> List[float]:
    """Return the readings from a line like ``1 (ts=12.3) 5.00, 0.00, 0.00,``."""
    _, sep, tail = output.partition(")")
    if not sep:
        raise SensorParseError(f"unexpected sensor output: {output!r}", output)
    first, *rest = (chunk.strip() for chunk in tail.split(","))
    try:
        values: List[float] = [float(first)]
    except ValueError as exc:
        raise SensorParseError(f"no sensor value in {output!r}", output) from exc
    for chunk in rest:
        if not chunk:
            continue
        try:
            values.append(float(chunk))
        except ValueError:
            break
    if not all(math.isfinite(value) for value in values):
        raise SensorParseError(f"non-finite sensor value in {output!r}", output)
    return values


def parse_proximity(output: str) -> bool:
    """True when something is near the sensor."""
    return parse_sensor_values(output)[0] < NEAR_THRESHOLD


def parse_light_level(output: str) -> float:
    return parse_sensor_values(output)[0]


def parse_battery(output: str) -> BatteryInfo:
    info = BatteryInfo()
    for line in output.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        key = key.strip()
        if key not in ("level", "status"):
            continue
        try:
            number = int(value.strip())
        except ValueError:
            logger.debug("Ignoring unparseable battery %s: %r", key, value)
            continue
        if key == "level":
            info.level = number
        else:
            info.charging = number in CHARGING_STATUSES
    return info


def parse_int(output: str) -> int:
    text = output.strip()
    try:
        return int(text)
    except ValueError as exc:
        raise SensorParseError(f"expected an integer, got {text!r}", output) from exc


def parse_wakefulness(output: str) -> bool:
    return "Awake" in output


__all__ = [
    "PROXIMITY_COMMAND",
    "LIGHT_COMMAND",
    "BATTERY_COMMAND",
    "WAKEFULNESS_COMMAND",
    "BRIGHTNESS_SETTING",
    "BRIGHTNESS_MODE_SETTING",
    "SCREEN_TIMEOUT_SETTING",
    "parse_sensor_values",
    "parse_proximity",
    "parse_light_level",
    "parse_battery",
    "parse_int",
    "parse_wakefulness",
]

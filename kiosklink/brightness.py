"""Ambient-light driven screen brightness."""
from __future__ import annotations

import logging
import threading
from typing import Optional, TYPE_CHECKING

from kiosklink.errors import KioskLinkError
from kiosklink.loop import PollingLoop
from kiosklink.metrics import MetricsLogger, record

if TYPE_CHECKING:  # pragma: no cover - typing only
    from kiosklink.connection import ConnectionManager

logger = logging.getLogger(__name__)

FULL_SCALE_LUX = 1000.0


class BrightnessController(PollingLoop):
    """Map the light sensor reading onto the screen brightness every tick.

    The mapping is a linear ramp from ``min_brightness`` at 0 lux to
    ``max_brightness`` at :data:`FULL_SCALE_LUX` and above. Toggling
    :meth:`set_enabled` is safe from any thread and applies from the next tick.
    """

    def __init__(
        self,
        manager: "ConnectionManager",
        interval: float = 5.0,
        min_brightness: int = 10,
        max_brightness: int = 255,
        *,
        enabled: bool = True,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        super().__init__(interval, name="brightness-controller", metrics=metrics)
        self.min_brightness = max(0, min(255, int(min_brightness)))
        self.max_brightness = max(0, min(255, int(max_brightness)))
        if self.min_brightness > self.max_brightness:
            raise ValueError("min_brightness must not exceed max_brightness")
        self.manager = manager
        self._enabled = enabled
        self._enabled_lock = threading.Lock()
        self.last_applied: Optional[int] = None

    @property
    def enabled(self) -> bool:
        with self._enabled_lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._enabled_lock:
            self._enabled = bool(enabled)

    def lux_to_brightness(self, lux: float) -> int:
        if lux <= 0:
            return self.min_brightness
        ratio = min(lux / FULL_SCALE_LUX, 1.0)
        brightness = self.min_brightness + int((self.max_brightness - self.min_brightness) * ratio)
        return max(self.min_brightness, min(self.max_brightness, brightness))

    async def tick(self) -> None:
        if not self.enabled:
            return
        try:
            lux = await self.manager.get_light_level()
            target = self.lux_to_brightness(lux)
            applied = await self.manager.set_brightness(target)
        except KioskLinkError as exc:
            logger.debug("Brightness tick failed: %s", exc)
            return
        if applied != self.last_applied:
            logger.debug("Brightness %d applied for %.1f lux", applied, lux)
        self.last_applied = applied
        await record(self.metrics, "brightness_applied", status="ok", value=float(applied), extra={"lux": lux})


__all__ = ["BrightnessController", "FULL_SCALE_LUX"]

"""Edge-triggered presence detection on top of the connection manager."""
from __future__ import annotations

import logging
from typing import Callable, Optional, TYPE_CHECKING

from kiosklink.errors import KioskLinkError
from kiosklink.events import Callback, CallbackRegistry
from kiosklink.loop import PollingLoop
from kiosklink.metrics import MetricsLogger, record

if TYPE_CHECKING:  # pragma: no cover - typing only
    from kiosklink.connection import ConnectionManager

logger = logging.getLogger(__name__)


class ProximityMonitor(PollingLoop):
    """Poll the proximity sensor and notify on far/near transitions.

    Approach subscribers fire only when a reading flips from far to near and
    depart subscribers only on near to far. Subscribers run on the monitor's
    own task, so a slow subscriber delays the next poll.
    """

    def __init__(
        self,
        manager: "ConnectionManager",
        interval: float = 1.0,
        *,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        super().__init__(interval, name="proximity-monitor", metrics=metrics)
        self.manager = manager
        self._last_near = False
        self._approach = CallbackRegistry("approach")
        self._depart = CallbackRegistry("depart")

    @property
    def last_near(self) -> bool:
        return self._last_near

    def on_approach(self, callback: Callback) -> Callable[[], None]:
        return self._approach.subscribe(callback)

    def on_depart(self, callback: Callback) -> Callable[[], None]:
        return self._depart.subscribe(callback)

    async def tick(self) -> None:
        try:
            near = await self.manager.get_proximity()
        except KioskLinkError as exc:
            logger.debug("Proximity read failed, skipping tick: %s", exc)
            return

        if near and not self._last_near:
            logger.info("Proximity: someone approached")
            await record(self.metrics, "proximity_approach", status="ok")
            await self._approach.fire()
        elif not near and self._last_near:
            logger.info("Proximity: area clear")
            await record(self.metrics, "proximity_depart", status="ok")
            await self._depart.fire()
        self._last_near = near


__all__ = ["ProximityMonitor"]

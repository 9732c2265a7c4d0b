"""Wiring of the manager and its loops for the CLI and API entrypoints."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from kiosklink.brightness import BrightnessController
from kiosklink.config import Settings
from kiosklink.connection import ConnectionManager
from kiosklink.errors import KioskLinkError
from kiosklink.executor import adb_runner
from kiosklink.metrics import MetricsLogger
from kiosklink.proximity import ProximityMonitor

logger = logging.getLogger(__name__)


def build_metrics(settings: Settings) -> Optional[MetricsLogger]:
    if not settings.metrics_log:
        return None
    return MetricsLogger(settings.metrics_log, static_extra={"device": settings.device})


def build_manager(settings: Settings, *, metrics: Optional[MetricsLogger] = None) -> ConnectionManager:
    return ConnectionManager(
        settings.device_address(),
        runner=adb_runner(settings.adb_path),
        metrics=metrics,
        command_timeout=settings.command_timeout,
    )


@dataclass
class KioskRuntime:
    """The health loop plus both sensor loops for one device."""

    manager: ConnectionManager
    settings: Settings
    metrics: Optional[MetricsLogger] = None
    proximity: ProximityMonitor = field(init=False)
    brightness: BrightnessController = field(init=False)
    _unsubscribers: List[Callable[[], None]] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        self.proximity = ProximityMonitor(
            self.manager,
            self.settings.proximity_interval,
            metrics=self.metrics,
        )
        self.brightness = BrightnessController(
            self.manager,
            self.settings.brightness_interval,
            self.settings.min_brightness,
            self.settings.max_brightness,
            enabled=self.settings.auto_brightness,
            metrics=self.metrics,
        )

    @property
    def running(self) -> bool:
        return self.manager.monitor_running or self.proximity.running or self.brightness.running

    def wake_on_approach(self) -> None:
        self._unsubscribers.append(self.proximity.on_approach(self._guarded(self.manager.wake_screen, "wake")))

    def sleep_on_depart(self) -> None:
        self._unsubscribers.append(self.proximity.on_depart(self._guarded(self.manager.sleep_screen, "sleep")))

    def start(self) -> List[asyncio.Task[None]]:
        return [
            self.manager.start_connection_monitor(self.settings.health_interval),
            self.proximity.start(),
            self.brightness.start(),
        ]

    async def stop(self) -> None:
        self.manager.stop_connection_monitor()
        self.proximity.stop()
        self.brightness.stop()
        await self.manager.wait_connection_monitor()
        await self.proximity.wait_stopped()
        await self.brightness.wait_stopped()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    @staticmethod
    def _guarded(action: Callable[[], Awaitable[None]], label: str) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            try:
                await action()
            except KioskLinkError as exc:
                logger.warning("Screen %s on proximity change failed: %s", label, exc)

        return _run


__all__ = ["KioskRuntime", "build_manager", "build_metrics"]

"""Connection manager for the kiosk tablet: actuation, status and self-healing."""
from __future__ import annotations

import asyncio
import logging
import threading
from time import monotonic
from typing import Awaitable, Callable, Optional, TypeVar, Union

from kiosklink import sensors
from kiosklink.errors import AddressChangeError, CommandError, KioskLinkError
from kiosklink.events import Callback, CallbackRegistry
from kiosklink.executor import CommandExecutor, CommandRunner
from kiosklink.loop import PollingLoop
from kiosklink.metrics import MetricsLogger, record
from kiosklink.models import BatteryInfo, DeviceAddress, DeviceStatus, SensorSnapshot
from kiosklink.portscan import PortScanner

logger = logging.getLogger(__name__)

T = TypeVar("T")
PortScanFn = Callable[[str], Awaitable[int]]

BRIGHTNESS_MIN = 0
BRIGHTNESS_MAX = 255
_CONNECT_FAILURE_MARKERS = ("failed", "unable", "cannot")


class ConnectionManager:
    """Own one device address and keep it reachable.

    All remote commands go through a single :class:`CommandExecutor`, so at
    most one command is in flight at a time. The cached connection flag sits
    behind its own lock and can be read from any thread without waiting on a
    running command.
    """

    def __init__(
        self,
        address: Union[DeviceAddress, str],
        *,
        executor: Optional[CommandExecutor] = None,
        runner: Optional[CommandRunner] = None,
        port_scanner: Optional[PortScanFn] = None,
        metrics: Optional[MetricsLogger] = None,
        clock: Callable[[], float] = monotonic,
        command_timeout: float = 10.0,
        rediscovery_threshold: int = 3,
        rediscovery_interval: float = 60.0,
        scan_timeout: float = 30.0,
    ) -> None:
        self.metrics = metrics
        self._executor = executor or CommandExecutor(
            DeviceAddress.parse(address),
            runner=runner,
            timeout=command_timeout,
            metrics=metrics,
        )
        self._port_scanner: PortScanFn = port_scanner or PortScanner().scan
        self._clock = clock
        self.rediscovery_threshold = max(1, rediscovery_threshold)
        self.rediscovery_interval = max(0.0, rediscovery_interval)
        self.scan_timeout = max(0.1, scan_timeout)

        self._state_lock = threading.Lock()
        self._connected = False
        self._failed_attempts = 0
        self._last_rediscovery: Optional[float] = None
        self._reconnected = CallbackRegistry("reconnect")
        self._monitor: Optional[ConnectionMonitor] = None

    # ------------------------------------------------------------------
    # Address and state
    # ------------------------------------------------------------------
    @property
    def address(self) -> DeviceAddress:
        return self._executor.address

    def get_address(self) -> DeviceAddress:
        return self._executor.address

    @property
    def host(self) -> str:
        return self._executor.address.host

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    def is_ready(self) -> bool:
        """Last connection state observed by a live check; no I/O, may be stale."""
        with self._state_lock:
            return self._connected

    def _set_connected(self, connected: bool) -> None:
        with self._state_lock:
            self._connected = connected

    async def set_address(self, address: Union[DeviceAddress, str]) -> None:
        """Switch to ``address`` or raise :class:`AddressChangeError` and keep the old one."""
        requested = DeviceAddress.parse(address)
        self._set_connected(False)
        previous = await self._executor.replace_address(requested)

        try:
            connected = await self._try_connect()
        except BaseException:
            # Cancelled or crashed mid-connect: the unverified address must not stick.
            self._set_connected(False)
            await asyncio.shield(self._executor.replace_address(previous))
            logger.warning("Address change to %s interrupted; keeping %s", requested, previous)
            raise

        if connected:
            logger.info("Device address changed from %s to %s", previous, requested)
            await self._record("address_change", "ok", extra={"previous": str(previous)})
            return

        await self._executor.replace_address(previous)
        logger.warning("Could not connect to %s; keeping %s", requested, previous)
        await self._record("address_change", "error", extra={"requested": str(requested)})
        raise AddressChangeError(requested, previous)

    async def connect(self) -> None:
        out = await self._executor.connect()
        lowered = out.lower()
        if any(marker in lowered for marker in _CONNECT_FAILURE_MARKERS):
            # adb exits 0 even when the connection is refused.
            raise CommandError(f"adb connect {self.address}: {out}", args=("connect", str(self.address)))

    async def is_connected(self) -> bool:
        """Live round trip; every failure counts as disconnected."""
        try:
            out = await self._executor.run("get-state")
        except KioskLinkError:
            return False
        return "device" in out

    async def _try_connect(self) -> bool:
        try:
            await self.connect()
        except KioskLinkError as exc:
            logger.debug("Connect to %s failed: %s", self.address, exc)
            return False
        if await self.is_connected():
            self._set_connected(True)
            return True
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_proximity(self) -> bool:
        return sensors.parse_proximity(await self._executor.shell(sensors.PROXIMITY_COMMAND))

    async def get_light_level(self) -> float:
        return sensors.parse_light_level(await self._executor.shell(sensors.LIGHT_COMMAND))

    async def get_battery(self) -> BatteryInfo:
        return sensors.parse_battery(await self._executor.shell(sensors.BATTERY_COMMAND))

    async def is_screen_on(self) -> bool:
        return sensors.parse_wakefulness(await self._executor.shell(sensors.WAKEFULNESS_COMMAND))

    async def get_brightness(self) -> int:
        return sensors.parse_int(await self._get_setting(sensors.BRIGHTNESS_SETTING))

    async def get_screen_timeout(self) -> int:
        """Screen-off timeout in seconds (the device stores milliseconds)."""
        return sensors.parse_int(await self._get_setting(sensors.SCREEN_TIMEOUT_SETTING)) // 1000

    async def get_status(self) -> DeviceStatus:
        status = DeviceStatus()
        status.connected = await self.is_connected()
        if not status.connected:
            return status

        status.screen_on = await self._best_effort("screen state", self.is_screen_on, False)
        battery = await self._best_effort("battery", self.get_battery, BatteryInfo())
        status.battery_level = battery.level
        status.battery_charging = battery.charging
        status.brightness = await self._best_effort("brightness", self.get_brightness, 0)
        status.screen_timeout = await self._best_effort("screen timeout", self.get_screen_timeout, 0)
        status.light_level = await self._best_effort("light level", self.get_light_level, 0.0)
        return status

    async def get_sensor_snapshot(self) -> SensorSnapshot:
        return SensorSnapshot(
            near=await self._best_effort("proximity", self.get_proximity, None),
            light_level=await self._best_effort("light level", self.get_light_level, None),
        )

    async def _best_effort(self, label: str, query: Callable[[], Awaitable[T]], default: T) -> T:
        try:
            return await query()
        except KioskLinkError as exc:
            logger.debug("Status query for %s failed: %s", label, exc)
            return default

    # ------------------------------------------------------------------
    # Actuators
    # ------------------------------------------------------------------
    async def wake_screen(self) -> None:
        await self._executor.shell("input keyevent KEYCODE_WAKEUP")

    async def sleep_screen(self) -> None:
        await self._executor.shell("input keyevent KEYCODE_SLEEP")

    async def set_brightness(self, level: int) -> int:
        """Apply ``level`` clamped to 0..255 and return the applied value."""
        applied = max(BRIGHTNESS_MIN, min(BRIGHTNESS_MAX, int(level)))
        await self._put_setting(sensors.BRIGHTNESS_SETTING, applied)
        return applied

    async def set_auto_brightness(self, enabled: bool) -> None:
        await self._put_setting(sensors.BRIGHTNESS_MODE_SETTING, 1 if enabled else 0)

    async def set_screen_timeout(self, seconds: int) -> None:
        await self._put_setting(sensors.SCREEN_TIMEOUT_SETTING, max(0, int(seconds)) * 1000)

    async def _get_setting(self, name: str) -> str:
        return await self._executor.shell(f"settings get system {name}")

    async def _put_setting(self, name: str, value: int) -> None:
        await self._executor.shell(f"settings put system {name} {value}")

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------
    def on_reconnect(self, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for every recovery; returns an unsubscribe handle."""
        return self._reconnected.subscribe(callback)

    async def check_connection(self) -> bool:
        """Run one health-check tick and return whether the device is reachable."""
        was_connected = self.is_ready()
        connected = await self.is_connected()
        self._set_connected(connected)
        await self._record("health_check", "ok" if connected else "down")

        if connected:
            self._failed_attempts = 0
            return True

        if was_connected:
            logger.warning("Lost connection to %s", self.address)
        self._failed_attempts += 1

        if await self._try_connect():
            self._failed_attempts = 0
            logger.info("%s to %s", "Reconnected" if was_connected else "Connected", self.address)
            await self._record("reconnect", "ok", extra={"via": "direct"})
            await self._reconnected.fire()
            return True

        if self._rediscovery_due():
            return await self._rediscover()
        return False

    def _rediscovery_due(self) -> bool:
        if self._failed_attempts < self.rediscovery_threshold:
            return False
        if self._last_rediscovery is None:
            return True
        return self._clock() - self._last_rediscovery >= self.rediscovery_interval

    async def _rediscover(self) -> bool:
        self._last_rediscovery = self._clock()
        host = self.host
        logger.warning(
            "Connection to %s failed %d times, scanning %s for a new port",
            self.address,
            self._failed_attempts,
            host,
        )
        try:
            port = await asyncio.wait_for(self._port_scanner(host), timeout=self.scan_timeout)
        except asyncio.TimeoutError:
            logger.warning("Port scan of %s timed out after %.0fs", host, self.scan_timeout)
            await self._record("rediscovery", "timeout")
            return False
        except KioskLinkError as exc:
            logger.warning("Port scan of %s failed: %s", host, exc)
            await self._record("rediscovery", "error", message=str(exc))
            return False

        await self._record("rediscovery", "ok", value=float(port))
        try:
            await self.set_address(self.address.with_port(port))
        except AddressChangeError as exc:
            logger.warning("Rediscovered port %d but could not connect: %s", port, exc)
            return False

        self._failed_attempts = 0
        await self._record("reconnect", "ok", extra={"via": "rediscovery", "port": port})
        await self._reconnected.fire()
        return True

    @property
    def monitor_running(self) -> bool:
        return self._monitor is not None and self._monitor.running

    def start_connection_monitor(self, interval: float = 10.0) -> asyncio.Task[None]:
        if self._monitor is None or not self._monitor.running:
            self._monitor = ConnectionMonitor(self, interval)
        return self._monitor.start()

    def stop_connection_monitor(self) -> None:
        if self._monitor is not None:
            self._monitor.stop()

    async def wait_connection_monitor(self) -> None:
        if self._monitor is not None:
            await self._monitor.wait_stopped()

    async def run_connection_monitor(self, interval: float = 10.0) -> None:
        self._monitor = ConnectionMonitor(self, interval)
        await self._monitor.run()

    async def _record(
        self,
        event: str,
        status: str,
        *,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> None:
        payload = {"address": str(self.address)}
        if extra:
            payload.update(extra)
        await record(self.metrics, event, status=status, value=value, message=message, extra=payload)


class ConnectionMonitor(PollingLoop):
    """Health-check loop: the only writer of the manager's address and state."""

    def __init__(self, manager: ConnectionManager, interval: float) -> None:
        super().__init__(interval, name="connection-monitor", metrics=manager.metrics)
        self.manager = manager

    async def on_start(self) -> None:
        if await self.manager._try_connect():
            logger.info("Connected to %s", self.manager.address)

    async def tick(self) -> None:
        await self.manager.check_connection()


__all__ = [
    "ConnectionManager",
    "ConnectionMonitor",
    "PortScanFn",
    "BRIGHTNESS_MIN",
    "BRIGHTNESS_MAX",
]

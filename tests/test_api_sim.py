"""Integration-style tests for the FastAPI layer using a scripted adb."""
from __future__ import annotations

import asyncio
import time
import unittest
from typing import List, Optional
from unittest.mock import patch

from _fake_adb import FakeAdb
from fastapi.testclient import TestClient

import kiosklink.api as api_module
from kiosklink.config import Settings
from kiosklink.connection import ConnectionManager
from kiosklink.errors import NoOpenPortError
from kiosklink.sensors import BATTERY_COMMAND, PROXIMITY_COMMAND, WAKEFULNESS_COMMAND

HOME = "10.0.0.5:5555"


class _FakeScanner:
    port: Optional[int] = 41234
    targets: List[str] = []

    def __init__(self, *args, **kwargs) -> None:
        pass

    async def scan(self, ip: str) -> int:
        await asyncio.sleep(0)
        _FakeScanner.targets.append(ip)
        if _FakeScanner.port is None:
            raise NoOpenPortError(f"no open port on {ip}")
        return _FakeScanner.port


class ApiSimulationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.fake = FakeAdb(up=[HOME])
        self.settings = Settings(
            device=HOME,
            health_interval=0.05,
            proximity_interval=0.05,
            brightness_interval=0.05,
        )
        api_module._settings = self.settings
        api_module._manager = ConnectionManager(HOME, runner=self.fake)
        api_module._metrics = None
        api_module._runtime = None
        api_module._log_path = None
        _FakeScanner.port = 41234
        _FakeScanner.targets = []
        self.client = TestClient(api_module.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        if api_module._runtime is not None:
            self.client.post("/monitor/stop")
        self.client.__exit__(None, None, None)
        api_module._settings = None
        api_module._manager = None
        api_module._runtime = None
        api_module._log_path = None

    def test_health_reports_cached_readiness(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertFalse(body["ready"])

    def test_status_payload(self) -> None:
        self.fake.shell[WAKEFULNESS_COMMAND] = "mWakefulness=Asleep"
        self.fake.shell[BATTERY_COMMAND] = "  level: 91\n  status: 5\n"
        self.fake.settings["screen_brightness"] = "77"

        body = self.client.get("/status").json()

        self.assertTrue(body["connected"])
        self.assertFalse(body["screenOn"])
        self.assertEqual(body["batteryLevel"], 91)
        self.assertTrue(body["batteryCharging"])
        self.assertEqual(body["brightness"], 77)

    def test_status_of_unreachable_device_is_still_200(self) -> None:
        self.fake.up.clear()
        resp = self.client.get("/status")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["connected"])

    def test_sensors_endpoint(self) -> None:
        self.fake.shell[PROXIMITY_COMMAND] = " 3 (ts=1.0) 0.00, 0.00,"
        body = self.client.get("/sensors").json()
        self.assertTrue(body["near"])
        self.assertIsNone(body["lightLevel"])

    def test_brightness_is_clamped(self) -> None:
        resp = self.client.post("/brightness", params={"level": 400})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["brightness"], 255)
        self.assertEqual(self.fake.settings["screen_brightness"], "255")

    def test_screen_timeout_rejects_negative(self) -> None:
        self.assertEqual(self.client.post("/screen-timeout", params={"seconds": -1}).status_code, 422)
        resp = self.client.post("/screen-timeout", params={"seconds": 30})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.fake.settings["screen_off_timeout"], "30000")

    def test_actuator_failure_maps_to_bad_gateway(self) -> None:
        self.fake.up.clear()
        self.assertEqual(self.client.post("/screen/wake").status_code, 502)
        self.assertEqual(self.client.post("/auto-brightness", params={"enabled": True}).status_code, 502)

    def test_wake_and_sleep(self) -> None:
        self.assertEqual(self.client.post("/screen/wake").json()["screenOn"], True)
        self.assertEqual(self.client.post("/screen/sleep").json()["screenOn"], False)
        self.assertIn("input keyevent KEYCODE_WAKEUP", self.fake.shell_calls())

    def test_address_change_and_rollback(self) -> None:
        self.fake.up.add("10.0.0.5:41234")
        resp = self.client.post("/address", params={"address": "10.0.0.5:41234"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get("/address").json()["address"], "10.0.0.5:41234")

        resp = self.client.post("/address", params={"address": "10.0.0.9:5555"})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.client.get("/address").json()["address"], "10.0.0.5:41234")

        self.assertEqual(self.client.post("/address", params={"address": "host:bad"}).status_code, 400)

    def test_scan_defaults_to_device_host(self) -> None:
        with patch.object(api_module, "PortScanner", _FakeScanner):
            resp = self.client.post("/scan")
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.json(), {"ip": "10.0.0.5", "port": 41234})

            _FakeScanner.port = None
            self.assertEqual(self.client.post("/scan", params={"ip": "10.0.0.7"}).status_code, 404)

        self.assertEqual(_FakeScanner.targets, ["10.0.0.5", "10.0.0.7"])

    def test_monitor_lifecycle(self) -> None:
        self.assertEqual(self.client.get("/monitor/status").json(), {"status": "idle"})
        self.assertEqual(self.client.post("/monitor/auto-brightness", params={"enabled": False}).status_code, 409)

        resp = self.client.post("/monitor/start", params={"wake_on_approach": True})
        self.assertEqual(resp.json()["status"], "started")
        self.assertEqual(self.client.post("/monitor/start").json()["status"], "already-running")

        time.sleep(0.2)
        status = self.client.get("/monitor/status").json()
        self.assertEqual(status["status"], "running")
        self.assertTrue(status["ready"])
        self.assertTrue(status["autoBrightness"])

        resp = self.client.post("/monitor/auto-brightness", params={"enabled": False})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(self.client.get("/monitor/status").json()["autoBrightness"])

        self.assertEqual(self.client.post("/monitor/stop").json(), {"status": "stopped"})
        self.assertEqual(self.client.post("/monitor/stop").json(), {"status": "idle"})
        self.assertEqual(self.client.get("/monitor/status").json(), {"status": "idle"})


if __name__ == "__main__":
    unittest.main()

"""Simulation tests for ambient-light brightness control."""
from __future__ import annotations

import asyncio
import threading
import unittest
from typing import List, Union

from _fake_adb import FakeAdb

from kiosklink.brightness import BrightnessController
from kiosklink.connection import ConnectionManager
from kiosklink.errors import CommandError, SensorParseError
from kiosklink.sensors import LIGHT_COMMAND


class _FakeManager:
    def __init__(self, lux: Union[float, Exception] = 0.0) -> None:
        self.lux = lux
        self.applied: List[int] = []
        self.fail_set = False

    async def get_light_level(self) -> float:
        await asyncio.sleep(0)
        if isinstance(self.lux, Exception):
            raise self.lux
        return self.lux

    async def set_brightness(self, level: int) -> int:
        await asyncio.sleep(0)
        if self.fail_set:
            raise CommandError("device offline")
        self.applied.append(level)
        return level


class LuxMappingTest(unittest.TestCase):
    def setUp(self) -> None:
        self.controller = BrightnessController(_FakeManager(), min_brightness=10, max_brightness=255)  # type: ignore[arg-type]

    def test_dark_maps_to_minimum(self) -> None:
        for lux in (-5.0, 0.0):
            self.assertEqual(self.controller.lux_to_brightness(lux), 10)

    def test_full_scale_and_beyond_map_to_maximum(self) -> None:
        for lux in (1000.0, 1500.0, 100000.0):
            self.assertEqual(self.controller.lux_to_brightness(lux), 255)

    def test_ramp_is_linear_and_non_decreasing(self) -> None:
        self.assertEqual(self.controller.lux_to_brightness(500.0), 10 + int(245 * 0.5))
        values = [self.controller.lux_to_brightness(float(lux)) for lux in range(0, 1001, 5)]
        self.assertEqual(values, sorted(values))
        self.assertTrue(all(10 <= value <= 255 for value in values))

    def test_bounds_validation(self) -> None:
        with self.assertRaises(ValueError):
            BrightnessController(_FakeManager(), min_brightness=200, max_brightness=100)  # type: ignore[arg-type]
        clamped = BrightnessController(_FakeManager(), min_brightness=-10, max_brightness=400)  # type: ignore[arg-type]
        self.assertEqual((clamped.min_brightness, clamped.max_brightness), (0, 255))


class BrightnessControllerTest(unittest.IsolatedAsyncioTestCase):
    async def test_tick_applies_mapped_brightness(self) -> None:
        manager = _FakeManager(lux=250.0)
        controller = BrightnessController(manager, min_brightness=0, max_brightness=200)  # type: ignore[arg-type]

        await controller.tick()

        self.assertEqual(manager.applied, [50])
        self.assertEqual(controller.last_applied, 50)

    async def test_disabled_controller_skips_tick(self) -> None:
        manager = _FakeManager(lux=800.0)
        controller = BrightnessController(manager, enabled=False)  # type: ignore[arg-type]

        await controller.tick()
        self.assertEqual(manager.applied, [])

        controller.set_enabled(True)
        await controller.tick()
        self.assertEqual(len(manager.applied), 1)

    async def test_set_enabled_from_another_thread(self) -> None:
        controller = BrightnessController(_FakeManager())  # type: ignore[arg-type]
        worker = threading.Thread(target=controller.set_enabled, args=(False,))
        worker.start()
        worker.join()
        self.assertFalse(controller.enabled)

    async def test_failures_are_ignored_until_next_tick(self) -> None:
        manager = _FakeManager(lux=SensorParseError("garbled"))
        controller = BrightnessController(manager)  # type: ignore[arg-type]

        await controller.tick()
        self.assertIsNone(controller.last_applied)

        manager.lux = 1000.0
        manager.fail_set = True
        await controller.tick()
        self.assertIsNone(controller.last_applied)

        manager.fail_set = False
        await controller.tick()
        self.assertEqual(manager.applied, [255])

    async def test_non_finite_light_reading_is_skipped(self) -> None:
        fake = FakeAdb(up=["10.0.0.5:5555"])
        fake.shell[LIGHT_COMMAND] = [" 7 (ts=1.0) nan, 0.00,", " 8 (ts=2.0) 1000.00, 0.00,"]
        manager = ConnectionManager("10.0.0.5:5555", runner=fake)
        controller = BrightnessController(manager)

        await controller.tick()
        self.assertIsNone(controller.last_applied)
        self.assertNotIn("screen_brightness", fake.settings)

        await controller.tick()
        self.assertEqual(fake.settings["screen_brightness"], "255")

    async def test_loop_keeps_running_through_failures(self) -> None:
        manager = _FakeManager(lux=CommandError("offline"))
        controller = BrightnessController(manager, interval=0.01)  # type: ignore[arg-type]

        controller.start()
        await asyncio.sleep(0.03)
        manager.lux = 0.0
        await asyncio.sleep(0.05)
        controller.stop()
        await controller.wait_stopped()

        self.assertTrue(manager.applied)
        self.assertEqual(set(manager.applied), {10})


if __name__ == "__main__":
    unittest.main()

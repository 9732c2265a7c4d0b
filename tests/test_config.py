"""Tests for environment-driven settings."""
import unittest

from kiosklink.config import DEFAULT_ADB_PATH, Settings
from kiosklink.models import DeviceAddress
from kiosklink.runtime import build_metrics


class SettingsTest(unittest.TestCase):
    def test_defaults_from_empty_env(self) -> None:
        settings = Settings.from_env({})
        self.assertIsNone(settings.device)
        self.assertEqual(settings.adb_path, DEFAULT_ADB_PATH)
        self.assertEqual(settings.health_interval, 10.0)
        self.assertEqual(settings.proximity_interval, 1.0)
        self.assertEqual(settings.brightness_interval, 5.0)
        self.assertTrue(settings.auto_brightness)
        self.assertIsNone(settings.metrics_log)
        self.assertIsNone(build_metrics(settings))

    def test_values_are_parsed(self) -> None:
        settings = Settings.from_env(
            {
                "KIOSKLINK_DEVICE": "192.168.1.40:41234",
                "KIOSKLINK_HEALTH_INTERVAL": "2.5",
                "KIOSKLINK_MIN_BRIGHTNESS": "30",
                "KIOSKLINK_AUTO_BRIGHTNESS": "off",
                "KIOSKLINK_METRICS_LOG": "/tmp/kiosk.csv",
            }
        )
        self.assertEqual(settings.device_address(), DeviceAddress("192.168.1.40", 41234))
        self.assertEqual(settings.health_interval, 2.5)
        self.assertEqual(settings.min_brightness, 30)
        self.assertFalse(settings.auto_brightness)
        self.assertEqual(settings.metrics_log, "/tmp/kiosk.csv")

    def test_blank_values_use_defaults(self) -> None:
        settings = Settings.from_env({"KIOSKLINK_COMMAND_TIMEOUT": "  "})
        self.assertEqual(settings.command_timeout, 10.0)

    def test_invalid_value_names_variable(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            Settings.from_env({"KIOSKLINK_PROXIMITY_INTERVAL": "fast"})
        self.assertIn("KIOSKLINK_PROXIMITY_INTERVAL", str(ctx.exception))

        with self.assertRaises(ValueError) as ctx:
            Settings.from_env({"KIOSKLINK_AUTO_BRIGHTNESS": "maybe"})
        self.assertIn("KIOSKLINK_AUTO_BRIGHTNESS", str(ctx.exception))

    def test_intervals_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            Settings.from_env({"KIOSKLINK_HEALTH_INTERVAL": "0"})

    def test_device_address_requires_device(self) -> None:
        with self.assertRaises(ValueError):
            Settings().device_address()


if __name__ == "__main__":
    unittest.main()

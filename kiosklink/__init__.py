"""Connectivity and sensor control for an adb-managed kiosk tablet."""

__version__ = "0.1.0"

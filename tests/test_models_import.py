"""Smoke tests for the device models."""
import pytest

from kiosklink.models import DEFAULT_ADB_PORT, BatteryInfo, DeviceAddress, DeviceStatus, SensorSnapshot


def test_address_parsing():
    addr = DeviceAddress.parse("192.168.1.40:41234")
    assert addr == DeviceAddress("192.168.1.40", 41234)
    assert str(addr) == "192.168.1.40:41234"
    assert DeviceAddress.parse("kiosk.local").port == DEFAULT_ADB_PORT
    assert DeviceAddress.parse(addr) is addr
    assert str(addr.with_port(5555)) == "192.168.1.40:5555"
    assert addr.port == 41234


@pytest.mark.parametrize("value", ["host:notaport", "host:0", "host:70000"])
def test_bad_addresses_rejected(value):
    with pytest.raises(ValueError):
        DeviceAddress.parse(value)


def test_status_payload_keys():
    status = DeviceStatus(connected=True, screen_on=True, battery_level=80, brightness=120, screen_timeout=60)
    payload = status.to_dict()
    assert payload["connected"] is True
    assert payload["screenOn"] is True
    assert payload["batteryLevel"] == 80
    assert payload["screenTimeout"] == 60
    assert payload["lightLevel"] == 0.0
    assert DeviceStatus().to_dict()["batteryCharging"] is False


def test_battery_and_snapshot_defaults():
    assert BatteryInfo() == BatteryInfo(level=0, charging=False)
    assert SensorSnapshot().to_dict() == {"near": None, "lightLevel": None}

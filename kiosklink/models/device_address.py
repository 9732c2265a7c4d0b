from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Union

DEFAULT_ADB_PORT = 5555


@dataclass(frozen=True)
class DeviceAddress:
    """Host/port pair identifying the device's remote-control endpoint."""
    host: str
    port: int = DEFAULT_ADB_PORT

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host must not be empty")
        if not 0 < int(self.port) < 65536:
            raise ValueError(f"port out of range: {self.port}")

    @classmethod
    def parse(cls, value: Union[str, "DeviceAddress"]) -> "DeviceAddress":
        """Parse ``host:port``; a bare host gets the default adb port."""
        if isinstance(value, DeviceAddress):
            return value
        text = value.strip()
        host, sep, port = text.rpartition(":")
        if not sep or not host:
            return cls(host=text)
        try:
            return cls(host=host, port=int(port))
        except ValueError as exc:
            raise ValueError(f"invalid device address {value!r}: {exc}") from exc

    def with_port(self, port: int) -> "DeviceAddress":
        return replace(self, port=port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

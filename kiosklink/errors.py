"""Exception hierarchy shared across kiosklink components."""
from __future__ import annotations

from typing import Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from kiosklink.models.device_address import DeviceAddress


class KioskLinkError(Exception):
    """Base class for every error raised by kiosklink."""


class CommandError(KioskLinkError):
    """A remote command could not be executed or exited unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        args: Sequence[str] = (),
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command_args = tuple(args)
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(CommandError):
    """A remote command did not finish within its timeout."""


class SensorParseError(KioskLinkError):
    """A sensor or settings dump did not have the expected textual shape."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class AddressChangeError(KioskLinkError):
    """Switching the device address failed; the previous address was restored."""

    def __init__(self, requested: "DeviceAddress", restored: "DeviceAddress") -> None:
        super().__init__(f"failed to connect to {requested}; keeping {restored}")
        self.requested = requested
        self.restored = restored


class NoOpenPortError(KioskLinkError):
    """No listening remote-control port was found in the scanned range."""


class PortScanTimeoutError(NoOpenPortError):
    """The port scan exhausted its time budget before any probe succeeded."""


__all__ = [
    "KioskLinkError",
    "CommandError",
    "CommandTimeoutError",
    "SensorParseError",
    "AddressChangeError",
    "NoOpenPortError",
    "PortScanTimeoutError",
]

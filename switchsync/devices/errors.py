"""Error kinds raised by the transports and caught by the sync loops.

- ``RemoteError``         — cloud request failed or reported a non-success message.
- ``LocalError``          — BLE scan, connect or actuation failed.
- ``DeviceNotFoundError`` — the target did not show up within the scan window.
- ``ConfigError``         — a Bot has neither switch nor press mode configured.

Anything else that escapes a transport is treated as an unknown error and
goes down the same fault path as ``RemoteError``.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error the device loops know how to report."""


class RemoteError(SyncError):
    """The SwitchBot cloud API could not serve the request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LocalError(SyncError):
    """The BLE radio could not complete the operation."""


class DeviceNotFoundError(LocalError):
    """No advertisement from the target address arrived during the scan."""

    def __init__(self, address: str) -> None:
        super().__init__(f"No device was found during scan: {address}")
        self.address = address


class ConfigError(SyncError):
    """The device is missing the configuration needed to build a command."""

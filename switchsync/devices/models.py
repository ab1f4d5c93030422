"""Device identity, role variants and state types.

Architecture
------------
- ``DeviceIdentity`` is immutable and created once per accessory.
- A device plays exactly one role, chosen from configuration at
  construction: ``BotRole`` (actuator) or ``ContactRole`` (sensor). Each
  role carries only the fields it needs.
- Observed state is role specific too: ``BotState`` / ``ContactState``.
  ``None`` fields mean "not known yet" and are never pushed to the host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from functools import cached_property
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Transport(str, Enum):
    """Which link a device is reached through."""
    LOCAL = "local"     # Direct BLE
    REMOTE = "remote"   # SwitchBot cloud API


class SyncStatus(str, Enum):
    """What a device's loops are currently doing with its mirror."""
    IDLE = "idle"
    REFRESH_IN_FLIGHT = "refresh_in_flight"
    WRITE_IN_FLIGHT = "write_in_flight"


class BotMode(str, Enum):
    """How a Bot is driven."""
    SWITCH = "switch"   # turnOn / turnOff, stateful
    PRESS = "press"     # momentary press, always reads back as off


class ContactSensorState(IntEnum):
    """HomeKit ContactSensorState values."""
    CONTACT_DETECTED = 0
    CONTACT_NOT_DETECTED = 1


class DeviceType(str, Enum):
    """Cloud ``deviceType`` values this package knows how to drive."""
    BOT = "Bot"
    CONTACT = "Contact Sensor"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceIdentity:
    """Who a device is. Never changes after discovery."""

    device_id: str
    name: str
    device_type: str
    hub_device_id: str | None = None

    @cached_property
    def ble_mac(self) -> str:
        """BLE hardware address derived from the id.

        ``1A23B456789A`` → ``1a:23:b4:56:78:9a``.
        """
        pairs = [self.device_id[i:i + 2] for i in range(0, len(self.device_id), 2)]
        return ":".join(pairs).lower()

    @classmethod
    def from_cloud(cls, d: dict[str, Any]) -> DeviceIdentity:
        return cls(
            device_id=d["deviceId"],
            name=d.get("deviceName", d["deviceId"]),
            device_type=d.get("deviceType", ""),
            hub_device_id=d.get("hubDeviceId") or None,
        )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BotRole:
    """Actuator role."""

    mode: BotMode | None    # None: neither device_switch nor device_press
    outlet: bool = True     # Outlet service (with OutletInUse) instead of Switch


@dataclass(frozen=True)
class ContactRole:
    """Sensor role. Read only, nothing to configure."""


DeviceRole = BotRole | ContactRole


# ---------------------------------------------------------------------------
# Observed state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BotState:
    """Last confirmed state of a Bot."""

    on: bool | None = None
    in_use: bool | None = None

    @property
    def known(self) -> bool:
        return self.on is not None


@dataclass(frozen=True)
class ContactState:
    """Last confirmed state of a Contact sensor."""

    contact: ContactSensorState | None = None
    motion: bool | None = None

    @property
    def known(self) -> bool:
        return self.contact is not None or self.motion is not None


ObservedState = BotState | ContactState


# ---------------------------------------------------------------------------
# Cloud payloads
# ---------------------------------------------------------------------------

@dataclass
class DeviceStatus:
    """Parsed ``GET /devices/{id}/status`` response."""

    status_code: int
    message: str
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.message == "success"

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DeviceStatus:
        body = d.get("body")
        return cls(
            status_code=int(d.get("statusCode", 0)),
            message=str(d.get("message", "")),
            body=body if isinstance(body, dict) else {},
        )


@dataclass(frozen=True)
class BotCommand:
    """Command object posted to ``/devices/{id}/commands``.

    deviceType  commandType  command    parameter
    Bot         "command"    "turnOff"  "default"   set to OFF state
    Bot         "command"    "turnOn"   "default"   set to ON state
    Bot         "command"    "press"    "default"   trigger press
    """

    command: str
    parameter: str = "default"
    command_type: str = "command"

    def to_payload(self) -> dict[str, str]:
        return {
            "commandType": self.command_type,
            "command": self.command,
            "parameter": self.parameter,
        }

"""In-memory state mirror for one device.

Holds what the host wants (``desired``), what the device last confirmed
(``observed``), and which loop currently owns the mirror (``sync_status``).

Ownership
---------
- ``desired`` is written by the host-facing ``set_*`` entry points and read
  by the write flush.
- ``observed`` is written by the refresh loop, the write flush and the BLE
  advertisement listener.
- ``sync_status`` arbitrates between the refresh loop and the write flush.
  It is a flag, not a lock: a refresh that finds a write in flight skips
  instead of waiting, and a refresh that loses the mirror to a write while
  awaiting I/O drops its result. ``generation`` tells one refresh from the
  next. All access happens on one event loop; a threaded
  port needs a per-device mutex here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from switchsync.devices.models import DeviceIdentity, ObservedState, SyncStatus

# Output port towards the host: (characteristic name, value) -> None
CharacteristicSink = Callable[[str, Any], None]


@dataclass(frozen=True)
class CharacteristicFault:
    """Value pushed to the host instead of a reading when a loop failed."""

    error: BaseException

    def __str__(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


@dataclass(frozen=True)
class MirrorSnapshot:
    """Immutable copy of a mirror, safe to hand to any caller."""

    device_id: str
    desired: bool | None
    observed: ObservedState
    sync_status: SyncStatus
    last_refreshed: float | None
    last_error: str | None


class StateMirror:
    """Desired vs observed state of a single device."""

    def __init__(self, identity: DeviceIdentity, observed: ObservedState) -> None:
        self.identity = identity
        self.desired: bool | None = None
        self.observed: ObservedState = observed
        self.sync_status = SyncStatus.IDLE
        self.generation = 0  # bumped on every ownership change
        self.last_refreshed: float | None = None  # time.monotonic()
        self.last_error: str | None = None

    # -- ownership -----------------------------------------------------------

    def begin_refresh(self) -> int | None:
        """Claim the mirror for a refresh.

        Returns the ownership generation to hand back to ``holds_refresh``
        and ``end_refresh``, or None if another loop holds the mirror.
        """
        if self.sync_status is not SyncStatus.IDLE:
            return None
        self.sync_status = SyncStatus.REFRESH_IN_FLIGHT
        self.generation += 1
        return self.generation

    def holds_refresh(self, generation: int) -> bool:
        """True while the refresh that got *generation* still owns the mirror."""
        return (
            self.sync_status is SyncStatus.REFRESH_IN_FLIGHT
            and self.generation == generation
        )

    def end_refresh(self, generation: int) -> None:
        # A write may have taken over while the refresh was awaiting I/O.
        if self.holds_refresh(generation):
            self.sync_status = SyncStatus.IDLE

    def begin_write(self) -> None:
        """Take the mirror for a write flush. Any running refresh loses it."""
        self.sync_status = SyncStatus.WRITE_IN_FLIGHT
        self.generation += 1

    def end_write(self) -> None:
        self.sync_status = SyncStatus.IDLE

    @property
    def write_in_flight(self) -> bool:
        return self.sync_status is SyncStatus.WRITE_IN_FLIGHT

    # -- state ---------------------------------------------------------------

    def apply_observed(self, state: ObservedState) -> None:
        self.observed = state
        self.last_refreshed = time.monotonic()
        self.last_error = None

    def record_error(self, exc: BaseException) -> None:
        self.last_error = f"{type(exc).__name__}: {exc}"

    @property
    def is_known(self) -> bool:
        """True once a transport has populated the observed state."""
        return self.observed.known

    @property
    def age(self) -> float | None:
        """Seconds since the observed state was last confirmed."""
        if self.last_refreshed is None:
            return None
        return time.monotonic() - self.last_refreshed

    def snapshot(self) -> MirrorSnapshot:
        return MirrorSnapshot(
            device_id=self.identity.device_id,
            desired=self.desired,
            observed=self.observed,
            sync_status=self.sync_status,
            last_refreshed=self.last_refreshed,
            last_error=self.last_error,
        )

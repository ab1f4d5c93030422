"""Per-device synchronization engine.

``DeviceSync`` keeps one device's ``StateMirror`` consistent with the real
device and pushes every change to the host through a ``CharacteristicSink``.
``ActuatorSync`` adds the write side for devices the host can drive.

Loops
-----
- Refresh tick (every ``refresh_rate`` seconds): pull observed state from the
  selected transport. Skipped, not queued, while another loop owns the
  mirror. A refresh that loses the mirror to a write while awaiting I/O
  drops its result.
- Secondary scan (local devices only, every ``refresh_rate * 60`` seconds):
  a long BLE discovery pass. Falls back to the cloud only when it fails.
- Write flush (actuators only, ``Debouncer``): ``request_write()`` signals
  arriving within ``push_debounce`` seconds collapse into one outbound
  command.

Failure handling
----------------
Every transport error is caught at the loop boundary, logged, recorded on the
mirror and pushed to the host as a ``CharacteristicFault``. A BLE read that
fails for any reason is retried once over the cloud. Nothing raised inside
one device's loops reaches another device or the host.

Subclasses implement the device-specific hooks: ``parse_status``,
``fetch_local``, ``characteristics`` and, for actuators, ``needs_push`` and
``push_changes``.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Awaitable

from loguru import logger

from switchsync.config.schema import Options
from switchsync.devices.ble import LocalTransport
from switchsync.devices.cloud import CloudTransport
from switchsync.devices.errors import LocalError, SyncError
from switchsync.devices.mirror import (
    CharacteristicFault,
    CharacteristicSink,
    MirrorSnapshot,
    StateMirror,
)
from switchsync.devices.models import (
    DeviceIdentity,
    DeviceRole,
    DeviceStatus,
    ObservedState,
    Transport,
)
from switchsync.devices.resilience import (
    Debouncer,
    PeriodicTimer,
    RetryPolicy,
    spawn,
)
from switchsync.devices.routing import select_transport

MANUFACTURER = "SwitchBot"
SECONDARY_SCAN_FACTOR = 60


class DeviceSync(abc.ABC):
    """Base class for one synchronized device. Read side only.

    Parameters
    ----------
    identity:
        Who the device is.
    role:
        Role variant chosen from configuration.
    options:
        Engine options (refresh rate, BLE ids, debounce, retries).
    sink:
        Output port receiving ``(characteristic, value)`` updates.
    cloud:
        Shared cloud transport.
    local:
        BLE transport override. By default a ``LocalTransport`` is created
        once when the device is in ``options.ble``.
    """

    model: str = ""
    tag: str = "Device"

    def __init__(
        self,
        identity: DeviceIdentity,
        role: DeviceRole,
        options: Options,
        sink: CharacteristicSink,
        cloud: CloudTransport,
        *,
        local: LocalTransport | None = None,
    ) -> None:
        self.identity = identity
        self.role = role
        self.options = options
        self.cloud = cloud
        self._sink = sink
        self.transport = select_transport(identity.device_id, options.ble)
        if self.transport is Transport.LOCAL and local is None:
            local = LocalTransport()
        self.local = local if self.transport is Transport.LOCAL else None
        self.mirror = StateMirror(identity, self.initial_state())
        self._refresh_timer = PeriodicTimer(
            f"{identity.device_id}-refresh",
            self._on_refresh_tick,
            interval=float(options.refresh_rate),
        )
        self._scan_timer: PeriodicTimer | None = None
        if self.local is not None:
            self._scan_timer = PeriodicTimer(
                f"{identity.device_id}-scan",
                self._on_scan_tick,
                interval=float(options.refresh_rate * SECONDARY_SCAN_FACTOR),
            )
        self._tasks: set[asyncio.Task] = set()
        self.running = False

    @property
    def name(self) -> str:
        return self.identity.name

    # -- hooks ---------------------------------------------------------------

    @abc.abstractmethod
    def initial_state(self) -> ObservedState:
        """Observed state before the first refresh."""

    @abc.abstractmethod
    def parse_status(self, status: DeviceStatus) -> ObservedState:
        """Derive observed state from a cloud status response."""

    @abc.abstractmethod
    async def fetch_local(self, duration: float) -> ObservedState:
        """Derive observed state over BLE, spending at most *duration* scanning."""

    @abc.abstractmethod
    def characteristics(self) -> dict[str, Any]:
        """Current characteristic values. ``None`` values are not pushed."""

    async def scan_local(self, duration: float) -> ObservedState:
        """Secondary-scan discovery pass. Defaults to ``fetch_local``."""
        return await self.fetch_local(duration)

    async def start_transport(self) -> None:
        """Open long-lived transport subscriptions."""

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Push accessory information, fetch initial state and arm the loops."""
        if self.running:
            return
        self.running = True
        self._push_accessory_information()
        await self.start_transport()
        self._spawn(self.refresh(), "initial-refresh")
        self._refresh_timer.start()
        if self._scan_timer is not None:
            self._scan_timer.start()
        logger.info(
            "[{}] {} started (transport={}, refresh={}s)",
            self.tag, self.name, self.transport.value, self.options.refresh_rate,
        )

    async def stop(self) -> None:
        """Stop re-arming timers. Work already in flight is left to finish."""
        self.running = False
        self._refresh_timer.stop()
        if self._scan_timer is not None:
            self._scan_timer.stop()
        if self.local is not None:
            await self.local.close()
        logger.info("[{}] {} stopped", self.tag, self.name)

    def snapshot(self) -> MirrorSnapshot:
        return self.mirror.snapshot()

    def _spawn(self, coro: Awaitable[Any], label: str) -> asyncio.Task:
        task = spawn(coro, name=f"{self.identity.device_id}-{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- refresh -------------------------------------------------------------

    def _on_refresh_tick(self) -> None:
        self._spawn(self.refresh(), "refresh")

    def _on_scan_tick(self) -> None:
        self._spawn(self.secondary_scan(), "scan")

    async def refresh(self) -> bool:
        """Pull observed state through the selected transport.

        Returns False when the tick was skipped because another loop owns
        the mirror.
        """
        generation = self.mirror.begin_refresh()
        if generation is None:
            logger.debug(
                "[{}] {} refresh skipped ({})",
                self.tag, self.name, self.mirror.sync_status.value,
            )
            return False
        try:
            try:
                state = await self._fetch()
            except Exception as exc:
                if self._still_owned(generation, "refresh"):
                    self._report_error("refresh", exc)
            else:
                if self._still_owned(generation, "refresh"):
                    self._apply(state)
        finally:
            self.mirror.end_refresh(generation)
        return True

    def _still_owned(self, generation: int, operation: str) -> bool:
        if self.mirror.holds_refresh(generation):
            return True
        logger.debug(
            "[{}] {} {} result dropped, mirror now {}",
            self.tag, self.name, operation, self.mirror.sync_status.value,
        )
        return False

    async def _fetch(self) -> ObservedState:
        if self.local is not None:
            try:
                return await self.fetch_local(self.options.scan_duration)
            except LocalError as exc:
                logger.warning(
                    "[{}] {} BLE refresh failed, using cloud: {}",
                    self.tag, self.name, exc,
                )
        return await self._fetch_cloud()

    async def _fetch_cloud(self) -> ObservedState:
        status = await self.cloud.fetch_status(self.identity.device_id)
        return self.parse_status(status)

    async def secondary_scan(self) -> bool:
        """Long BLE discovery pass; cloud refresh only if it fails."""
        if self.local is None:
            return False
        generation = self.mirror.begin_refresh()
        if generation is None:
            logger.debug("[{}] {} secondary scan skipped", self.tag, self.name)
            return False
        logger.info("[{}] start scan {} ({})", self.tag, self.name, self.identity.ble_mac)
        try:
            try:
                state = await self.scan_local(float(self.options.refresh_rate))
            except LocalError as exc:
                logger.error("[{}] {} scan failed: {}", self.tag, self.name, exc)
                state = await self._fetch_cloud()
            if self._still_owned(generation, "scan"):
                self._apply(state)
            logger.info("[{}] stop scan {} ({})", self.tag, self.name, self.identity.ble_mac)
        except Exception as exc:
            if self._still_owned(generation, "scan"):
                self._report_error("scan", exc)
        finally:
            self.mirror.end_refresh(generation)
        return True

    def _apply(self, state: ObservedState) -> None:
        self.mirror.apply_observed(state)
        logger.debug("[{}] {} observed {}", self.tag, self.name, state)
        self.update_characteristics()

    # -- host output ---------------------------------------------------------

    def _push(self, characteristic: str, value: Any) -> None:
        try:
            self._sink(characteristic, value)
        except Exception as exc:
            logger.error(
                "[{}] {} sink rejected {}: {}",
                self.tag, self.name, characteristic, exc,
            )

    def _push_accessory_information(self) -> None:
        self._push("Manufacturer", MANUFACTURER)
        self._push("Model", self.model)
        self._push("SerialNumber", self.identity.device_id)
        self._push("Name", self.name)

    def update_characteristics(self) -> None:
        """Push every known characteristic value to the host."""
        for characteristic, value in self.characteristics().items():
            if value is None:
                logger.debug("[{}] {} {}: unknown", self.tag, self.name, characteristic)
                continue
            self._push(characteristic, value)

    def push_fault(self, exc: BaseException) -> None:
        fault = CharacteristicFault(exc)
        for characteristic in self.characteristics():
            self._push(characteristic, fault)

    def _report_error(self, operation: str, exc: BaseException) -> None:
        self.mirror.record_error(exc)
        if isinstance(exc, SyncError):
            logger.error("[{}] {} {} failed: {}", self.tag, self.name, operation, exc)
        else:
            logger.opt(exception=exc).error(
                "[{}] {} {} failed unexpectedly: {!r}",
                self.tag, self.name, operation, exc,
            )
        self.push_fault(exc)


class ActuatorSync(DeviceSync):
    """A device the host can drive: adds the debounced write flush."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.retry_policy = RetryPolicy(
            max_retries=self.options.retry_attempts,
            delay=self.options.retry_delay,
        )
        self._writer = Debouncer(
            self.identity.device_id,
            self.flush,
            delay=self.options.push_debounce,
        )

    @abc.abstractmethod
    def needs_push(self) -> bool:
        """False when the desired state already matches the observed one."""

    @abc.abstractmethod
    async def push_changes(self) -> None:
        """Send the desired state to the device and record it as observed."""

    async def start(self) -> None:
        await super().start()
        self._writer.start()

    async def stop(self) -> None:
        self._writer.stop()
        await super().stop()

    def request_write(self) -> None:
        """Signal that the desired state changed. Returns immediately."""
        self._writer.signal()

    async def flush(self) -> None:
        """Run one write flush now. Normally driven by the debouncer."""
        self.mirror.begin_write()
        previous = self.mirror.observed
        try:
            if not self.needs_push():
                logger.info(
                    "[{}] target state of {} has not changed",
                    self.tag, self.name,
                )
                self.update_characteristics()
                return
            await self.push_changes()
        except Exception as exc:
            self._report_error("write", exc)
            self.mirror.observed = previous
            self.update_characteristics()
        else:
            self.update_characteristics()
            await self._confirm_refresh()
        finally:
            self.mirror.end_write()

    async def _confirm_refresh(self) -> None:
        # Runs while the write still owns the mirror.
        try:
            state = await self._fetch()
        except Exception as exc:
            self._report_error("refresh", exc)
            return
        self._apply(state)

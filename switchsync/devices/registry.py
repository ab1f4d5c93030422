"""Device lifecycle for the host.

Builds one ``DeviceSync`` per physical device, starts and stops its loops,
and lets the host look devices up to forward user intents.

Architecture
------------
- The host hands over ``DeviceIdentity`` records (or asks ``discover()`` to
  pull them from the cloud device list).
- ``sink_factory(identity)`` returns the characteristic output port for
  that device. The registry never touches the host's own representation.
- The role (Bot mode, Outlet vs Switch) is fixed once at construction from
  configuration.
- Nothing is persisted; the host owns accessory persistence.

Usage
-----
>>> registry = DeviceRegistry(config, cloud, sink_factory)
>>> await registry.discover()
>>> await registry.start()
>>> registry.get_device("1A23B456789A").set_on(True)
"""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from switchsync.config.schema import Config
from switchsync.devices.bot import BotDevice, bot_role
from switchsync.devices.cloud import CloudTransport
from switchsync.devices.contact import ContactDevice
from switchsync.devices.mirror import CharacteristicSink
from switchsync.devices.models import ContactRole, DeviceIdentity, DeviceType
from switchsync.devices.sync import DeviceSync

SinkFactory = Callable[[DeviceIdentity], CharacteristicSink]
# event types: "added", "removed"
DeviceEventCallback = Callable[[DeviceSync, str], Any]


class DeviceRegistry:
    """All synchronized devices of one host process."""

    def __init__(
        self,
        config: Config,
        cloud: CloudTransport,
        sink_factory: SinkFactory,
    ) -> None:
        self.config = config
        self.cloud = cloud
        self._sink_factory = sink_factory
        self._devices: dict[str, DeviceSync] = {}
        self._event_callbacks: list[DeviceEventCallback] = []
        self._running = False

    # -- event system --------------------------------------------------------

    def on_event(self, callback: DeviceEventCallback) -> None:
        """Register a callback receiving ``(device, event_type)``."""
        self._event_callbacks.append(callback)

    def _fire_event(self, device: DeviceSync, event: str) -> None:
        for cb in self._event_callbacks:
            try:
                cb(device, event)
            except Exception as exc:
                logger.error("[Registry] event callback error: {}", exc)

    # -- construction --------------------------------------------------------

    def build_device(self, identity: DeviceIdentity) -> DeviceSync | None:
        """Create the engine for *identity*, or None for unsupported types."""
        options = self.config.options
        sink = self._sink_factory(identity)
        if identity.device_type == DeviceType.BOT.value:
            return BotDevice(
                identity, bot_role(identity.device_id, options), options, sink, self.cloud,
            )
        if identity.device_type == DeviceType.CONTACT.value:
            return ContactDevice(identity, ContactRole(), options, sink, self.cloud)
        logger.info(
            "[Registry] device type {!r} of {} is not supported",
            identity.device_type, identity.name,
        )
        return None

    # -- CRUD ----------------------------------------------------------------

    async def add_device(self, identity: DeviceIdentity) -> DeviceSync | None:
        """Register *identity*; starts it right away if the registry runs."""
        existing = self._devices.get(identity.device_id)
        if existing is not None:
            logger.debug("[Registry] {} already registered", identity.device_id)
            return existing
        device = self.build_device(identity)
        if device is None:
            return None
        self._devices[identity.device_id] = device
        logger.info(
            "[Registry] added {} ({}) via {}",
            identity.name, identity.device_type, device.transport.value,
        )
        if self._running:
            await device.start()
        self._fire_event(device, "added")
        return device

    async def remove_device(self, device_id: str) -> bool:
        """Stop and forget a device. Returns True if it existed."""
        device = self._devices.pop(device_id, None)
        if device is None:
            return False
        await device.stop()
        self._fire_event(device, "removed")
        logger.info("[Registry] removed {}", device_id)
        return True

    def get_device(self, device_id: str) -> DeviceSync | None:
        return self._devices.get(device_id)

    @property
    def devices(self) -> list[DeviceSync]:
        return list(self._devices.values())

    async def discover(self) -> list[DeviceSync]:
        """Add every supported device from the cloud device list."""
        added: list[DeviceSync] = []
        for identity in await self.cloud.list_devices():
            device = await self.add_device(identity)
            if device is not None:
                added.append(device)
        return added

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        for device in self.devices:
            await device.start()
        logger.info("[Registry] started {} devices", len(self._devices))

    async def stop(self) -> None:
        self._running = False
        for device in self.devices:
            await device.stop()
        logger.info("[Registry] stopped")

"""BLE transport — direct radio link to SwitchBot devices.

Scans for SwitchBot advertisements, decodes their service data, and drives
Bots through their GATT command characteristic without touching the cloud.

Key classes
-----------
- ``BLEAdvertisement`` — one received advertisement and its decoded fields.
- ``BLEPeer``          — a discovered device with ``turn_on`` / ``turn_off`` /
  ``press`` primitives.
- ``ListenHandle``     — a running passive advertisement subscription.
- ``LocalTransport``   — ``scan``, ``actuate``, ``press`` and ``listen``.

Service data layout
-------------------
Byte 0 carries the model letter in its low 7 bits (``H`` = Bot,
``d`` = Contact sensor).

Bot:      byte 1 bit 7 switch mode, bit 6 cleared when on; byte 2 battery.
Contact:  byte 1 bit 6 motion; byte 2 battery; byte 3 bit 1 open,
          bits 1-2 both set = left open, bit 0 bright.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from loguru import logger

from switchsync.devices.errors import DeviceNotFoundError, LocalError

SERVICE_UUIDS = (
    "0000fd3d-0000-1000-8000-00805f9b34fb",
    "00000d00-0000-1000-8000-00805f9b34fb",  # Pre-2022 firmware
)
BOT_WRITE_UUID = "cba20002-224d-11e6-9fb8-0002a5d5c51b"

CMD_PRESS = bytes.fromhex("570100")
CMD_TURN_ON = bytes.fromhex("570101")
CMD_TURN_OFF = bytes.fromhex("570102")

MODEL_BOT = "H"
MODEL_CONTACT = "d"

_RADIO_ERRORS = (BleakError, OSError, asyncio.TimeoutError)

AdvertisementCallback = Callable[[dict[str, Any]], None]


# ---------------------------------------------------------------------------
# Advertisement decoding
# ---------------------------------------------------------------------------

def parse_service_data(service_data: dict[str, bytes]) -> dict[str, Any] | None:
    """Decode SwitchBot service data into state fields.

    Returns ``None`` for foreign advertisements and truncated payloads.
    """
    data = None
    for uuid in SERVICE_UUIDS:
        data = service_data.get(uuid)
        if data:
            break
    if not data:
        return None

    model = chr(data[0] & 0b01111111)
    if model == MODEL_BOT and len(data) >= 3:
        switch_mode = bool(data[1] & 0b10000000)
        return {
            "model": model,
            "switch_mode": switch_mode,
            "on": not (data[1] & 0b01000000) if switch_mode else False,
            "battery": data[2] & 0b01111111,
        }
    if model == MODEL_CONTACT and len(data) >= 4:
        return {
            "model": model,
            "motion": bool(data[1] & 0b01000000),
            "battery": data[2] & 0b01111111,
            "contact_open": bool(data[3] & 0b00000010),
            "contact_timeout": data[3] & 0b00000110 == 0b00000110,
            "light": bool(data[3] & 0b00000001),
        }
    return None


@dataclass
class BLEAdvertisement:
    """One advertisement received from a SwitchBot device."""

    address: str                         # Lowercase MAC
    name: str                            # Local name (may be empty)
    rssi: int                            # Signal strength in dBm
    service_data: dict[str, bytes] = field(default_factory=dict)

    @property
    def fields(self) -> dict[str, Any] | None:
        return parse_service_data(self.service_data)

    @classmethod
    def from_bleak(cls, device: Any, adv: Any) -> BLEAdvertisement:
        return cls(
            address=device.address.lower(),
            name=adv.local_name or device.name or "",
            rssi=adv.rssi,
            service_data=dict(adv.service_data),
        )


# ---------------------------------------------------------------------------
# Peer handle
# ---------------------------------------------------------------------------

@dataclass
class BLEPeer:
    """A discovered device that can be commanded directly."""

    address: str
    advertisement: BLEAdvertisement
    device: Any                                   # bleak BLEDevice
    client_cls: type = field(default=BleakClient, repr=False)

    async def _write(self, payload: bytes) -> None:
        async with self.client_cls(self.device) as client:
            await client.write_gatt_char(BOT_WRITE_UUID, payload, response=True)

    async def turn_on(self) -> None:
        await self._write(CMD_TURN_ON)

    async def turn_off(self) -> None:
        await self._write(CMD_TURN_OFF)

    async def press(self) -> None:
        await self._write(CMD_PRESS)


# ---------------------------------------------------------------------------
# Passive subscription
# ---------------------------------------------------------------------------

class ListenHandle:
    """A running advertisement subscription. ``stop()`` unsubscribes."""

    def __init__(self, scanner: Any, address: str) -> None:
        self.address = address
        self._scanner = scanner
        self.active = True

    async def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            await self._scanner.stop()
        except _RADIO_ERRORS as exc:
            logger.warning("[BLE] failed to stop listener for {}: {}", self.address, exc)
        logger.info("[BLE] stopped listening to {}", self.address)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class LocalTransport:
    """Direct BLE access to SwitchBot devices.

    One instance is owned by each locally driven device for its whole life.

    Parameters
    ----------
    scanner_cls:
        Scanner class (default ``bleak.BleakScanner``).
    client_cls:
        GATT client class (default ``bleak.BleakClient``).
    """

    def __init__(
        self,
        scanner_cls: Any = BleakScanner,
        client_cls: type = BleakClient,
    ) -> None:
        self._scanner_cls = scanner_cls
        self._client_cls = client_cls
        self._listeners: list[ListenHandle] = []

    async def scan(self, address: str, duration: float) -> list[BLEPeer]:
        """Discover for *duration* seconds and keep peers matching *address*.

        Raises ``DeviceNotFoundError`` when nothing matched, ``LocalError``
        when the radio itself failed.
        """
        target = address.lower()
        logger.info("[BLE] start scan for {} ({:.1f}s)", target, duration)
        try:
            found = await self._scanner_cls.discover(timeout=duration, return_adv=True)
        except _RADIO_ERRORS as exc:
            raise LocalError(f"scan for {target} failed: {exc}") from exc

        peers: list[BLEPeer] = []
        for device, adv in found.values():
            if device.address.lower() != target:
                continue
            peers.append(BLEPeer(
                address=target,
                advertisement=BLEAdvertisement.from_bleak(device, adv),
                device=device,
                client_cls=self._client_cls,
            ))
        logger.info("[BLE] scan done, {} of {} devices matched", len(peers), len(found))
        if not peers:
            raise DeviceNotFoundError(target)
        return peers

    async def actuate(self, peer: BLEPeer, desired_on: bool) -> None:
        """Turn *peer* on or off."""
        try:
            if desired_on:
                await peer.turn_on()
            else:
                await peer.turn_off()
        except _RADIO_ERRORS as exc:
            raise LocalError(f"turn {'on' if desired_on else 'off'} {peer.address} failed: {exc}") from exc

    async def press(self, peer: BLEPeer) -> None:
        """Trigger a momentary press on *peer*."""
        try:
            await peer.press()
        except _RADIO_ERRORS as exc:
            raise LocalError(f"press {peer.address} failed: {exc}") from exc

    async def listen(self, address: str, callback: AdvertisementCallback) -> ListenHandle:
        """Subscribe to advertisements from *address*.

        *callback* receives the decoded fields of every matching
        advertisement until the returned handle is stopped.
        """
        target = address.lower()

        def _detected(device: Any, adv: Any) -> None:
            if device.address.lower() != target:
                return
            fields = parse_service_data(dict(adv.service_data))
            if fields is None:
                return
            logger.debug("[BLE] ad from {}: {}", target, fields)
            try:
                callback(fields)
            except Exception as exc:
                logger.error("[BLE] advertisement callback error for {}: {}", target, exc)

        scanner = self._scanner_cls(detection_callback=_detected)
        try:
            await scanner.start()
        except _RADIO_ERRORS as exc:
            raise LocalError(f"listen for {target} failed: {exc}") from exc
        handle = ListenHandle(scanner, target)
        self._listeners.append(handle)
        logger.info("[BLE] listening to {}", target)
        return handle

    async def close(self) -> None:
        """Stop every subscription opened through this transport."""
        for handle in self._listeners:
            await handle.stop()
        self._listeners.clear()

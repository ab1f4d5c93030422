"""SwitchBot Contact sensor — door/window contact plus a motion detector.

Exposed to the host as a ``ContactSensor`` (``ContactSensorState``) and a
``MotionSensor`` (``MotionDetected``). Read only.

Over BLE the sensor is never connected to: a passive advertisement
listener keeps the mirror current, and refresh ticks re-derive state from
the last advertisement heard.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from switchsync.devices.ble import ListenHandle
from switchsync.devices.errors import LocalError
from switchsync.devices.models import ContactSensorState, ContactState, DeviceStatus
from switchsync.devices.sync import DeviceSync


class ContactDevice(DeviceSync):
    """Synchronizes one Contact sensor."""

    model = "SWITCHBOT-WOCONTACT-W1201500"
    tag = "Contact"

    _listener: ListenHandle | None = None
    _last_advertisement: dict[str, Any] | None = None

    def initial_state(self) -> ContactState:
        return ContactState()

    def characteristics(self) -> dict[str, Any]:
        state = self.mirror.observed
        return {
            "ContactSensorState": state.contact,
            "MotionDetected": state.motion,
        }

    # -- cloud ---------------------------------------------------------------

    def parse_status(self, status: DeviceStatus) -> ContactState:
        open_state = status.body.get("openState")
        if open_state == "open":
            contact = ContactSensorState.CONTACT_DETECTED
            logger.info("[Contact] {} {}", self.name, open_state)
        elif open_state == "close":
            contact = ContactSensorState.CONTACT_NOT_DETECTED
            logger.debug("[Contact] {} {}", self.name, open_state)
        else:
            contact = self.mirror.observed.contact
            logger.debug("[Contact] {} unexpected openState {!r}", self.name, open_state)
        state = ContactState(contact=contact, motion=bool(status.body.get("moveDetected")))
        logger.debug(
            "[Contact] {} ContactSensorState: {}, MotionDetected: {}",
            self.name, state.contact, state.motion,
        )
        return state

    # -- BLE -----------------------------------------------------------------

    @staticmethod
    def from_advertisement(fields: dict[str, Any]) -> ContactState:
        contact = (
            ContactSensorState.CONTACT_DETECTED
            if fields.get("contact_open")
            else ContactSensorState.CONTACT_NOT_DETECTED
        )
        return ContactState(contact=contact, motion=bool(fields.get("motion")))

    async def start_transport(self) -> None:
        if self.local is None:
            return
        try:
            self._listener = await self.local.listen(
                self.identity.ble_mac, self._on_advertisement,
            )
        except LocalError as exc:
            logger.error("[Contact] {} cannot listen over BLE: {}", self.name, exc)

    def _on_advertisement(self, fields: dict[str, Any]) -> None:
        if fields.get("model") != "d":
            return
        self._last_advertisement = fields
        self._apply(self.from_advertisement(fields))

    async def fetch_local(self, duration: float) -> ContactState:
        if self._last_advertisement is None:
            raise LocalError(f"no advertisement received yet from {self.identity.ble_mac}")
        return self.from_advertisement(self._last_advertisement)

    async def scan_local(self, duration: float) -> ContactState:
        peers = await self.local.scan(self.identity.ble_mac, duration)
        fields = peers[0].advertisement.fields
        if fields is None:
            raise LocalError(f"undecodable advertisement from {self.identity.ble_mac}")
        self._last_advertisement = fields
        return self.from_advertisement(fields)

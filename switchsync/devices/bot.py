"""SwitchBot Bot — the momentary / toggle actuator.

Exposed to the host as an ``Outlet`` (``On`` + ``OutletInUse``) or, with
``options.bot.switch``, as a ``Switch`` (``On`` only).

Modes
-----
- switch mode (``options.bot.device_switch``): ``turnOn`` / ``turnOff``.
- press mode (``options.bot.device_press``): always ``press``; the Bot
  springs back, so ``On`` reads back as off right after the command.

A Bot listed in neither group cannot be driven over the cloud.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from switchsync.config.schema import Options
from switchsync.devices.ble import BLEPeer
from switchsync.devices.cloud import bot_command
from switchsync.devices.errors import LocalError
from switchsync.devices.models import BotMode, BotRole, BotState, DeviceStatus
from switchsync.devices.resilience import retry
from switchsync.devices.sync import ActuatorSync


def bot_role(device_id: str, options: Options) -> BotRole:
    """Pick the Bot role for *device_id* from configuration."""
    bot = options.bot
    if device_id in bot.device_switch:
        mode: BotMode | None = BotMode.SWITCH
    elif device_id in bot.device_press:
        mode = BotMode.PRESS
    else:
        mode = None
    return BotRole(mode=mode, outlet=not bot.switch)


def _on_off(value: bool | None) -> str:
    return "ON" if value else "OFF"


class BotDevice(ActuatorSync):
    """Synchronizes one Bot."""

    model = "SWITCHBOT-BOT-S1"
    tag = "Bot"
    role: BotRole

    @property
    def press_mode(self) -> bool:
        return self.role.mode is BotMode.PRESS

    def _in_use(self) -> bool | None:
        return True if self.role.outlet else None

    # -- host entry point ----------------------------------------------------

    def set_on(self, value: bool) -> None:
        """Handle a host request to set ``On``. Only records intent."""
        logger.debug("[Bot] {} - Set On: {}", self.name, value)
        self.mirror.desired = bool(value)
        self.request_write()

    # -- state ---------------------------------------------------------------

    def initial_state(self) -> BotState:
        return BotState()

    def characteristics(self) -> dict[str, Any]:
        state = self.mirror.observed
        values: dict[str, Any] = {"On": state.on}
        if self.role.outlet:
            values["OutletInUse"] = state.in_use
        return values

    def _derive_on(self, reported: bool | None) -> bool:
        if self.press_mode:
            return False
        if reported is not None:
            return reported
        current = self.mirror.observed.on
        return current if current is not None else False

    def parse_status(self, status: DeviceStatus) -> BotState:
        power = status.body.get("power")
        reported = {"on": True, "off": False}.get(power) if isinstance(power, str) else None
        state = BotState(on=self._derive_on(reported), in_use=self._in_use())
        logger.debug(
            "[Bot] {} OutletInUse: {} On: {}",
            self.name, state.in_use, state.on,
        )
        return state

    async def _discover(self, duration: float) -> BLEPeer:
        peers = await self.local.scan(self.identity.ble_mac, duration)
        peer = peers[0]
        logger.info("[Bot] {} ({}) was found", peer.advertisement.name or self.name, peer.address)
        return peer

    async def fetch_local(self, duration: float) -> BotState:
        peer = await self._discover(duration)
        fields = peer.advertisement.fields or {}
        reported = fields.get("on") if fields.get("switch_mode") else None
        return BotState(on=self._derive_on(reported), in_use=self._in_use())

    # -- writes --------------------------------------------------------------

    def needs_push(self) -> bool:
        desired = self.mirror.desired
        return desired is not None and desired != self.mirror.observed.on

    async def push_changes(self) -> None:
        desired = bool(self.mirror.desired)
        logger.info("[Bot] target state of {} setting: {}", self.name, _on_off(desired))
        if self.local is not None:
            try:
                peer = await self._discover(self.options.scan_duration)
            except LocalError as exc:
                logger.warning("[Bot] {} not reachable over BLE, using cloud: {}", self.name, exc)
            else:
                await retry(
                    lambda: self._actuate(peer, desired),
                    policy=self.retry_policy,
                    label=f"{self.name} actuation",
                )
                self._confirm(desired)
                return
        await self._push_cloud(desired)

    async def _actuate(self, peer: BLEPeer, desired: bool) -> None:
        if self.press_mode:
            await self.local.press(peer)
        else:
            await self.local.actuate(peer, desired)

    async def _push_cloud(self, desired: bool) -> None:
        command = bot_command(self.role, desired)
        logger.debug("[Bot] {} {} mode, command {}", self.name, self.role.mode, command.command)
        await self.cloud.send_command(self.identity.device_id, command)
        self._confirm(desired)

    def _confirm(self, desired: bool) -> None:
        if self.press_mode:
            # A press is momentary; the Bot ends up released.
            self.mirror.desired = False
            desired = False
        self.mirror.apply_observed(BotState(on=desired, in_use=self._in_use()))
        logger.info("[Bot] {} state has been set to: {}", self.name, _on_off(desired))

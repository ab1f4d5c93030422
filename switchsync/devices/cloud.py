"""SwitchBot cloud transport.

Wraps the Open API v1.0 endpoints the sync engine needs:

- ``GET  /devices``               — device enumeration
- ``GET  /devices/{id}/status``   — current state
- ``POST /devices/{id}/commands`` — ``{commandType, command, parameter}``

Every response carries ``{statusCode, body, message}``. A status read only
succeeds when ``message == "success"``. A command's ``statusCode`` is
advisory: it is logged, never raised.

Authentication is the caller's business: pass an ``httpx.AsyncClient``
that already carries the headers, or build one with ``create_http_client``.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from switchsync.config.schema import Config
from switchsync.devices.errors import ConfigError, RemoteError
from switchsync.devices.models import (
    BotCommand,
    BotMode,
    BotRole,
    DeviceIdentity,
    DeviceStatus,
)

STATUS_OK = 100

STATUS_CODES: dict[int, str] = {
    100: "Command successfully sent.",
    151: "Command not supported by this device type.",
    152: "Device not found.",
    160: "Command is not supported.",
    161: "Device is offline.",
    171: "Hub Device is offline.",
    190: (
        "Device internal error due to device states not synchronized "
        "with server. Or command format is invalid."
    ),
}


def describe_status_code(code: int) -> str:
    """Human-readable meaning of a command ``statusCode``."""
    return STATUS_CODES.get(code, "Unknown statusCode.")


def log_status_code(code: int, label: str = "") -> None:
    """Log a command ``statusCode`` at the level its meaning deserves."""
    prefix = f"{label} " if label else ""
    if code == STATUS_OK:
        logger.debug("[Cloud] {}{}", prefix, describe_status_code(code))
    elif code in STATUS_CODES:
        logger.error("[Cloud] {}{}", prefix, describe_status_code(code))
    else:
        logger.debug("[Cloud] {}Unknown statusCode: {}", prefix, code)


def bot_command(role: BotRole, desired_on: bool) -> BotCommand:
    """Build the cloud command that moves a Bot towards *desired_on*.

    Raises ``ConfigError`` when the Bot is in neither switch nor press mode.
    """
    if role.mode is BotMode.SWITCH:
        return BotCommand("turnOn" if desired_on else "turnOff")
    if role.mode is BotMode.PRESS:
        return BotCommand("press")
    raise ConfigError("Bot Device Parameters not set for this Bot.")


def create_http_client(config: Config) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` pointed at the Open API."""
    headers = {
        "Authorization": config.token,
        "Content-Type": "application/json; charset=utf8",
    }
    return httpx.AsyncClient(
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout,
    )


class CloudTransport:
    """Async client for the SwitchBot Open API.

    Parameters
    ----------
    client:
        An ``httpx.AsyncClient`` whose ``base_url`` points at the API root
        (``https://api.switch-bot.com/v1.0``).
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- requests ------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteError(f"{method} {url} returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise RemoteError(f"{method} {url} returned {type(payload).__name__}, expected object")
        return payload

    async def fetch_status(self, device_id: str) -> DeviceStatus:
        """Read the current status of *device_id*.

        Raises ``RemoteError`` unless the response message is ``success``.
        """
        payload = await self._request("GET", f"/devices/{device_id}/status")
        status = DeviceStatus.from_dict(payload)
        if not status.ok:
            raise RemoteError(
                f"status of {device_id} returned message {status.message!r}",
                status_code=status.status_code,
            )
        logger.debug("[Cloud] {} status: {}", device_id, status.body)
        return status

    async def send_command(self, device_id: str, command: BotCommand) -> int:
        """Post *command* to *device_id* and return the reported ``statusCode``."""
        payload = command.to_payload()
        logger.info(
            "[Cloud] sending request for {} - command: {} parameter: {} commandType: {}",
            device_id, command.command, command.parameter, command.command_type,
        )
        data = await self._request("POST", f"/devices/{device_id}/commands", json=payload)
        logger.debug("[Cloud] {} changes pushed: {}", device_id, data)
        try:
            code = int(data.get("statusCode", 0))
        except (TypeError, ValueError):
            code = 0
        log_status_code(code, label=device_id)
        return code

    async def list_devices(self) -> list[DeviceIdentity]:
        """Enumerate the physical devices on the account."""
        payload = await self._request("GET", "/devices")
        status = DeviceStatus.from_dict(payload)
        if not status.ok:
            raise RemoteError(
                f"device list returned message {status.message!r}",
                status_code=status.status_code,
            )
        devices: list[DeviceIdentity] = []
        for entry in status.body.get("deviceList", []):
            try:
                devices.append(DeviceIdentity.from_cloud(entry))
            except (KeyError, TypeError) as exc:
                logger.warning("[Cloud] skipping malformed device entry: {}", exc)
        logger.info("[Cloud] found {} devices", len(devices))
        return devices

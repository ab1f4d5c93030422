"""Tests for device identity, state types, routing and configuration."""

from __future__ import annotations

import json

import pytest

from switchsync.config.schema import Config, Options, load_config
from switchsync.devices.bot import bot_role
from switchsync.devices.models import (
    BotCommand,
    BotMode,
    BotState,
    ContactState,
    DeviceIdentity,
    DeviceStatus,
    Transport,
)
from switchsync.devices.routing import select_transport


# ---------------------------------------------------------------------------
# DeviceIdentity
# ---------------------------------------------------------------------------


class TestDeviceIdentity:
    def test_ble_mac_from_id(self):
        ident = DeviceIdentity("1A23B456789A", "Desk Bot", "Bot")
        assert ident.ble_mac == "1a:23:b4:56:78:9a"

    def test_ble_mac_idempotent(self):
        ident = DeviceIdentity("1A23B456789A", "Desk Bot", "Bot")
        first = ident.ble_mac
        assert ident.ble_mac == first
        assert DeviceIdentity("1A23B456789A", "Other", "Bot").ble_mac == first

    def test_from_cloud(self):
        ident = DeviceIdentity.from_cloud({
            "deviceId": "C0FFEE123456",
            "deviceName": "Front Door",
            "deviceType": "Contact Sensor",
            "hubDeviceId": "",
        })
        assert ident.name == "Front Door"
        assert ident.device_type == "Contact Sensor"
        assert ident.hub_device_id is None

    def test_from_cloud_name_defaults_to_id(self):
        ident = DeviceIdentity.from_cloud({"deviceId": "ABCDEF012345"})
        assert ident.name == "ABCDEF012345"

    def test_identity_is_immutable(self):
        ident = DeviceIdentity("1A23B456789A", "Desk Bot", "Bot")
        with pytest.raises(AttributeError):
            ident.device_id = "other"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# State and payloads
# ---------------------------------------------------------------------------


class TestStates:
    def test_bot_state_unknown_by_default(self):
        assert not BotState().known
        assert BotState(on=False).known

    def test_contact_state_unknown_by_default(self):
        assert not ContactState().known
        assert ContactState(motion=False).known


class TestDeviceStatus:
    def test_success(self):
        status = DeviceStatus.from_dict({
            "statusCode": 100,
            "body": {"openState": "open"},
            "message": "success",
        })
        assert status.ok
        assert status.body["openState"] == "open"

    def test_non_success_message(self):
        status = DeviceStatus.from_dict({"statusCode": 190, "message": "Unknown error"})
        assert not status.ok
        assert status.body == {}


class TestBotCommand:
    def test_payload_shape(self):
        assert BotCommand("press").to_payload() == {
            "commandType": "command",
            "command": "press",
            "parameter": "default",
        }


# ---------------------------------------------------------------------------
# Transport selection
# ---------------------------------------------------------------------------


class TestSelectTransport:
    def test_empty_local_set_is_remote(self):
        assert select_transport("1A23B456789A", set()) is Transport.REMOTE

    def test_member_is_local(self):
        assert select_transport("1A23B456789A", ["1A23B456789A"]) is Transport.LOCAL

    def test_non_member_is_remote(self):
        assert select_transport("1A23B456789A", {"FFFFFFFFFFFF"}) is Transport.REMOTE

    def test_repeated_calls_agree(self):
        ids = {"1A23B456789A"}
        results = {select_transport("1A23B456789A", ids) for _ in range(10)}
        assert results == {Transport.LOCAL}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfig:
    def test_defaults(self):
        cfg = Config()
        assert cfg.options.refresh_rate == 300
        assert cfg.options.push_debounce == 0.1
        assert cfg.options.retry_attempts == 5
        assert cfg.options.bot.switch is False

    def test_camel_case_keys(self):
        cfg = Config(**{
            "token": "abc",
            "options": {
                "refreshRate": 120,
                "ble": ["1A23B456789A"],
                "bot": {"switch": True, "device_press": ["1A23B456789A"]},
            },
        })
        assert cfg.options.refresh_rate == 120
        assert cfg.options.ble == ["1A23B456789A"]
        assert cfg.options.bot.device_press == ["1A23B456789A"]

    def test_load_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "platform": "SwitchBot",
            "token": "abc",
            "options": {"refreshRate": 60, "bot": {"deviceSwitch": ["AAA"]}},
        }))
        cfg = load_config(path)
        assert cfg.token == "abc"
        assert cfg.options.refresh_rate == 60
        assert cfg.options.bot.device_switch == ["AAA"]

    def test_load_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "missing.json")
        assert cfg.options.refresh_rate == 300

    def test_load_malformed_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        cfg = load_config(path)
        assert cfg.token == ""


class TestBotRole:
    def test_switch_group(self):
        opts = Options(bot={"device_switch": ["A1"]})
        role = bot_role("A1", opts)
        assert role.mode is BotMode.SWITCH
        assert role.outlet is True

    def test_press_group(self):
        opts = Options(bot={"device_press": ["A1"], "switch": True})
        role = bot_role("A1", opts)
        assert role.mode is BotMode.PRESS
        assert role.outlet is False

    def test_no_group(self):
        assert bot_role("A1", Options()).mode is None

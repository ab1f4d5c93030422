"""Configuration schema using Pydantic."""

import json
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

DEFAULT_BASE_URL = "https://api.switch-bot.com/v1.0"


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BotOptions(Base):
    """Bot actuator behaviour."""

    switch: bool = False  # Expose a Switch service instead of an Outlet
    device_switch: list[str] = Field(default_factory=list)  # Ids driven with turnOn/turnOff
    device_press: list[str] = Field(default_factory=list)  # Ids driven with press


class Options(Base):
    """Engine options shared by every device."""

    refresh_rate: int = Field(default=300, ge=1)  # Seconds between status refreshes
    ble: list[str] = Field(default_factory=list)  # Ids forced onto the local BLE link
    scan_duration: float = Field(default=1.0, gt=0)  # Seconds per BLE discovery before a command
    push_debounce: float = Field(default=0.1, ge=0)  # Write coalescing window
    retry_attempts: int = Field(default=5, ge=0)  # BLE actuation retries after the first try
    retry_delay: float = Field(default=1.0, ge=0)  # Seconds between BLE actuation attempts
    bot: BotOptions = Field(default_factory=BotOptions)


class Config(BaseSettings):
    """Root configuration for switchsync."""

    token: str = ""  # Open API token from the SwitchBot app
    secret: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 10.0  # HTTP timeout in seconds
    options: Options = Field(default_factory=Options)

    model_config = ConfigDict(
        env_prefix="SWITCHSYNC_",
        env_nested_delimiter="__",
        extra="ignore",
    )


def load_config(path: str | Path) -> Config:
    """Load configuration from a JSON file.

    A missing file yields the defaults. A malformed file is logged and also
    yields the defaults so one bad edit never keeps the devices offline.
    """
    p = Path(path)
    if not p.exists():
        logger.warning("[Config] config not found: {}", p)
        return Config()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
        config = Config(**data)
    except (json.JSONDecodeError, ValidationError, OSError, TypeError) as exc:
        logger.error("[Config] failed to load {}: {}", p, exc)
        return Config()
    logger.info(
        "[Config] loaded {} (refresh={}s, ble devices={})",
        p, config.options.refresh_rate, len(config.options.ble),
    )
    return config

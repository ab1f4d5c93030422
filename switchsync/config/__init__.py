"""Configuration module for switchsync."""

from switchsync.config.schema import BotOptions, Config, Options, load_config

__all__ = ["BotOptions", "Config", "Options", "load_config"]

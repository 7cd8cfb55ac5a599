"""Configuration module for capslap."""

from capslap.config.loader import load_config, get_config_path, save_config
from capslap.config.schema import Config, LoggingConfig, SidecarConfig
from capslap.config.access import get_config, clear_config_cache

__all__ = [
    "Config",
    "LoggingConfig",
    "SidecarConfig",
    "load_config",
    "save_config",
    "get_config_path",
    "get_config",
    "clear_config_cache",
]

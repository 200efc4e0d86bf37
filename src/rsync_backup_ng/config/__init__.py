"""Configuration system for rsync-backup-ng.

This module provides TOML-based configuration loading, validation,
and schema definitions for backup sessions.
"""

from .loader import ConfigError, find_config_file, generate_example_config, load_config
from .schema import Config, GlobalConfig, ModuleConfig

__all__ = [
    "GlobalConfig",
    "ModuleConfig",
    "Config",
    "load_config",
    "find_config_file",
    "generate_example_config",
    "ConfigError",
]

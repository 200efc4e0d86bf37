"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path
from typing import Any

from ..rsync.options import MAX_RETRY_COUNT
from .schema import Config, GlobalConfig, ModuleConfig


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "rsync-backup-ng" / "config.toml",
    Path("/etc/rsync-backup-ng/config.toml"),
]

_MODULE_FLAGS = (
    "transfer_source_owner",
    "transfer_source_group",
    "transfer_source_permissions",
    "recreate_symlinks",
    "transfer_device_files",
    "transfer_special_files",
)


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _expect(data: dict[str, Any], key: str, kind: type, where: str) -> None:
    if key in data and not isinstance(data[key], kind):
        raise ConfigError(f"{where}: '{key}' must be {kind.__name__}")


def _parse_module(data: dict[str, Any]) -> ModuleConfig:
    """Parse module configuration from dict."""
    if "src_rsync" not in data:
        raise ConfigError("Module missing required 'src_rsync' field")
    where = f"Module '{data['src_rsync']}'"
    for key in _MODULE_FLAGS + ("enabled",):
        _expect(data, key, bool, where)

    return ModuleConfig(
        src_rsync=data["src_rsync"],
        dest_subpath=data.get("dest_subpath", ""),
        enabled=data.get("enabled", True),
        change_file_permission=data.get("change_file_permission"),
        auth_password=data.get("auth_password"),
        **{key: data.get(key) for key in _MODULE_FLAGS},
    )


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    defaults = GlobalConfig()
    for key in (
        "retry_count",
        "min_backup_block_size_mb",
        "max_backup_block_size_mb",
        "number_of_previous_backup_to_use",
    ):
        _expect(data, key, int, "Global")

    return GlobalConfig(
        sig_file_ignore_backup=data.get(
            "sig_file_ignore_backup", defaults.sig_file_ignore_backup
        ),
        retry_count=data.get("retry_count", defaults.retry_count),
        auto_manage_backup_block_size=data.get(
            "auto_manage_backup_block_size", defaults.auto_manage_backup_block_size
        ),
        min_backup_block_size_mb=data.get(
            "min_backup_block_size_mb", defaults.min_backup_block_size_mb
        ),
        max_backup_block_size_mb=data.get(
            "max_backup_block_size_mb", defaults.max_backup_block_size_mb
        ),
        use_previous_backup=data.get("use_previous_backup", defaults.use_previous_backup),
        number_of_previous_backup_to_use=data.get(
            "number_of_previous_backup_to_use",
            defaults.number_of_previous_backup_to_use,
        ),
        enable_low_level_log_rsync=data.get("enable_low_level_log_rsync", False),
        enable_intensive_low_level_log_rsync=data.get(
            "enable_intensive_low_level_log_rsync", False
        ),
        transfer_source_owner=data.get("transfer_source_owner", False),
        transfer_source_group=data.get("transfer_source_group", False),
        transfer_source_permissions=data.get("transfer_source_permissions", True),
        recreate_symlinks=data.get("recreate_symlinks", True),
        transfer_device_files=data.get("transfer_device_files", False),
        transfer_special_files=data.get("transfer_special_files", False),
        compress_file_transfer=data.get("compress_file_transfer", False),
        destination=data.get("destination"),
        log_file=data.get("log_file"),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []
    g = config.global_config

    if g.min_backup_block_size_mb <= 0:
        raise ConfigError("'min_backup_block_size_mb' must be positive")
    if g.max_backup_block_size_mb < g.min_backup_block_size_mb:
        raise ConfigError(
            "'max_backup_block_size_mb' must not be less than 'min_backup_block_size_mb'"
        )
    if not g.sig_file_ignore_backup or "/" in g.sig_file_ignore_backup:
        raise ConfigError("'sig_file_ignore_backup' must be a plain file name")

    if not 0 <= g.retry_count <= MAX_RETRY_COUNT:
        warnings.append(
            f"retry_count {g.retry_count} out of range, clamped to 0..{MAX_RETRY_COUNT}"
        )
    if g.number_of_previous_backup_to_use > 20:
        warnings.append("number_of_previous_backup_to_use above 20, rsync allows 20")
    if g.enable_intensive_low_level_log_rsync and not g.enable_low_level_log_rsync:
        warnings.append(
            "enable_intensive_low_level_log_rsync has no effect without "
            "enable_low_level_log_rsync"
        )

    if not config.modules:
        warnings.append("No modules configured")
    elif not config.get_enabled_modules():
        warnings.append("All modules are disabled")

    for module in config.modules:
        if not module.src_rsync.lower().startswith("rsync://") and ":" not in module.src_rsync:
            if not module.src_rsync.startswith("/"):
                warnings.append(f"Module source '{module.src_rsync}' is a relative path")
        if module.dest_subpath.startswith("/") or ".." in Path(module.dest_subpath).parts:
            raise ConfigError(
                f"Module '{module.src_rsync}': 'dest_subpath' must stay inside the snapshot"
            )

    # Check for duplicate destinations
    subpaths = [m.dest_subpath for m in config.get_enabled_modules()]
    if len(subpaths) != len(set(subpaths)):
        warnings.append("Duplicate module destination subpaths detected")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    # Parse global config
    global_config = _parse_global(data.get("global", {}))

    # Parse modules
    modules = []
    for module_data in data.get("modules", []):
        modules.append(_parse_module(module_data))

    config = Config(global_config=global_config, modules=modules)

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# rsync-backup-ng configuration
# See documentation for full options

[global]
sig_file_ignore_backup = ".backup_skip"   # Folders holding this file are skipped
retry_count = 2
# destination = "/mnt/backup"
# log_file = "/var/log/rsync-backup-ng.log"

# Transfer block size
auto_manage_backup_block_size = true
min_backup_block_size_mb = 300
max_backup_block_size_mb = 5000

# Deduplication against previous sessions
use_previous_backup = true
number_of_previous_backup_to_use = 1

# Low-level rsync log stored in the snapshot folder
enable_low_level_log_rsync = false
enable_intensive_low_level_log_rsync = false

# Transfer options
transfer_source_owner = false
transfer_source_group = false
transfer_source_permissions = true
recreate_symlinks = true
transfer_device_files = false
transfer_special_files = false
compress_file_transfer = false

# Home folders from a NAS rsync daemon
[[modules]]
src_rsync = "rsync://nas/home"
dest_subpath = "home"
# auth_password = "secret"
# change_file_permission = "Du+rwx,Fu+rw"

# Photos, keeping ownership
# [[modules]]
# src_rsync = "rsync://backup@nas/photos"
# dest_subpath = "photos"
# transfer_source_owner = true
# transfer_source_group = true
"""

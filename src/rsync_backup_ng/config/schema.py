"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..core.heuristic import BlockSizeSettings
from ..core.size import MB


@dataclass
class ModuleConfig:
    """Backup source configuration.

    Transfer flags left as None fall back to the global setting.

    Attributes:
        src_rsync: rsync source, e.g. rsync://host/module/path
        dest_subpath: Folder inside the snapshot receiving the data
        enabled: Whether this module takes part in backup sessions
        change_file_permission: rsync --chmod specification
        auth_password: rsync daemon secret
        transfer_source_owner: rsync --owner
        transfer_source_group: rsync --group
        transfer_source_permissions: rsync --perms
        recreate_symlinks: rsync --links
        transfer_device_files: rsync --devices
        transfer_special_files: rsync --specials
    """

    src_rsync: str
    dest_subpath: str = ""
    enabled: bool = True
    change_file_permission: Optional[str] = None
    auth_password: Optional[str] = None
    transfer_source_owner: Optional[bool] = None
    transfer_source_group: Optional[bool] = None
    transfer_source_permissions: Optional[bool] = None
    recreate_symlinks: Optional[bool] = None
    transfer_device_files: Optional[bool] = None
    transfer_special_files: Optional[bool] = None

    def __post_init__(self):
        # Generate destination from the source if not specified
        if not self.dest_subpath:
            # rsync://host/data/photos -> photos
            tail = self.src_rsync.rstrip("/").rsplit("/", 1)[-1]
            self.dest_subpath = tail.replace(":", "_") or "root"


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        sig_file_ignore_backup: File name which marks a folder as skipped
        retry_count: Extra attempts for a failed rsync call (0..5)
        auto_manage_backup_block_size: Derive the block size from source size
        min_backup_block_size_mb: Lower bound of a transfer block
        max_backup_block_size_mb: Upper bound of a transfer block
        use_previous_backup: Hardlink unchanged files to previous snapshots
        number_of_previous_backup_to_use: Previous snapshots passed to rsync
        enable_low_level_log_rsync: Record every rsync call
        enable_intensive_low_level_log_rsync: Record rsync output as well
        compress_file_transfer: rsync --compress
        destination: Default backup destination root
        log_file: Path to log file (None for no file logging)
    """

    sig_file_ignore_backup: str = ".backup_skip"
    retry_count: int = 2
    auto_manage_backup_block_size: bool = True
    min_backup_block_size_mb: int = 300
    max_backup_block_size_mb: int = 5000
    use_previous_backup: bool = True
    number_of_previous_backup_to_use: int = 1
    enable_low_level_log_rsync: bool = False
    enable_intensive_low_level_log_rsync: bool = False
    transfer_source_owner: bool = False
    transfer_source_group: bool = False
    transfer_source_permissions: bool = True
    recreate_symlinks: bool = True
    transfer_device_files: bool = False
    transfer_special_files: bool = False
    compress_file_transfer: bool = False
    destination: Optional[str] = None
    log_file: Optional[str] = None

    def block_size_settings(self) -> BlockSizeSettings:
        return BlockSizeSettings(
            min_size=self.min_backup_block_size_mb * MB,
            max_size=self.max_backup_block_size_mb * MB,
            auto_manage=self.auto_manage_backup_block_size,
        )


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_config: Global settings that apply to all modules
        modules: List of backup source configurations
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    modules: list[ModuleConfig] = field(default_factory=list)

    def get_enabled_modules(self) -> list[ModuleConfig]:
        """Get list of enabled modules."""
        return [m for m in self.modules if m.enabled]

"""Pytest configuration and shared fixtures."""

import logging
from pathlib import Path
from unittest import mock

import pytest

from rsync_backup_ng.config import Config, GlobalConfig, ModuleConfig
from rsync_backup_ng.core.context import background


def write_tree(root: Path, layout: dict) -> Path:
    """Create files and folders under ``root``.

    ``layout`` maps names to either an int (file of that many bytes) or a
    nested dict (folder).
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, item in layout.items():
        path = root / name
        if isinstance(item, dict):
            write_tree(path, item)
        else:
            path.write_bytes(b"x" * item)
    return root


@pytest.fixture
def make_tree(tmp_path):
    """Factory building a local source tree, see ``write_tree``."""

    def _make(layout: dict, name: str = "source") -> Path:
        return write_tree(tmp_path / name, layout)

    return _make


@pytest.fixture
def ctx():
    """Fresh execution context."""
    return background()


@pytest.fixture
def session_logger():
    """Parent logger for session loggers created in tests."""
    log = logging.getLogger("rsync_backup_ng.tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def small_blocks_config():
    """Config factory for local sources, one module per source path.

    A tree of a few bytes stays below the 1 MB minimum block, so it is
    planned as a single recursive block unless it holds skipped folders.
    """

    def _make(sources: list[str], **global_overrides) -> Config:
        settings = dict(
            min_backup_block_size_mb=1,
            max_backup_block_size_mb=1,
            auto_manage_backup_block_size=False,
            retry_count=0,
        )
        settings.update(global_overrides)
        g = GlobalConfig(**settings)
        modules = [ModuleConfig(src_rsync=s) for s in sources]
        return Config(global_config=g, modules=modules)

    return _make


@pytest.fixture
def no_rsync_version():
    """Keep session statistics from spawning ``rsync --version``."""
    with mock.patch(
        "rsync_backup_ng.core.progress.get_rsync_version",
        return_value=("3.2.7", "31"),
    ) as m:
        yield m


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
sig_file_ignore_backup = ".nobackup"
retry_count = 3
auto_manage_backup_block_size = false
min_backup_block_size_mb = 100
max_backup_block_size_mb = 2000
use_previous_backup = true
number_of_previous_backup_to_use = 3
transfer_source_owner = true
compress_file_transfer = true
destination = "/mnt/backup"

[[modules]]
src_rsync = "rsync://nas/home"
dest_subpath = "home"
auth_password = "secret"

[[modules]]
src_rsync = "rsync://backup@nas/photos/2023"
change_file_permission = "Du+rwx,Fu+rw"
transfer_source_owner = false
recreate_symlinks = false

[[modules]]
src_rsync = "rsync://nas/scratch"
enabled = false
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[[modules]]
src_rsync = "rsync://nas/home"
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path

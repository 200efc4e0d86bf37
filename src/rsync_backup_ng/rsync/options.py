"""rsync command line options."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from ..__util__ import clamp

MAX_RETRY_COUNT = 5

DEFAULT_PARAMS = ("--progress", "--verbose")


def with_default_params(*params: str) -> list[str]:
    """Prepend the parameters every rsync call gets."""
    return [*DEFAULT_PARAMS, *params]


@dataclass
class RsyncLogging:
    """Low-level rsync log settings.

    Attributes:
        enabled: Record every rsync command line
        intensive: Record the captured stdout of every call as well
        log: Logger receiving the records
    """

    enabled: bool = False
    intensive: bool = False
    log: Optional[object] = None

    @property
    def active(self) -> bool:
        return self.enabled and self.log is not None


@dataclass
class RsyncOptions:
    """Parameters of a single rsync call plus its retry policy.

    Attributes:
        params: rsync arguments, source and destination excluded
        retry_count: Extra attempts after the first failure (0..5)
        error_hook: Called on every failed attempt, see core.recovery
        predicted_size: Bytes the call is expected to transfer
        password: rsync daemon secret, passed through the environment
    """

    params: list[str] = field(default_factory=list)
    retry_count: int = 0
    error_hook: Optional[Callable] = None
    predicted_size: Optional[int] = None
    password: Optional[str] = None

    def add_params(self, *params: str) -> "RsyncOptions":
        self.params.extend(params)
        return self

    def set_retry_count(self, retry_count: Optional[int]) -> "RsyncOptions":
        if retry_count is not None:
            self.retry_count = clamp(0, retry_count, MAX_RETRY_COUNT)
        return self

    def set_error_hook(self, error_hook: Optional[Callable]) -> "RsyncOptions":
        self.error_hook = error_hook
        return self

    def set_predicted_size(self, size: Optional[int]) -> "RsyncOptions":
        self.predicted_size = size
        return self

    def set_auth_password(self, password: Optional[str]) -> "RsyncOptions":
        self.password = password
        return self


def _effective(module_value: Optional[bool], global_value: Optional[bool]) -> bool:
    if module_value is not None:
        return module_value
    return bool(global_value)


def get_rsync_params(config, module, extra: Optional[list[str]] = None) -> list[str]:
    """Map transfer options to rsync flags.

    Module level flags override the global ones; compression is global only.

    Args:
        config: GlobalConfig with the session-wide transfer flags
        module: ModuleConfig with optional per-module overrides
        extra: Parameters appended as is

    Returns:
        List of rsync parameters
    """
    params = []
    flags = (
        ("transfer_source_owner", "--owner"),
        ("transfer_source_group", "--group"),
        ("transfer_source_permissions", "--perms"),
        ("recreate_symlinks", "--links"),
        ("transfer_device_files", "--devices"),
        ("transfer_special_files", "--specials"),
    )
    for name, flag in flags:
        if _effective(getattr(module, name, None), getattr(config, name, None)):
            params.append(flag)
    if getattr(config, "compress_file_transfer", False):
        params.append("--compress")
    chmod = getattr(module, "change_file_permission", None)
    if chmod:
        params.append(f"--chmod={chmod}")
    if extra:
        params.extend(extra)
    return params

"""Thin wrapper over the rsync command line utility."""

from .errors import (
    SPACE_EXHAUSTION_EXIT_CODES,
    get_exit_code_description,
    is_space_exhaustion_candidate,
)
from .options import RsyncLogging, RsyncOptions, get_rsync_params, with_default_params
from .runner import RsyncOutcome, run_rsync, run_rsync_with_retry
from .utils import (
    check_rsync_installed,
    extract_total_size,
    get_path_status,
    get_rsync_version,
)

__all__ = [
    "SPACE_EXHAUSTION_EXIT_CODES",
    "get_exit_code_description",
    "is_space_exhaustion_candidate",
    "RsyncLogging",
    "RsyncOptions",
    "get_rsync_params",
    "with_default_params",
    "RsyncOutcome",
    "run_rsync",
    "run_rsync_with_retry",
    "check_rsync_installed",
    "extract_total_size",
    "get_path_status",
    "get_rsync_version",
]

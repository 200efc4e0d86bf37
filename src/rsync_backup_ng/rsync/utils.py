"""rsync helpers: installation check, version, output parsing, probing."""

import logging
import re
import shutil
import subprocess
import tempfile
from typing import Optional

from ..__util__ import RsyncOutputParseError
from ..core.paths import SrcDstPath, rsync_path_join
from ..core.size import FolderSize
from .options import RsyncOptions, with_default_params
from .runner import RSYNC_CMD, run_rsync_with_retry

logger = logging.getLogger(__name__)

# "rsync  version 3.1.3  protocol version 31" or "rsync  version v3.2.3  protocol version 31"
_VERSION_RE = re.compile(
    r"version\s+v?(?P<version>\d+\.\d+(\.\d+)?)(\s+protocol\s+version\s+(?P<protocol>\d+))?"
)
# "total size is 2,227,810,354  speedup is 507,127.33 (DRY RUN)"
_TOTAL_SIZE_RE = re.compile(r"total\s+size\s+is\s+(?P<number>(\d+,?)+)")


def check_rsync_installed() -> bool:
    return shutil.which(RSYNC_CMD) is not None


def get_rsync_version() -> tuple[str, str]:
    """Return rsync (version, protocol).

    Raises:
        RsyncOutputParseError: If the version could not be detected
    """
    try:
        result = subprocess.run(
            [RSYNC_CMD, "--version"], capture_output=True, text=True, check=False
        )
    except OSError as e:
        raise RsyncOutputParseError(f"cannot run {RSYNC_CMD}: {e}") from e
    for line in result.stdout.splitlines():
        m = _VERSION_RE.search(line)
        if m:
            return m.group("version"), m.group("protocol") or ""
    raise RsyncOutputParseError("cannot extract rsync version and protocol")


def extract_total_size(stdout: str) -> FolderSize:
    """Parse the ``total size is N`` line of ``rsync --stats`` output."""
    m = _TOTAL_SIZE_RE.search(stdout)
    if not m:
        raise RsyncOutputParseError("cannot find folder size in rsync output")
    text = m.group("number").replace(",", "")
    try:
        return FolderSize(int(text))
    except ValueError as e:
        raise RsyncOutputParseError(f"cannot parse folder size {text!r}") from e


def get_path_status(
    ctx, source: str, password: Optional[str] = None, recursive: bool = False
) -> None:
    """Verify that an rsync source is reachable.

    Runs a dry-run transfer into a throw-away folder.

    Raises:
        RsyncCallFailedError: If the source can't be read
        ProcessTerminatedError: If ``ctx`` got cancelled
    """
    with tempfile.TemporaryDirectory(prefix="backup_dir_status_") as temp_dir:
        paths = SrcDstPath(rsync_path_join(source, ""), temp_dir)
        options = RsyncOptions(with_default_params("--include=*/", "--dry-run"))
        options.set_auth_password(password)
        if recursive:
            options.add_params("--recursive")
        outcome = run_rsync_with_retry(ctx, options, paths)
        if outcome.session_error is not None:
            raise outcome.session_error

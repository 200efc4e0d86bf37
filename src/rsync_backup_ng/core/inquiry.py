"""Directory inquiry: pass 1 folder structure discovery.

The source tree is mirrored in memory with one listing call per folder,
no file content is transferred. A folder holding the skip sentinel file
is marked as ignored and is not descended into.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Optional, Protocol

from ..__util__ import InquiryError, NotAFolderError, RsyncOutputParseError
from ..rsync.options import RsyncLogging, RsyncOptions, with_default_params
from ..rsync.runner import run_rsync_with_retry
from ..rsync.utils import extract_total_size
from .dirtree import Dir, DirMetrics
from .paths import SrcDstPath
from .size import FolderSize

logger = logging.getLogger(__name__)

# drwxr-xr-x          4,096 2023/01/02 10:11:12 name
_LIST_LINE_RE = re.compile(
    r"^(?P<perms>[-dlcbps][-rwxsStT]{9})\S*\s+"
    r"(?P<size>[\d,.]+)\s+"
    r"\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2}\s+"
    r"(?P<name>.+)$"
)


@dataclass(frozen=True)
class FolderEntry:
    """Item found in a folder listing."""

    name: str
    is_dir: bool
    size: int = 0


class SourceInventory(Protocol):
    """Metadata access to a backup source."""

    def list_folder(self, ctx, paths: SrcDstPath) -> list[FolderEntry]:
        """List items located directly in ``paths.source``.

        Raises:
            NotAFolderError: If the path is not a folder
        """
        ...

    def measure_folder(self, ctx, paths: SrcDstPath) -> FolderSize:
        """Return the size of the whole subtree under ``paths.source``."""
        ...


def _iter_list_lines(stdout: str):
    for line in stdout.splitlines():
        m = _LIST_LINE_RE.match(line.rstrip("\r"))
        if m:
            yield m


def parse_list_output(stdout: str) -> list[FolderEntry]:
    """Parse ``rsync --list-only`` output, the ``.`` entry is dropped.

    Only regular files carry a size; symlinks, devices and folders count
    as zero bytes.
    """
    entries = []
    for m in _iter_list_lines(stdout):
        perms, name = m.group("perms"), m.group("name")
        if perms.startswith("l") and " -> " in name:
            name = name.split(" -> ", 1)[0]
        if name in (".", ".."):
            continue
        size = 0
        if perms.startswith("-"):
            size = int(m.group("size").replace(",", "").replace(".", ""))
        entries.append(FolderEntry(name, perms.startswith("d"), size))
    return entries


class RsyncInventory:
    """Inventory of an rsync source, e.g. ``rsync://host/module/path``."""

    def __init__(
        self,
        password: Optional[str] = None,
        retry_count: Optional[int] = None,
        rsync_log: Optional[RsyncLogging] = None,
    ) -> None:
        self.password = password
        self.retry_count = retry_count
        self.rsync_log = rsync_log

    def _run(self, ctx, options: RsyncOptions, paths: SrcDstPath) -> str:
        options.set_retry_count(self.retry_count).set_auth_password(self.password)
        outcome = run_rsync_with_retry(ctx, options, paths, self.rsync_log)
        if outcome.session_error is not None:
            raise InquiryError(
                f"cannot read {paths.source}: {outcome.session_error}"
            ) from outcome.session_error
        return outcome.stdout

    def list_folder(self, ctx, paths: SrcDstPath) -> list[FolderEntry]:
        # Without destination rsync only lists the source.
        listing = SrcDstPath(paths.source, "")
        stdout = self._run(ctx, RsyncOptions(["--list-only", "--dirs"]), listing)
        # A folder listing always reports the folder itself as "."
        if not any(m.group("name") == "." for m in _iter_list_lines(stdout)):
            raise NotAFolderError(paths.source)
        return parse_list_output(stdout)

    def measure_folder(self, ctx, paths: SrcDstPath) -> FolderSize:
        options = RsyncOptions(with_default_params("--dry-run", "--stats", "--recursive"))
        with tempfile.TemporaryDirectory(prefix="backup_dir_size_") as temp_dir:
            stdout = self._run(ctx, options, SrcDstPath(paths.source, temp_dir))
        try:
            return extract_total_size(stdout)
        except RsyncOutputParseError as e:
            raise InquiryError(f"cannot measure {paths.source}: {e}") from e


class LocalInventory:
    """Inventory of a folder on a locally mounted filesystem."""

    def list_folder(self, ctx, paths: SrcDstPath) -> list[FolderEntry]:
        path = paths.source
        if not os.path.isdir(path):
            raise NotAFolderError(path)
        entries = []
        try:
            with os.scandir(path) as it:
                for item in it:
                    is_dir = item.is_dir(follow_symlinks=False)
                    size = 0
                    if item.is_file(follow_symlinks=False):
                        size = item.stat(follow_symlinks=False).st_size
                    entries.append(FolderEntry(item.name, is_dir, size))
        except OSError as e:
            raise InquiryError(f"cannot read {path}: {e}") from e
        return sorted(entries, key=lambda e: e.name)

    def measure_folder(self, ctx, paths: SrcDstPath) -> FolderSize:
        total = 0
        for root, _dirs, files in os.walk(paths.source):
            if ctx is not None:
                ctx.check()
            for name in files:
                full = os.path.join(root, name)
                if not os.path.islink(full):
                    try:
                        total += os.path.getsize(full)
                    except OSError:
                        logger.debug("Cannot stat %s", full)
        return FolderSize(total)


def _create_offsprings(
    ctx,
    parent: Dir,
    sig_file_name: str,
    inventory: SourceInventory,
    depth: int,
) -> int:
    if ctx is not None:
        ctx.check()
    entries = inventory.list_folder(ctx, parent.paths)
    if any(not e.is_dir and e.name == sig_file_name for e in entries):
        parent.metrics.ignore_to_backup = True
        parent.metrics.children_count = 1
        return 1

    parent.metrics.size = FolderSize(sum(e.size for e in entries if not e.is_dir))
    total_count = 1
    for entry in entries:
        if not entry.is_dir:
            continue
        child = Dir(
            entry.name,
            parent.paths.join(entry.name),
            metrics=DirMetrics(depth=depth),
        )
        total_count += _create_offsprings(ctx, child, sig_file_name, inventory, depth + 1)
        parent.add_child(child)
    parent.metrics.children_count = total_count
    return total_count


def build_dir_tree(
    ctx,
    paths: SrcDstPath,
    sig_file_name: str,
    inventory: Optional[SourceInventory] = None,
) -> Dir:
    """Mirror the folder structure under ``paths`` in memory.

    Args:
        ctx: Execution context, checked before every listing call
        paths: Source folder paired with its destination
        sig_file_name: Name of the file which marks a folder as skipped
        inventory: Source access, rsync by default

    Raises:
        NotAFolderError: If the source is not a folder
        InquiryError: If a folder could not be listed
        ProcessTerminatedError: If ``ctx`` got cancelled
    """
    inventory = inventory or RsyncInventory()
    name = os.path.basename(paths.source.rstrip("/")) or paths.source
    root = Dir(name, paths, metrics=DirMetrics(depth=0))
    _create_offsprings(ctx, root, sig_file_name, inventory, 1)
    logger.debug(
        "Inquired %s: %d folders", paths.source, root.metrics.children_count
    )
    return root

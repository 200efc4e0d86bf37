"""Plan building, the first pass of a backup session.

Every enabled module's source tree is inquired and split into transfer
blocks. Nothing is copied yet.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..__util__ import ProcessTerminatedError, log_heading
from ..rsync.options import RsyncLogging
from .dirtree import Dir, FolderBackupType
from .heuristic import partition_dir
from .inquiry import RsyncInventory, SourceInventory, build_dir_tree
from .logfiles import (
    LogFiles,
    close_session_logger,
    create_rsync_logger,
    create_session_logger,
)
from .paths import SrcDstPath, rsync_path_join
from .progress import TIME_FORMAT, Progress
from .size import FolderSize

logger = logging.getLogger(__name__)


@dataclass
class Node:
    """One module of the plan with its partitioned source tree."""

    module: object
    root_dir: Dir

    @property
    def total_size(self) -> FolderSize:
        return self.root_dir.get_total_size()

    @property
    def ignore_size(self) -> FolderSize:
        return self.root_dir.get_ignore_size()

    @property
    def folders_count(self) -> int:
        return self.root_dir.get_folders_count()

    @property
    def folders_ignore_count(self) -> int:
        return self.root_dir.get_folders_ignore_count()


@dataclass
class Plan:
    """Everything pass 2 needs.

    Attributes:
        config: Session configuration
        nodes: One node per enabled module, in configuration order
        backup_size: Bytes to transfer, skipped folders excluded
    """

    config: object
    nodes: list[Node] = field(default_factory=list)
    backup_size: FolderSize = FolderSize(0)

    @property
    def ignore_size(self) -> FolderSize:
        return sum((n.ignore_size for n in self.nodes), FolderSize(0))

    def get_modules(self) -> list:
        return [n.module for n in self.nodes]

    def run_backup(self, progress: Progress, dest_root: str, error_hook=None):
        """Run pass 2, see ``execution.run_backup``."""
        from .execution import run_backup

        return run_backup(self, progress, dest_root, error_hook)


def _measure_skipped(ctx, root: Dir, inventory: SourceInventory) -> None:
    for d in root.walk():
        if d.metrics.backup_type == FolderBackupType.SKIP and d.metrics.full_size is None:
            d.metrics.full_size = inventory.measure_folder(ctx, d.paths)


def estimate_node(
    ctx,
    module,
    global_config,
    inventory: SourceInventory,
) -> Dir:
    """Inquire and partition one module's source tree."""
    paths = SrcDstPath(rsync_path_join(module.src_rsync, ""), module.dest_subpath)
    root = build_dir_tree(ctx, paths, global_config.sig_file_ignore_backup, inventory)
    partition_dir(root, global_config.block_size_settings())
    _measure_skipped(ctx, root, inventory)
    return root


def _rsync_logging(global_config, log_files: LogFiles) -> Optional[RsyncLogging]:
    if not global_config.enable_low_level_log_rsync:
        return None
    return RsyncLogging(
        enabled=True,
        intensive=global_config.enable_intensive_low_level_log_rsync,
        log=create_rsync_logger(log_files),
    )


def _abandon(progress: Progress) -> None:
    """Release the session logs of a plan no caller will get."""
    close_session_logger(progress.log)
    if progress.rsync_log is not None and progress.rsync_log.log is not None:
        close_session_logger(progress.rsync_log.log)
    progress.log_files.discard()


def build_backup_plan(
    ctx,
    log: Optional[logging.Logger],
    config,
    modules: Optional[list] = None,
    notifier=None,
    inventory: Optional[SourceInventory] = None,
) -> tuple[Plan, Progress]:
    """Run pass 1 over ``modules`` (the enabled ones of ``config`` by default).

    Args:
        ctx: Execution context of the session
        log: Parent logger of the session log
        config: Session configuration
        modules: Modules to plan
        notifier: Plan and progress observer
        inventory: Source access shared by every module, rsync by default

    Returns:
        Tuple of (Plan, fresh Progress)

    Raises:
        ProcessTerminatedError: If ``ctx`` got cancelled
        InquiryError: On the first source which can't be inquired
    """
    g = config.global_config
    if modules is None:
        modules = config.get_enabled_modules()
    else:
        modules = [m for m in modules if m.enabled]

    log_files = LogFiles()
    name = f"{log.name}.session" if log is not None else "rsync_backup_ng.session"
    session_log = create_session_logger(log_files, name=name)
    progress = Progress(
        ctx, log_files, session_log, _rsync_logging(g, log_files), notifier
    )

    progress.start_plan_stage()
    session_log.info(log_heading(char="="))
    session_log.info("Plan stage starting...")
    session_log.info("Start time: %s", progress.start_plan_time.strftime(TIME_FORMAT))
    session_log.info("Iterate via %d source(s)", len(modules))

    nodes = []
    total = FolderSize(0)
    for i, module in enumerate(modules):
        session_log.info(log_heading(char="-"))
        try:
            progress.event_node_structure_start_inquiry(i, module.src_rsync)
            module_inventory = inventory or RsyncInventory(
                module.auth_password, g.retry_count, progress.rsync_log
            )
            root = estimate_node(ctx, module, g, module_inventory)
            progress.event_node_structure_done_inquiry(i, module.src_rsync, root)
        except ProcessTerminatedError:
            session_log.info("Plan stage terminated")
            _abandon(progress)
            raise
        except Exception as e:
            session_log.error("%s", e)
            _abandon(progress)
            raise
        total += root.get_total_size()
        nodes.append(Node(module, root))

    session_log.info(log_heading(char="-"))
    progress.finish_plan_stage()
    session_log.info("End time: %s", progress.end_plan_time.strftime(TIME_FORMAT))
    return Plan(config, nodes, total), progress

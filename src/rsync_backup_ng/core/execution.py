"""Backup execution, the second pass of a backup session.

Blocks of the plan are transferred one at a time, in plan order, into a
snapshot folder named ``~rsync_backup_(incomplete)_<time>~``. Only when
every module went through is the folder renamed to its final name and
the module signatures are written next to the data.
"""

import logging
import os
from enum import Enum
from typing import Optional

from filelock import FileLock, Timeout

from ..__util__ import (
    AbortError,
    ProcessTerminatedError,
    format_size,
    is_process_terminated,
    log_heading,
)
from ..rsync import runner as rsync_runner
from ..rsync.options import RsyncOptions, get_rsync_params, with_default_params
from .dedup import (
    create_signature_file,
    find_previous_backups,
    generate_source_id,
    get_backup_folder_name,
    get_node_signatures,
)
from .dirtree import Dir, FolderBackupType
from .logfiles import LOG_FILE_NAME, RSYNC_LOG_FILE_NAME
from .paths import SrcDstPath, get_relative_path
from .progress import TIME_FORMAT
from .size import KB, FolderSize, SizeProgress

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".rsync-backup-ng.lock"

# Expected transfer of a skipped folder: the sentinel file only.
SKIP_PREDICTED_SIZE = 1 * KB


class SessionStatus(Enum):
    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_ERRORS = "succeeded with errors"
    TERMINATED = "terminated"
    FAILED = "failed"


def classify_session(error: Optional[BaseException], progress=None) -> SessionStatus:
    """Map the outcome of a session to one of its terminal states."""
    if error is None:
        if progress is not None and progress.total_progress.failed is not None:
            return SessionStatus.SUCCEEDED_WITH_ERRORS
        return SessionStatus.SUCCEEDED
    if is_process_terminated(error):
        return SessionStatus.TERMINATED
    return SessionStatus.FAILED


def _block_options(
    plan, block: Dir, module, link_dests: list[str]
) -> tuple[RsyncOptions, FolderSize]:
    g = plan.config.global_config
    m = block.metrics
    options = RsyncOptions(with_default_params("--times")).add_params("--delete")

    if m.backup_type == FolderBackupType.SKIP:
        options.add_params(
            "--dirs", f"--include={g.sig_file_ignore_backup}", "--exclude=*"
        )
        options.set_predicted_size(SKIP_PREDICTED_SIZE)
        size = m.full_size or FolderSize(0)
    else:
        if m.backup_type == FolderBackupType.RECURSIVE:
            options.add_params("--recursive")
            size = m.full_size or FolderSize(0)
        else:
            options.add_params("--dirs")
            size = m.size or FolderSize(0)
        options.set_predicted_size(size)
        if g.use_previous_backup:
            options.add_params(*(f"--link-dest={path}" for path in link_dests))

    options.add_params(*get_rsync_params(g, module))
    options.set_retry_count(g.retry_count).set_auth_password(module.auth_password)
    return options, size


def _report_progress(
    plan, progress, outcome, size: FolderSize, paths: SrcDstPath, backup_type
) -> None:
    if outcome.retry_error is not None:
        progress.log.info("Recovered from error: %s", outcome.retry_error)

    if outcome.session_error is not None:
        what = "skip " if backup_type == FolderBackupType.SKIP else ""
        progress.log.warning(
            "Failed to %sbackup %s (%s) from %s: %s",
            what,
            get_relative_path(progress.get_backup_full_path(), paths.dest),
            format_size(size),
            paths.source,
            outcome.session_error,
        )
        size_done = SizeProgress.for_failed(size)
    elif backup_type == FolderBackupType.SKIP:
        size_done = SizeProgress.for_skipped(size)
    else:
        size_done = SizeProgress.for_completed(size)
    progress.event_folder_done_backup(
        paths, backup_type, plan, size_done, outcome.session_error
    )


def _backup_block(
    plan, node, block: Dir, paths: SrcDstPath, progress, error_hook, link_dests
):
    os.makedirs(paths.dest, exist_ok=True)
    backup_type = block.metrics.backup_type
    progress.event_folder_start_backup(paths, backup_type, plan)

    options, size = _block_options(plan, block, node.module, link_dests)
    options.set_error_hook(error_hook)
    outcome = rsync_runner.run_rsync_with_retry(
        progress.context,
        options,
        paths,
        progress.rsync_log,
        runner=rsync_runner.run_rsync,
    )
    _report_progress(plan, progress, outcome, size, paths, backup_type)


def _backup_node(
    plan, node, progress, backup_path: str, error_hook, link_dirs: list[str]
):
    root = node.root_dir
    module_dest = os.path.join(backup_path, node.module.dest_subpath)
    progress.progress = SizeProgress()
    for block in root.iter_blocks():
        if progress.context is not None:
            progress.context.check()
        # Blocks are addressed relative to the module root, so the same
        # offset applies to the snapshot folder and to previous snapshots.
        rel = os.path.relpath(block.paths.dest, root.paths.dest)
        dest = os.path.normpath(os.path.join(module_dest, rel))
        paths = SrcDstPath(block.paths.source, dest)
        link_dests = [os.path.normpath(os.path.join(p, rel)) for p in link_dirs]
        _backup_block(plan, node, block, paths, progress, error_hook, link_dests)


def _log_previous_backups(plan, progress, dest_root: str, previous) -> None:
    log = progress.log
    if len(previous) == 0:
        log.info("No previous backups found")
        return
    if plan.config.global_config.use_previous_backup:
        log.info("Previous backups found in %s and will be used:", dest_root)
    else:
        log.info(
            "Previous backups found in %s, but deduplication is disabled:", dest_root
        )
    for path in previous.get_relative_paths(dest_root):
        log.info("    %s", path)


def _run_backup(plan, progress, dest_root: str, error_hook) -> None:
    g = plan.config.global_config
    progress.progress = SizeProgress()
    progress.total_progress = SizeProgress()
    progress.start_backup_stage()

    log = progress.log
    log.info(log_heading(char="="))
    log.info("Backup stage starting...")
    log.info("Start time: %s", progress.start_backup_time.strftime(TIME_FORMAT))

    progress.set_root_destination(dest_root)
    progress.set_backup_folder(get_backup_folder_name(True, progress.start_backup_time))
    backup_path = progress.get_backup_full_path()
    log.info("Backup to destination: %s", backup_path)

    log.info("Discovering previous backups...")
    previous = find_previous_backups(
        log, dest_root, get_node_signatures(plan.get_modules()),
        g.number_of_previous_backup_to_use,
    )
    progress.used_previous_backups(previous)
    _log_previous_backups(plan, progress, dest_root, previous)

    for i, node in enumerate(plan.nodes):
        log.info(log_heading(char="-"))
        log.info("Start to backup from source #%d: %s", i + 1, node.module.src_rsync)
        link_dirs = []
        if g.use_previous_backup:
            source_id = generate_source_id(node.module.src_rsync)
            link_dirs = previous.filter_by_source_id(source_id).get_dir_paths()
        _backup_node(plan, node, progress, backup_path, error_hook, link_dirs)
    log.info(log_heading(char="-"))

    final_folder = get_backup_folder_name(False, progress.start_backup_time)
    final_path = progress.get_backup_full_path(final_folder)
    progress.log_files.close()
    os.rename(backup_path, final_path)
    progress.set_backup_folder(final_folder)
    log.info("Rename destination to: %s", final_path)

    create_signature_file(plan.get_modules(), final_path)

    progress.finish_backup_stage()
    log.info("End time: %s", progress.end_backup_time.strftime(TIME_FORMAT))
    progress.print_total_statistics(plan)


def run_backup(plan, progress, dest_root: str, error_hook=None) -> None:
    """Transfer every block of ``plan`` into a new snapshot under ``dest_root``.

    The session log ends up in the snapshot folder whatever the outcome.

    Raises:
        ProcessTerminatedError: If the session context got cancelled
        AbortError: If the error hook aborted the session or another
            session holds the destination
    """
    os.makedirs(dest_root, exist_ok=True)
    lock = FileLock(os.path.join(dest_root, LOCK_FILE_NAME))
    try:
        lock.acquire(timeout=0)
    except Timeout as e:
        raise AbortError(f"another backup session is writing to {dest_root}") from e

    try:
        _run_backup(plan, progress, dest_root, error_hook)
    except ProcessTerminatedError:
        progress.log.warning("Backup stage terminated")
        raise
    except Exception as e:
        progress.log.error("Backup stage critical error: %s", e)
        raise
    finally:
        if progress.backup_folder:
            if progress.rsync_log is not None:
                progress.log.info(
                    "Save rsync extra log to %s",
                    os.path.join(progress.get_backup_full_path(), RSYNC_LOG_FILE_NAME),
                )
            progress.log.info(
                "Save backup session log to %s",
                os.path.join(progress.get_backup_full_path(), LOG_FILE_NAME),
            )
        progress.log.info("Bye")
        progress.close()
        lock.release()

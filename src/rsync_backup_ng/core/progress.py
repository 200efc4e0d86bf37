"""Session progress: timing, accumulated sizes, event reporting."""

import logging
import os
import platform
from datetime import datetime, timedelta
from typing import Callable, Optional

from .. import APP_NAME, __version__
from ..__util__ import RsyncOutputParseError, format_duration, format_size, log_heading
from ..rsync.options import RsyncLogging
from ..rsync.utils import get_rsync_version
from .dedup import PreviousBackups
from .dirtree import Dir, FolderBackupType
from .logfiles import LogFiles
from .notifier import PlanObserver, ProgressObserver
from .paths import SrcDstPath, get_relative_path
from .size import FolderSize, SizeProgress, completion_fraction

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y %b %d %H:%M:%S"
TAB = "    "


class Progress:
    """State of one backup session, owned by the session worker.

    Observers only read it.
    """

    def __init__(
        self,
        context,
        log_files: LogFiles,
        log: logging.Logger,
        rsync_log: Optional[RsyncLogging] = None,
        notifier=None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.context = context
        self.log_files = log_files
        self.log = log
        self.rsync_log = rsync_log
        self.notifier = notifier
        self.clock = clock

        self.progress = SizeProgress()
        self.total_progress = SizeProgress()

        self.start_plan_time: Optional[datetime] = None
        self.end_plan_time: Optional[datetime] = None
        self.start_backup_time: Optional[datetime] = None
        self.end_backup_time: Optional[datetime] = None

        self.previous_backups = PreviousBackups()
        self.root_dest = ""
        self.backup_folder = ""
        self.size_changed_notified = False

    def start_plan_stage(self) -> None:
        self.start_plan_time = self.clock()

    def finish_plan_stage(self) -> None:
        self.end_plan_time = self.clock()

    def start_backup_stage(self) -> None:
        self.start_backup_time = self.clock()

    def finish_backup_stage(self) -> None:
        self.end_backup_time = self.clock()

    def _stage_time(self, start, end) -> timedelta:
        if start is None:
            return timedelta(0)
        if end is not None and end >= start:
            return end - start
        return self.clock() - start

    def get_total_time_taken(self) -> timedelta:
        plan_time = self._stage_time(self.start_plan_time, self.end_plan_time)
        backup_time = self._stage_time(self.start_backup_time, self.end_backup_time)
        return plan_time + backup_time

    def size_backed_up(self) -> FolderSize:
        """Bytes processed so far, failed and skipped included."""
        return self.total_progress.get_total()

    def left_to_backup(self, plan) -> FolderSize:
        expected = plan.backup_size + plan.ignore_size
        done = self.size_backed_up()
        if expected >= done:
            return FolderSize(expected - done)
        if not self.size_changed_notified:
            self.log.warning("Source size has changed since the plan stage")
            self.size_changed_notified = True
        return FolderSize(0)

    def size_completed(self) -> FolderSize:
        return self.total_progress.completed or FolderSize(0)

    def fraction_done(self, plan) -> float:
        """Completed bytes over completed plus left, skipped and failed excluded."""
        return completion_fraction(self.size_completed(), self.left_to_backup(plan))

    def calc_elapsed_and_eta(self, plan) -> tuple[timedelta, Optional[timedelta]]:
        """Return time passed in the backup stage and the estimated time left.

        The estimate is None until some bytes are completed.
        """
        elapsed = self._stage_time(self.start_backup_time, None)
        done = self.size_completed()
        if done > 0:
            return elapsed, elapsed * (self.left_to_backup(plan) / done)
        return elapsed, None

    def set_root_destination(self, root_dest: str) -> None:
        self.root_dest = root_dest

    def set_backup_folder(self, backup_folder: str) -> None:
        """Switch to a new snapshot folder, log files move along."""
        self.backup_folder = backup_folder
        self.log_files.change_root_path(self.get_backup_full_path(backup_folder))

    def get_backup_full_path(self, backup_folder: Optional[str] = None) -> str:
        return os.path.join(self.root_dest, backup_folder or self.backup_folder)

    def used_previous_backups(self, previous_backups: PreviousBackups) -> None:
        self.previous_backups = previous_backups

    def event_node_structure_start_inquiry(self, index: int, source: str) -> None:
        self.log.info("Inquiry source #%d: %s", index + 1, source)
        if isinstance(self.notifier, PlanObserver):
            self.notifier.node_structure_start_inquiry(index, source)

    def event_node_structure_done_inquiry(self, index: int, source: str, dir: Dir) -> None:
        self.log.info(
            "%d folders, %d to skip, total size %s",
            dir.get_folders_count(),
            dir.get_folders_ignore_count(),
            format_size(dir.get_total_size()),
        )
        if isinstance(self.notifier, PlanObserver):
            self.notifier.node_structure_done_inquiry(index, source, dir)

    def event_folder_start_backup(
        self, paths: SrcDstPath, backup_type: FolderBackupType, plan
    ) -> None:
        backup_path = self.get_backup_full_path()
        elapsed, eta = self.calc_elapsed_and_eta(plan)
        left = self.left_to_backup(plan)
        eta_str = format_duration(eta.total_seconds()) if eta is not None else "*"
        msg = "Left %s, ETA %s: %s %s" % (
            format_size(left),
            eta_str,
            backup_type.description,
            get_relative_path(backup_path, paths.dest),
        )
        if backup_type == FolderBackupType.SKIP:
            self.log.warning(msg)
        else:
            self.log.info(msg)
        if isinstance(self.notifier, ProgressObserver):
            self.notifier.folder_start_backup(
                backup_path, paths, backup_type, left, elapsed, eta
            )

    def event_folder_done_backup(
        self,
        paths: SrcDstPath,
        backup_type: FolderBackupType,
        plan,
        size_done: SizeProgress,
        error: Optional[BaseException],
    ) -> None:
        self.progress = self.progress.add(size_done)
        self.total_progress = self.total_progress.add(size_done)
        elapsed, eta = self.calc_elapsed_and_eta(plan)
        left = self.left_to_backup(plan)
        if isinstance(self.notifier, ProgressObserver):
            self.notifier.folder_done_backup(
                self.get_backup_full_path(),
                paths,
                backup_type,
                left,
                size_done,
                elapsed,
                eta,
                error,
            )

    def get_total_statistics(self, plan) -> list[str]:
        """Summary block written at the end of the session log."""
        lines = [log_heading(char="="), "Statistics summary"]

        def add(indent: int, text: str) -> None:
            lines.append(TAB * indent + text)

        add(1, "Environment:")
        add(2, f"{APP_NAME} {__version__}")
        try:
            version, protocol = get_rsync_version()
        except RsyncOutputParseError:
            version = protocol = "?"
        add(2, f"rsync version {version}, protocol {protocol or '?'}")
        add(2, f"Python {platform.python_version()} ({platform.machine()})")

        add(1, "Results:")
        add(2, "Status:")
        if self.total_progress.failed is not None:
            add(3, "completed with errors")
        else:
            add(3, "successfully completed")

        add(2, "Plan stage:")
        for i, node in enumerate(plan.nodes):
            add(3, f"Source #{i + 1}: {node.module.src_rsync}")
        add(3, f"Total size: {format_size(plan.backup_size)}")
        add(3, f"Folders: {sum(n.folders_count for n in plan.nodes)}")
        add(3, f"Folders skipped: {sum(n.folders_ignore_count for n in plan.nodes)}")
        add(3, "Time taken: " + format_duration(
            self._stage_time(self.start_plan_time, self.end_plan_time).total_seconds()
        ))

        add(2, "Backup stage:")
        add(3, f"Destination: {self.get_backup_full_path()}")
        if len(self.previous_backups) > 0:
            enabled = plan.config.global_config.use_previous_backup
            add(3, "Previous backups %s:" % ("used" if enabled else "found, but disabled"))
            for path in self.previous_backups.get_relative_paths(self.root_dest):
                add(4, path)
        else:
            add(3, "No previous backups found")
        add(3, f"Backed up: {format_size(self.total_progress.completed or 0)}")
        add(3, f"Skipped: {format_size(self.total_progress.skipped or 0)}")
        add(3, f"Failed: {format_size(self.total_progress.failed or 0)}")
        add(3, "Time taken: " + format_duration(
            self._stage_time(self.start_backup_time, self.end_backup_time).total_seconds()
        ))
        lines.append(log_heading(char="="))
        return lines

    def print_total_statistics(self, plan) -> None:
        for line in self.get_total_statistics(plan):
            self.log.info(line)

    def close(self) -> None:
        self.log_files.close()

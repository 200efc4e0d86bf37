"""Observers of plan building and backup progress.

All calls are made from the session worker thread in temporal order.
Handlers must return quickly.
"""

import logging
from datetime import timedelta
from typing import Optional, Protocol, runtime_checkable

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TimeElapsedColumn

from ..__util__ import format_duration, format_size
from .dirtree import Dir, FolderBackupType
from .paths import SrcDstPath, get_relative_path
from .size import SizeProgress, completion_fraction

logger = logging.getLogger(__name__)


@runtime_checkable
class PlanObserver(Protocol):
    def node_structure_start_inquiry(self, index: int, source: str) -> None:
        ...

    def node_structure_done_inquiry(self, index: int, source: str, dir: Dir) -> None:
        ...


@runtime_checkable
class ProgressObserver(Protocol):
    def folder_start_backup(
        self,
        dest_root: str,
        paths: SrcDstPath,
        backup_type: FolderBackupType,
        left: int,
        elapsed: timedelta,
        eta: Optional[timedelta],
    ) -> None:
        ...

    def folder_done_backup(
        self,
        dest_root: str,
        paths: SrcDstPath,
        backup_type: FolderBackupType,
        left: int,
        size_done: SizeProgress,
        elapsed: timedelta,
        eta: Optional[timedelta],
        error: Optional[BaseException],
    ) -> None:
        ...


class Notifier(PlanObserver, ProgressObserver, Protocol):
    """Observer of both stages."""


def _eta_str(eta: Optional[timedelta]) -> str:
    return format_duration(eta.total_seconds() if eta is not None else None)


class LoggingNotifier:
    """Report every event as a log line."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def node_structure_start_inquiry(self, index, source):
        self.log.debug("Inquiring source #%d: %s", index + 1, source)

    def node_structure_done_inquiry(self, index, source, dir):
        self.log.debug(
            "Source #%d inquired: %d folders, %s to back up",
            index + 1,
            dir.get_folders_count(),
            format_size(dir.get_total_size()),
        )

    def folder_start_backup(self, dest_root, paths, backup_type, left, elapsed, eta):
        self.log.debug(
            "Start %s: %s (left %s, ETA %s)",
            backup_type.description,
            get_relative_path(dest_root, paths.dest),
            format_size(left),
            _eta_str(eta),
        )

    def folder_done_backup(
        self, dest_root, paths, backup_type, left, size_done, elapsed, eta, error
    ):
        if error is not None:
            self.log.debug(
                "Failed %s: %s", get_relative_path(dest_root, paths.dest), error
            )
        else:
            self.log.debug(
                "Done %s: %s", get_relative_path(dest_root, paths.dest),
                format_size(size_done.get_total()),
            )


class RichProgressNotifier:
    """Drive a rich progress bar from backup events.

    Use as a context manager around ``Plan.run_backup``; the bar restarts
    from zero on every entry and, like ``Progress.fraction_done``, counts
    completed bytes only.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        self.progress = Progress(
            "[progress.description]{task.description}",
            BarColumn(),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "{task.fields[eta]}",
            SpinnerColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self.task_id = None
        self.done = 0

    def __enter__(self):
        self.done = 0
        if self.task_id is not None:
            self.progress.remove_task(self.task_id)
        self.progress.start()
        self.task_id = self.progress.add_task(
            "[green]Backup progress:", total=1.0, eta="ETA *"
        )
        return self

    def __exit__(self, *exc):
        self.progress.stop()
        return False

    def _update(self, left: int, eta: Optional[timedelta], description: str) -> None:
        if self.task_id is None:
            return
        self.progress.update(
            self.task_id,
            completed=completion_fraction(self.done, left),
            description=description,
            eta=f"ETA {_eta_str(eta)}",
        )

    def node_structure_start_inquiry(self, index, source):
        self.progress.console.print(f"[cyan]Inquiring source #{index + 1}:[/] {source}")

    def node_structure_done_inquiry(self, index, source, dir):
        self.progress.console.print(
            f"[cyan]Source #{index + 1}:[/] {dir.get_folders_count()} folders, "
            f"{format_size(dir.get_total_size())}"
        )

    def folder_start_backup(self, dest_root, paths, backup_type, left, elapsed, eta):
        self._update(
            left, eta, f"[green]{get_relative_path(dest_root, paths.dest)}"
        )

    def folder_done_backup(
        self, dest_root, paths, backup_type, left, size_done, elapsed, eta, error
    ):
        self.done += size_done.completed or 0
        self._update(left, eta, "[green]Backup progress:")

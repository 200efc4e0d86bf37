"""Plan command: show how sources would be split into transfer blocks.

Runs the inquiry and partitioning stage only, nothing is copied.
"""

import argparse
import json
import logging
import os
from typing import Any

from rich.table import Table

from .. import __logger__, __util__
from ..__logger__ import create_logger
from ..__logger__ import logger as root_logger
from ..core.context import BackupSessionStatus, cancel_on_signals
from ..core.dirtree import FolderBackupType
from ..core.notifier import LoggingNotifier
from ..core.planning import Plan, build_backup_plan
from .common import get_log_level, load_cli_config, select_modules

logger = logging.getLogger(__name__)


def execute_plan(args: argparse.Namespace) -> int:
    """Execute the plan command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    config = load_cli_config(args)
    if config is None:
        return 1

    modules = select_modules(config, args)
    if not modules:
        print("Error: No modules to plan")
        return 1

    session = BackupSessionStatus()
    pack = session.start()
    progress = None
    with cancel_on_signals(pack):
        try:
            plan, progress = build_backup_plan(
                pack.context, root_logger, config, modules, LoggingNotifier()
            )
        except __util__.ProcessTerminatedError:
            logger.warning("Planning terminated")
            return 130
        except (__util__.BackupError, OSError) as e:
            logger.error("Planning failed: %s", e)
            return 1
        finally:
            session.done(pack)
            if progress is not None:
                progress.log_files.discard()

    if getattr(args, "json", False):
        _print_json(plan)
    else:
        _print_plan(plan)
    return 0


def _block_rows(plan: Plan):
    for node in plan.nodes:
        root = node.root_dir
        for block in root.iter_blocks():
            rel = os.path.relpath(block.paths.dest, root.paths.dest)
            folder = os.path.normpath(os.path.join(node.module.dest_subpath, rel))
            yield node, folder, block


def _print_plan(plan: Plan) -> None:
    """Print the blocks of each module as a rich table."""
    table = Table(title="Backup plan", show_lines=False)
    table.add_column("Source", style="cyan")
    table.add_column("Folder")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    for node, folder, block in _block_rows(plan):
        backup_type = block.metrics.backup_type
        style = "yellow" if backup_type == FolderBackupType.SKIP else None
        table.add_row(
            node.module.src_rsync,
            folder,
            backup_type.description,
            __util__.format_size(block.block_size()),
            style=style,
        )
    __logger__.cons.print(table)

    print("")
    print(f"Modules:        {len(plan.nodes)}")
    print(f"Folders:        {sum(n.folders_count for n in plan.nodes)}")
    print(f"Skipped:        {sum(n.folders_ignore_count for n in plan.nodes)}")
    print(f"To back up:     {__util__.format_size(plan.backup_size)}")
    print(f"Skipped size:   {__util__.format_size(plan.ignore_size)}")


def _print_json(plan: Plan) -> None:
    data: dict[str, Any] = {
        "backup_size_bytes": plan.backup_size,
        "backup_size_human": __util__.format_size(plan.backup_size),
        "ignore_size_bytes": plan.ignore_size,
        "modules": [],
    }
    for node in plan.nodes:
        data["modules"].append(
            {
                "src_rsync": node.module.src_rsync,
                "dest_subpath": node.module.dest_subpath,
                "total_size_bytes": node.total_size,
                "ignore_size_bytes": node.ignore_size,
                "folders": node.folders_count,
                "folders_skipped": node.folders_ignore_count,
                "blocks": [],
            }
        )
    by_module = {id(n): d for n, d in zip(plan.nodes, data["modules"])}
    for node, folder, block in _block_rows(plan):
        by_module[id(node)]["blocks"].append(
            {
                "folder": folder,
                "type": block.metrics.backup_type.name.lower(),
                "size_bytes": block.block_size(),
            }
        )
    print(json.dumps(data, indent=2))

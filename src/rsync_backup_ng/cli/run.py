"""Run command: plan and execute a backup session."""

import argparse
import logging
import time

from .. import __util__
from .. import __logger__
from ..__logger__ import create_logger
from ..__logger__ import logger as root_logger
from ..core.context import BackupSessionStatus, cancel_on_signals
from ..core.execution import SessionStatus, classify_session
from ..core.notifier import LoggingNotifier, RichProgressNotifier
from ..core.planning import build_backup_plan
from ..core.recovery import AbortResolver, IgnoreResolver, SpaceRecoveryHook
from ..rsync import check_rsync_installed
from .common import (
    attach_log_file,
    exit_code_for,
    get_log_level,
    load_cli_config,
    select_modules,
)

logger = logging.getLogger(__name__)


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 success, 1 failure, 2 finished with errors, 130 terminated)
    """
    # Initialize logger
    log_level = get_log_level(args)
    create_logger(level=log_level)

    config = load_cli_config(args)
    if config is None:
        return 1
    attach_log_file(config.global_config.log_file)

    destination = getattr(args, "destination", None) or config.global_config.destination
    if not destination:
        logger.error("No destination given, use --destination or set it in [global]")
        return 1

    modules = select_modules(config, args)
    if not modules:
        logger.error("No modules to back up")
        return 1

    if not check_rsync_installed():
        logger.error("rsync not found in PATH")
        return 1

    if getattr(args, "abort_on_full_disk", False):
        resolver = AbortResolver()
    else:
        resolver = IgnoreResolver()
    error_hook = SpaceRecoveryHook(resolver)

    show_progress = getattr(args, "progress", None)
    if show_progress is None:
        show_progress = __logger__.cons.is_terminal and not getattr(args, "quiet", False)
    if show_progress:
        notifier = RichProgressNotifier(__logger__.cons)
    else:
        notifier = LoggingNotifier()

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))

    session = BackupSessionStatus()
    pack = session.start()
    error = None
    progress = None
    with cancel_on_signals(pack):
        try:
            plan, progress = build_backup_plan(
                pack.context, root_logger, config, modules, notifier
            )
            logger.info(
                "Plan ready: %s to back up, %s skipped",
                __util__.format_size(plan.backup_size),
                __util__.format_size(plan.ignore_size),
            )
            if isinstance(notifier, RichProgressNotifier):
                with notifier:
                    plan.run_backup(progress, destination, error_hook)
            else:
                plan.run_backup(progress, destination, error_hook)
        except (__util__.BackupError, OSError) as e:
            error = e
        finally:
            session.done(pack)

    status = classify_session(error, progress)
    logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))
    if status == SessionStatus.SUCCEEDED:
        logger.info("Backup session completed successfully")
    elif status == SessionStatus.SUCCEEDED_WITH_ERRORS:
        logger.warning("Backup session completed with errors, see the session log")
    elif status == SessionStatus.TERMINATED:
        logger.warning("Backup session terminated")
    else:
        logger.error("Backup session failed: %s", error)
    return exit_code_for(status)

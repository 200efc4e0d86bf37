"""Shared CLI utilities and argument parsers."""

import argparse
import logging

from ..__logger__ import logger as app_logger
from ..config import Config, ConfigError, find_config_file, load_config
from ..core.execution import SessionStatus

logger = logging.getLogger(__name__)

EXIT_CODES = {
    SessionStatus.SUCCEEDED: 0,
    SessionStatus.FAILED: 1,
    SessionStatus.SUCCEEDED_WITH_ERRORS: 2,
    SessionStatus.TERMINATED: 130,
}


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def add_progress_args(parser: argparse.ArgumentParser) -> None:
    """Add progress display arguments to a parser."""
    parser.add_argument(
        "--progress",
        dest="progress",
        action="store_true",
        default=None,
        help="Show a progress bar",
    )
    parser.add_argument(
        "--no-progress",
        dest="progress",
        action="store_false",
        help="Log progress as plain lines",
    )


def add_module_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-m",
        "--module",
        action="append",
        metavar="NAME",
        help="Only process the module with this dest_subpath (repeatable)",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def load_cli_config(args: argparse.Namespace) -> Config | None:
    """Find and load the configuration, reporting problems to the user.

    Returns:
        Config, or None when it could not be loaded
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Create one with: rsync-backup-ng config init")
            return None

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)

        for warning in warnings:
            logger.warning("Config: %s", warning)

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    return config


def select_modules(config: Config, args: argparse.Namespace) -> list:
    """Enabled modules, narrowed by ``--module`` when given."""
    modules = config.get_enabled_modules()
    names = getattr(args, "module", None)
    if names:
        modules = [m for m in modules if m.dest_subpath in names]
        missing = set(names) - {m.dest_subpath for m in modules}
        for name in sorted(missing):
            logger.warning("No enabled module named '%s'", name)
    return modules


def exit_code_for(status: SessionStatus) -> int:
    return EXIT_CODES[status]


def attach_log_file(path: str | None) -> logging.Handler | None:
    """Mirror application log records into ``path`` when it is set."""
    if not path:
        return None
    try:
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot open log file %s: %s", path, e)
        return None
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)-7s] %(name)s: %(message)s")
    )
    app_logger.addHandler(handler)
    return handler

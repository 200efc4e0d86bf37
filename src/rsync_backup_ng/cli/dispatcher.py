"""CLI dispatcher.

Parses the command line and routes to the subcommand handlers, which are
imported lazily so ``--help`` stays fast.
"""

import argparse
import sys
from typing import Callable

from .common import add_module_args, add_progress_args, add_verbosity_args


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="rsync-backup-ng",
        description="Deduplicating snapshot backups of rsync sources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run a backup session",
        description="Plan the transfer blocks, then copy them into a new snapshot",
    )
    run_parser.add_argument(
        "-d",
        "--destination",
        metavar="PATH",
        help="Backup destination root (overrides config)",
    )
    run_parser.add_argument(
        "--abort-on-full-disk",
        action="store_true",
        help="Stop the session when the destination runs out of space "
        "(default: skip the failing folder and continue)",
    )
    add_module_args(run_parser)
    add_progress_args(run_parser)

    # plan command
    plan_parser = subparsers.add_parser(
        "plan",
        help="Show the transfer blocks without copying",
    )
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    add_module_args(plan_parser)

    # check command
    check_parser = subparsers.add_parser(
        "check",
        help="Verify that rsync sources are reachable",
    )
    check_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        metavar="N",
        help="Sources probed concurrently (default: 4)",
    )
    add_module_args(check_parser)

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"rsync-backup-ng {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return 1

    # Route to appropriate command handler
    handlers: dict[str, Callable] = {
        "run": cmd_run,
        "plan": cmd_plan,
        "check": cmd_check,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Execute run command."""
    from .run import execute_run

    return execute_run(args)


def cmd_plan(args: argparse.Namespace) -> int:
    """Execute plan command."""
    from .plan import execute_plan

    return execute_plan(args)


def cmd_check(args: argparse.Namespace) -> int:
    """Execute check command."""
    from .check import execute_check

    return execute_check(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for rsync-backup-ng CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)

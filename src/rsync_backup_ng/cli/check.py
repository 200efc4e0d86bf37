"""Check command: verify that every module source is reachable."""

import argparse
import logging

from ..__logger__ import create_logger
from ..__util__ import RsyncOutputParseError
from ..core.context import (
    RunningContexts,
    background,
    cancel_on_signals,
    fork_context,
    probe_modules,
)
from ..rsync import check_rsync_installed, get_path_status, get_rsync_version
from .common import get_log_level, load_cli_config, select_modules

logger = logging.getLogger(__name__)


def _probe(ctx, module) -> None:
    get_path_status(ctx, module.src_rsync, module.auth_password)


def execute_check(args: argparse.Namespace) -> int:
    """Execute the check command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 when every source answered, 1 otherwise)
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    if not check_rsync_installed():
        print("Error: rsync not found in PATH")
        return 1
    try:
        version, protocol = get_rsync_version()
        print(f"rsync {version} (protocol {protocol or '?'})")
    except RsyncOutputParseError as e:
        logger.warning("%s", e)

    config = load_cli_config(args)
    if config is None:
        return 1

    modules = select_modules(config, args)
    if not modules:
        print("Error: No modules to check")
        return 1

    contexts = RunningContexts()
    pack = fork_context(background())
    with cancel_on_signals(pack):
        results = probe_modules(
            contexts, pack.context, modules, _probe,
            max_workers=getattr(args, "jobs", None) or 4,
        )
    pack.done()

    failed = 0
    print("")
    for module, (_, error) in zip(modules, results):
        if error is None:
            print(f"  [OK]     {module.src_rsync}")
        else:
            failed += 1
            print(f"  [FAILED] {module.src_rsync}: {error}")
    print("")
    print(f"{len(modules) - failed} of {len(modules)} source(s) reachable")
    return 0 if failed == 0 else 1

"""Launching rsync processes.

Every call is interruptible: when the execution context is cancelled the
rsync process is terminated (killed if it does not exit in time) and
ProcessTerminatedError is raised.
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional

from ..__util__ import ProcessTerminatedError, RsyncCallFailedError
from ..core.paths import SrcDstPath
from .errors import new_call_failed_error
from .options import RsyncLogging, RsyncOptions

logger = logging.getLogger(__name__)

RSYNC_CMD = "rsync"

POLL_INTERVAL = 0.2
TERMINATE_TIMEOUT = 5


@dataclass
class RsyncOutcome:
    """Result of a call made with retries.

    Attributes:
        session_error: Error of the last attempt when every attempt failed
        retry_error: Error recovered from by a later successful attempt
        stdout: Output of the successful attempt
    """

    session_error: Optional[RsyncCallFailedError] = None
    retry_error: Optional[RsyncCallFailedError] = None
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.session_error is None


def _stop_process(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.debug("rsync did not terminate, killing pid %d", proc.pid)
        proc.kill()
        proc.wait()


def _write_rsync_log(rsync_log: RsyncLogging, args: list[str], stdout: str) -> None:
    lines = [" ".join([RSYNC_CMD, *args])]
    if rsync_log.intensive:
        lines.append(">>>>>>>>>>>>>>>> Stdout start >>>>>>>>>>>>>>>>")
        lines.append(stdout.rstrip("\n"))
        lines.append("<<<<<<<<<<<<<<<< Stdout end <<<<<<<<<<<<<<<<")
    rsync_log.log.info("\n".join(lines))


def run_rsync(
    ctx,
    options: RsyncOptions,
    paths: SrcDstPath,
    rsync_log: Optional[RsyncLogging] = None,
) -> str:
    """Run rsync once from ``paths.source`` to ``paths.dest``.

    Returns:
        Captured standard output

    Raises:
        ProcessTerminatedError: If ``ctx`` got cancelled while rsync ran
        RsyncCallFailedError: If rsync exited with non-zero status
    """
    args = [*options.params, paths.source]
    if paths.dest:
        args.append(paths.dest)
    env = os.environ.copy()
    # Always present, so rsync never falls back to an interactive prompt.
    env["RSYNC_PASSWORD"] = options.password or ""
    logger.debug("Args: %s", args)

    with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
        proc = subprocess.Popen([RSYNC_CMD, *args], stdout=out, stderr=err, env=env)
        while True:
            if ctx is not None and ctx.cancelled():
                logger.debug("Killing rsync: %s", args)
                _stop_process(proc)
                raise ProcessTerminatedError()
            try:
                exit_code = proc.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                continue
        # rsync shares our process group and may exit on the same SIGINT
        # that cancelled the context.
        if exit_code != 0 and ctx is not None and ctx.cancelled():
            logger.debug("rsync exited with code %d after cancellation", exit_code)
            raise ProcessTerminatedError()
        out.seek(0)
        err.seek(0)
        stdout = out.read().decode(errors="replace")
        stderr = err.read().decode(errors="replace")

    if rsync_log is not None and rsync_log.active:
        _write_rsync_log(rsync_log, args, stdout)

    if exit_code != 0:
        logger.debug("STDERR: %s", stderr)
        raise new_call_failed_error(exit_code, stderr)
    return stdout


def run_rsync_with_retry(
    ctx,
    options: RsyncOptions,
    paths: SrcDstPath,
    rsync_log: Optional[RsyncLogging] = None,
    runner=run_rsync,
) -> RsyncOutcome:
    """Run rsync, repeating failed attempts while retries are left.

    The error hook sees every failed attempt and returns the new number
    of retries left. Cancellation is raised immediately and never reaches
    the hook; anything the hook raises is fatal and propagates.
    """
    retry_left = options.retry_count
    attempt = 0
    last_error: Optional[RsyncCallFailedError] = None
    while True:
        try:
            stdout = runner(ctx, options, paths, rsync_log)
            return RsyncOutcome(retry_error=last_error, stdout=stdout)
        except RsyncCallFailedError as e:
            last_error = e

        if options.error_hook is not None:
            retry_left = options.error_hook(
                last_error, paths, options.predicted_size, attempt, retry_left
            )

        retry_left -= 1
        if retry_left < 0:
            return RsyncOutcome(session_error=last_error)
        logger.debug("Retrying rsync %s (%d left): %s", paths.source, retry_left, last_error)
        attempt += 1

"""rsync exit status interpretation."""

import re

from ..__util__ import RsyncCallFailedError

# Exit codes which may denote a destination without free space left.
SPACE_EXHAUSTION_EXIT_CODES = frozenset({11, 23})

EXIT_CODE_DESCRIPTIONS = {
    0: "success",
    1: "syntax or usage error",
    2: "protocol incompatibility",
    3: "errors selecting input/output files, dirs",
    4: "requested action not supported",
    5: "error starting client-server protocol",
    6: "daemon unable to append to log-file",
    10: "error in socket I/O",
    11: "error in file I/O",
    12: "error in rsync protocol data stream",
    13: "errors with program diagnostics",
    14: "error in IPC code",
    20: "received SIGUSR1 or SIGINT",
    21: "some error returned by waitpid()",
    22: "error allocating core memory buffers",
    23: "partial transfer due to error",
    24: "partial transfer due to vanished source files",
    25: "the --max-delete limit stopped deletions",
    30: "timeout in data send/receive",
    35: "timeout waiting for daemon connection",
    255: "unexplained error",
}

_ERROR_LINE_RE = re.compile(r"^@ERROR:(?P<error>.*)$", re.MULTILINE)


def get_exit_code_description(exit_code: int) -> str:
    return EXIT_CODE_DESCRIPTIONS.get(
        exit_code, f"undefined rsync exit code: {exit_code}"
    )


def extract_error(stderr: str) -> str:
    """Return the text of the first ``@ERROR:`` line rsync printed, if any."""
    m = _ERROR_LINE_RE.search(stderr or "")
    return m.group("error").strip() if m else ""


def new_call_failed_error(exit_code: int, stderr: str) -> RsyncCallFailedError:
    description = extract_error(stderr)
    if description:
        description += ", " + get_exit_code_description(exit_code)
    else:
        description = get_exit_code_description(exit_code)
    return RsyncCallFailedError(exit_code, description)


def is_space_exhaustion_candidate(error: BaseException) -> bool:
    """True when rsync failed with a code that may mean 'no space left'."""
    return (
        isinstance(error, RsyncCallFailedError)
        and error.exit_code in SPACE_EXHAUSTION_EXIT_CODES
    )

# pyright: standard

"""rsync-backup-ng: rsync_backup_ng/__util__.py
Common errors and helpers shared by all modules.
"""

from typing import Optional

HEADING_WIDTH = 100

_SIZE_UNITS = ["KiB", "MiB", "GiB", "TiB", "PiB"]


class BackupError(Exception):
    """Base class for all backup errors."""


class AbortError(BackupError):
    """Fatal error, the whole session has to stop."""


class InquiryError(BackupError):
    """Source folder structure could not be read."""


class NotAFolderError(InquiryError):
    """Source path resolved to something which is not a folder."""

    def __init__(self, path) -> None:
        super().__init__(f"path {str(path)!r} should be a folder")
        self.path = path


class ProcessTerminatedError(BackupError):
    """Running operation was interrupted by cancellation.

    Never a defect of the source or destination: the caller abandoned
    the operation.
    """

    def __init__(self, message: str = "process terminated") -> None:
        super().__init__(message)


class RsyncOutputParseError(BackupError):
    """rsync output does not contain the expected data."""


class RsyncCallFailedError(BackupError):
    """rsync exited with non-zero status."""

    def __init__(self, exit_code: int, description: str) -> None:
        super().__init__(f"rsync call failed: {description} (code {exit_code})")
        self.exit_code = exit_code
        self.description = description


def is_process_terminated(error: Optional[BaseException]) -> bool:
    """Return True when the error denotes cancellation."""
    return isinstance(error, ProcessTerminatedError)


def log_heading(caption: str = "", char: str = "=") -> str:
    """Return a heading line padded to a fixed width."""
    if not caption:
        return char * HEADING_WIDTH
    caption = f" {caption.strip()} "
    return caption.center(HEADING_WIDTH, char)


def clamp(lo, x, hi):
    return max(lo, min(x, hi))


def format_size(size_bytes) -> str:
    """Format a byte count in binary units, e.g. ``1.50 GiB``."""
    if size_bytes is None:
        return "unknown"
    value = float(size_bytes)
    if value < 1024:
        return f"{int(value)} B"
    for unit in _SIZE_UNITS:
        value /= 1024
        if value < 1024 or unit == _SIZE_UNITS[-1]:
            return f"{value:.2f} {unit}"
    return f"{value:.2f} {_SIZE_UNITS[-1]}"


def format_duration(seconds, sections: Optional[int] = 2) -> str:
    """Format a duration like ``1d 4h`` or ``3m 12s``.

    Only the leading ``sections`` non-empty components are shown.
    """
    if seconds is None:
        return "*"
    total = max(0, int(round(seconds)))
    parts = []
    for suffix, unit in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        amount, total = divmod(total, unit)
        if amount or parts:
            parts.append(f"{amount}{suffix}")
    if not parts:
        return "0s"
    if sections is not None:
        parts = parts[:sections]
    return " ".join(parts)

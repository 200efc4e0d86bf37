"""Session log files.

Logs are written to a temporary folder during the plan stage and are
relocated into the snapshot folder once it exists, so the final snapshot
carries the complete session history.
"""

import logging
import os
import shutil
import tempfile
import threading
from typing import IO, Optional

LOG_FILE_NAME = "~backup_log~.log"
RSYNC_LOG_FILE_NAME = "~rsync_log~.log"

SESSION_LOGGER_NAME = "rsync_backup_ng.session"
RSYNC_LOGGER_NAME = "rsync_backup_ng.session.rsync"

_LOG_FORMAT = "%(asctime)s [%(levelname)-7s] %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class LogFiles:
    """Set of append-only files living in one relocatable folder."""

    def __init__(self, root_path: Optional[str] = None) -> None:
        self.root_path = root_path
        self._files: dict[str, Optional[IO[str]]] = {}
        self._temp_root: Optional[str] = None
        self._lock = threading.RLock()

    def _assign_default_root(self) -> None:
        if self.root_path is None:
            self._temp_root = tempfile.mkdtemp(prefix="rsync_backup_logs_")
            self.root_path = self._temp_root

    def get_full_path(self, name: str) -> str:
        with self._lock:
            self._assign_default_root()
            return os.path.join(self.root_path, name)

    def get_append_file(self, name: str) -> IO[str]:
        with self._lock:
            self._assign_default_root()
            f = self._files.get(name)
            if f is None:
                f = open(self.get_full_path(name), "a", encoding="utf-8")
                self._files[name] = f
            return f

    def write(self, name: str, text: str) -> None:
        with self._lock:
            f = self.get_append_file(name)
            f.write(text)
            f.flush()

    def close(self) -> None:
        with self._lock:
            for name, f in self._files.items():
                if f is not None:
                    f.close()
                    self._files[name] = None

    def change_root_path(self, new_root: str) -> None:
        """Move every file opened so far into ``new_root``."""
        with self._lock:
            self.close()
            os.makedirs(new_root, exist_ok=True)
            if self.root_path is not None and os.path.isdir(self.root_path):
                for name in self._files:
                    old = os.path.join(self.root_path, name)
                    new = os.path.join(new_root, name)
                    if os.path.exists(old) and os.path.abspath(old) != os.path.abspath(new):
                        shutil.move(old, new)
            if self._temp_root is not None and self._temp_root != new_root:
                shutil.rmtree(self._temp_root, ignore_errors=True)
                self._temp_root = None
            self.root_path = new_root

    def discard(self) -> None:
        """Close every file and drop the temporary folder, if any."""
        with self._lock:
            self.close()
            if self._temp_root is not None:
                shutil.rmtree(self._temp_root, ignore_errors=True)
                if self.root_path == self._temp_root:
                    self.root_path = None
                self._temp_root = None

    def names(self) -> list[str]:
        return list(self._files)


class LogFilesHandler(logging.Handler):
    """Logging handler appending formatted records to a LogFiles entry."""

    def __init__(self, log_files: LogFiles, file_name: str) -> None:
        super().__init__()
        self.log_files = log_files
        self.file_name = file_name
        self.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log_files.write(self.file_name, self.format(record) + "\n")
        except Exception:
            self.handleError(record)


def create_session_logger(
    log_files: LogFiles,
    name: str = SESSION_LOGGER_NAME,
    file_name: str = LOG_FILE_NAME,
    propagate: bool = True,
) -> logging.Logger:
    """Logger whose records land in ``file_name`` of ``log_files``.

    With ``propagate`` the records also reach the console handlers of the
    application logger.
    """
    session_log = logging.getLogger(name)
    close_session_logger(session_log)
    session_log.setLevel(logging.INFO)
    session_log.propagate = propagate
    session_log.addHandler(LogFilesHandler(log_files, file_name))
    return session_log


def create_rsync_logger(log_files: LogFiles) -> logging.Logger:
    return create_session_logger(
        log_files, RSYNC_LOGGER_NAME, RSYNC_LOG_FILE_NAME, propagate=False
    )


def close_session_logger(session_log: logging.Logger) -> None:
    for handler in list(session_log.handlers):
        if isinstance(handler, LogFilesHandler):
            session_log.removeHandler(handler)
            handler.close()

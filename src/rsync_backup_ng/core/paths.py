"""Paired source/destination paths and rsync URL helpers."""

import os
import re
from dataclasses import dataclass

_RSYNC_URL_RE = re.compile(
    r"^rsync://(?P<user>[^@/]*@)?(?P<host>[^/]*)(?P<path>.*)$", re.IGNORECASE
)


def rsync_path_join(*elements: str) -> str:
    """Join rsync URL elements with '/', result always ends with '/'."""
    out = ""
    for item in elements:
        out += item
        if out and not out.endswith("/"):
            out += "/"
    return out


@dataclass(frozen=True)
class SrcDstPath:
    """rsync source URL paired with its destination folder.

    Both sides are extended together, so the two trees never drift apart.
    """

    source: str
    dest: str

    def join(self, name: str) -> "SrcDstPath":
        return SrcDstPath(
            source=rsync_path_join(self.source, name),
            dest=os.path.join(self.dest, name),
        )

    def __str__(self) -> str:
        return f"{self.source} -> {self.dest}"


def get_relative_path(root: str, path: str) -> str:
    """Cut off ``root`` from ``path``, rendering it like ``./a/b``."""
    rel = os.path.relpath(path, root)
    if rel == ".":
        return "./"
    return "./" + rel.replace(os.sep, "/")


def get_relative_paths(root: str, paths: list[str]) -> list[str]:
    return [get_relative_path(root, p) for p in paths]


def _remove_excess_slashes(path: str) -> str:
    path = re.sub(r"/{2,}", "/", path)
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def normalize_rsync_url(url: str) -> str:
    """Canonical form of a source used to identify it between sessions.

    The user part of rsync:// URLs is dropped, duplicate and trailing
    slashes are removed.
    """
    url = url.strip()
    m = _RSYNC_URL_RE.match(url)
    if m:
        path = _remove_excess_slashes(m.group("path") or "/")
        return f"rsync://{m.group('host')}{path}"
    return _remove_excess_slashes(url)

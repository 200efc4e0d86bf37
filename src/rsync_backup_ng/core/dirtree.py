"""In-memory folder tree of a backup source.

The tree is built once by the directory inquiry (pass 1) and then only
its metrics are updated by the block partitioner. Parents own their
children; the back-reference to the parent is weak and only used for
navigation.
"""

import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from .paths import SrcDstPath
from .size import FolderSize


class FolderBackupType(Enum):
    """How a folder is transferred in pass 2."""

    UNKNOWN = "unknown"
    SKIP = "skip"  # only the skip sentinel file is transferred
    RECURSIVE = "recursive"  # whole subtree in one call
    CONTENT = "content"  # files located directly in the folder

    @property
    def description(self) -> str:
        return {
            FolderBackupType.UNKNOWN: "<undefined>",
            FolderBackupType.SKIP: "skip",
            FolderBackupType.RECURSIVE: "full folder content",
            FolderBackupType.CONTENT: "folder files",
        }[self]


@dataclass
class DirMetrics:
    """Metrics collected in pass 1.

    Attributes:
        depth: Distance from the root folder (root = 0)
        children_count: Count of this folder plus all descendants
        size: Bytes of files located directly in the folder
        full_size: size plus all descendant folders' content
        ignore_to_backup: Folder holds the skip sentinel file
        measured: Backup type already decided for this folder
        backup_type: Result of the block partitioner
    """

    depth: int = 0
    children_count: int = 0
    size: Optional[FolderSize] = None
    full_size: Optional[FolderSize] = None
    ignore_to_backup: bool = False
    measured: bool = False
    backup_type: FolderBackupType = FolderBackupType.UNKNOWN


class Dir:
    """Folder node, owns its children."""

    def __init__(
        self,
        name: str,
        paths: SrcDstPath,
        parent: Optional["Dir"] = None,
        metrics: Optional[DirMetrics] = None,
    ) -> None:
        self.name = name
        self.paths = paths
        self.childs: list[Dir] = []
        self.metrics = metrics or DirMetrics()
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> Optional["Dir"]:
        return self._parent() if self._parent is not None else None

    def add_child(self, child: "Dir") -> None:
        child._parent = weakref.ref(self)
        self.childs.append(child)

    def get_root(self) -> "Dir":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def walk(self) -> Iterator["Dir"]:
        """Pre-order traversal of the whole tree."""
        yield self
        for child in self.childs:
            yield from child.walk()

    def walk_post_order(self) -> Iterator["Dir"]:
        for child in self.childs:
            yield from child.walk_post_order()
        yield self

    def iter_blocks(self) -> Iterator["Dir"]:
        """Folders transferred in pass 2, in execution order.

        A CONTENT folder comes before its children, RECURSIVE and SKIP
        folders cover their whole subtree.
        """
        backup_type = self.metrics.backup_type
        if backup_type in (FolderBackupType.RECURSIVE, FolderBackupType.SKIP):
            yield self
        elif backup_type == FolderBackupType.CONTENT:
            yield self
            for child in self.childs:
                yield from child.iter_blocks()

    def block_size(self) -> FolderSize:
        """Bytes transferred by the block rooted at this folder."""
        m = self.metrics
        if m.backup_type == FolderBackupType.CONTENT:
            return m.size or FolderSize(0)
        return m.full_size or FolderSize(0)

    def get_total_size(self) -> FolderSize:
        """Bytes to back up, skipped folders excluded."""
        return self._sum(
            lambda d: d.block_size()
            if d.metrics.backup_type
            in (FolderBackupType.RECURSIVE, FolderBackupType.CONTENT)
            else FolderSize(0)
        )

    def get_ignore_size(self) -> FolderSize:
        return self._sum(
            lambda d: d.metrics.full_size or FolderSize(0)
            if d.metrics.backup_type == FolderBackupType.SKIP
            else FolderSize(0)
        )

    def get_full_backup_size(self) -> FolderSize:
        return self._sum(
            lambda d: d.block_size()
            if d.metrics.backup_type == FolderBackupType.RECURSIVE
            else FolderSize(0)
        )

    def get_content_backup_size(self) -> FolderSize:
        return self._sum(
            lambda d: d.block_size()
            if d.metrics.backup_type == FolderBackupType.CONTENT
            else FolderSize(0)
        )

    def get_folders_count(self) -> int:
        """Count of all descendant folders, this one excluded."""
        return sum(1 + child.get_folders_count() for child in self.childs)

    def get_folders_ignore_count(self) -> int:
        return sum(
            1 for d in self.walk() if d.metrics.backup_type == FolderBackupType.SKIP
        )

    def _sum(self, contribution) -> FolderSize:
        total = FolderSize(0)
        for d in self.walk():
            total += contribution(d)
        return total

    def __repr__(self) -> str:
        return (
            f"Dir({self.paths.source!r}, type={self.metrics.backup_type.value}, "
            f"childs={len(self.childs)})"
        )

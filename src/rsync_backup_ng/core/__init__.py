"""Backup planning and execution core for rsync-backup-ng.

Pass 1 (``planning``) inquires the source trees and splits them into
transfer blocks, pass 2 (``execution``) runs rsync block by block.
"""

from .dirtree import Dir, DirMetrics, FolderBackupType
from .paths import SrcDstPath
from .size import FolderSize, SizeProgress

__all__ = [
    "Dir",
    "DirMetrics",
    "FolderBackupType",
    "SrcDstPath",
    "FolderSize",
    "SizeProgress",
]

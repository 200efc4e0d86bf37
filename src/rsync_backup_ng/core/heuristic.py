"""Block partitioner: split an inquired tree into transfer blocks.

Every folder gets one backup type:

* SKIP for folders holding the skip sentinel file;
* RECURSIVE for the root of a block transferred with one rsync call;
* CONTENT for folders above blocks, whose own files go in a flat call.

The walk is post-order in declaration order. A subtree stays pending
while its full size is below the minimum block size. When a folder has a
decided child, or its pending subtree would exceed the maximum, it turns
into CONTENT and each pending child becomes a block of its own. A block
below the minimum therefore only appears next to a decided sibling, or
as the root when the whole tree is small.
"""

import logging
from dataclasses import dataclass

from ..__util__ import clamp, format_size
from .dirtree import Dir, FolderBackupType
from .size import GB, MB, FolderSize

logger = logging.getLogger(__name__)

DEFAULT_MIN_BLOCK_SIZE = 300 * MB
DEFAULT_MAX_BLOCK_SIZE = 5 * GB
AUTO_SPLIT_TO = 50


@dataclass
class BlockSizeSettings:
    """Block size budget.

    Attributes:
        min_size: Subtrees below this size are merged with their parent
        max_size: Target upper bound of a block (not a hard cap)
        auto_manage: Narrow the maximum to 1/50 of the source size
    """

    min_size: int = DEFAULT_MIN_BLOCK_SIZE
    max_size: int = DEFAULT_MAX_BLOCK_SIZE
    auto_manage: bool = False

    def __post_init__(self):
        if self.min_size < 0 or self.max_size < self.min_size:
            raise ValueError(
                f"invalid block size range: {self.min_size}..{self.max_size}"
            )

    def effective_max(self, total_size: int) -> int:
        if not self.auto_manage:
            return self.max_size
        return clamp(self.min_size, total_size // AUTO_SPLIT_TO, self.max_size)


def _compute_full_sizes(node: Dir) -> FolderSize:
    """Fill in full_size bottom-up, ignored folders contribute nothing."""
    if node.metrics.ignore_to_backup:
        return FolderSize(0)
    full = node.metrics.size or FolderSize(0)
    for child in node.childs:
        full += _compute_full_sizes(child)
    node.metrics.full_size = full
    return full


def _mark_block(node: Dir) -> None:
    node.metrics.backup_type = FolderBackupType.RECURSIVE
    for item in node.walk():
        item.metrics.measured = True
    logger.debug(
        "Selected for full backup (%s): %s",
        format_size(node.metrics.full_size),
        node.paths.source,
    )


def _mark_content(node: Dir, pending: list[Dir]) -> None:
    node.metrics.backup_type = FolderBackupType.CONTENT
    node.metrics.measured = True
    for child in pending:
        _mark_block(child)


def _partition(node: Dir, min_size: int, max_size: int) -> bool:
    """Classify the subtree, return True while ``node`` is still pending."""
    m = node.metrics
    if m.ignore_to_backup:
        m.backup_type = FolderBackupType.SKIP
        m.measured = True
        logger.debug("Selected for skip: %s", node.paths.source)
        return False

    states = [_partition(child, min_size, max_size) for child in node.childs]
    pending = [child for child, state in zip(node.childs, states) if state]
    full = m.full_size or FolderSize(0)

    if len(pending) < len(node.childs):
        _mark_content(node, pending)
        return False
    if full < min_size:
        return True
    if full <= max_size or not node.childs:
        _mark_block(node)
        return False
    _mark_content(node, pending)
    return False


def partition_dir(root: Dir, settings: BlockSizeSettings) -> Dir:
    """Assign a backup type to every folder of the tree rooted at ``root``.

    Folders inside a RECURSIVE block are marked measured and keep the
    UNKNOWN type, since the block transfers them.
    """
    total = _compute_full_sizes(root)
    max_size = settings.effective_max(total)
    logger.debug(
        "Partitioning %s (%s) into blocks of %s..%s",
        root.paths.source,
        format_size(total),
        format_size(settings.min_size),
        format_size(max_size),
    )
    if _partition(root, settings.min_size, max_size):
        _mark_block(root)
    logger.debug(
        "Full backup %s, content backup %s",
        format_size(root.get_full_backup_size()),
        format_size(root.get_content_backup_size()),
    )
    return root

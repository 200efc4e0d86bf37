"""Error hooks deciding what happens after a failed rsync call.

A hook is called with ``(error, paths, predicted_size, repeated,
retry_left)`` and returns the new number of retries left. Raising
``AbortError`` stops the whole session.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from ..__util__ import AbortError, format_size
from ..rsync.errors import is_space_exhaustion_candidate
from .paths import SrcDstPath
from .size import MB

logger = logging.getLogger(__name__)

ErrorHook = Callable[[Exception, SrcDstPath, Optional[int], int, int], int]

# Free space below this is treated as exhausted when the block size is unknown.
MIN_FREE_SPACE = 1 * MB


class Resolution(Enum):
    RETRY = "retry"
    IGNORE = "ignore"
    ABORT = "abort"


@dataclass(frozen=True)
class SpaceExhaustion:
    """Context of a failure likely caused by a full destination.

    Attributes:
        error: The rsync failure
        paths: Block being transferred
        predicted_size: Expected size of the block, if known
        free_space: Free bytes measured on the destination filesystem
        repeated: How many times the block already failed
        retry_left: Retries left before the hook decision
    """

    error: Exception
    paths: SrcDstPath
    predicted_size: Optional[int]
    free_space: int
    repeated: int
    retry_left: int

    def describe(self) -> str:
        return (
            f"destination {self.paths.dest} may be out of space: "
            f"{format_size(self.predicted_size)} required, "
            f"{format_size(self.free_space)} available"
        )


class SpaceResolver(Protocol):
    def resolve_space_exhaustion(self, context: SpaceExhaustion) -> Resolution:
        ...


class IgnoreResolver:
    """Keep going, the block is counted as failed."""

    def resolve_space_exhaustion(self, context: SpaceExhaustion) -> Resolution:
        return Resolution.IGNORE


class AbortResolver:
    """Stop the session on the first space exhaustion."""

    def resolve_space_exhaustion(self, context: SpaceExhaustion) -> Resolution:
        return Resolution.ABORT


def _nearest_existing(path: str) -> str:
    while path and not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path or os.path.sep


def destination_free_space(path: str) -> int:
    """Free bytes of the filesystem holding ``path``."""
    return shutil.disk_usage(_nearest_existing(path)).free


def _is_out_of_space(predicted_size: Optional[int], free_space: int) -> bool:
    if predicted_size is None:
        return free_space < MIN_FREE_SPACE
    return predicted_size > free_space


class SpaceRecoveryHook:
    """Error hook which asks ``resolver`` when the destination runs full.

    Failures not related to free space are left to the retry budget.
    """

    def __init__(
        self,
        resolver: SpaceResolver,
        free_space: Callable[[str], int] = destination_free_space,
    ) -> None:
        self.resolver = resolver
        self.free_space = free_space

    def __call__(
        self,
        error: Exception,
        paths: SrcDstPath,
        predicted_size: Optional[int],
        repeated: int,
        retry_left: int,
    ) -> int:
        if not is_space_exhaustion_candidate(error):
            return retry_left

        free = self.free_space(paths.dest)
        if not _is_out_of_space(predicted_size, free):
            return retry_left

        context = SpaceExhaustion(error, paths, predicted_size, free, repeated, retry_left)
        logger.warning(context.describe())
        resolution = self.resolver.resolve_space_exhaustion(context)
        logger.debug("Space exhaustion resolved as %s", resolution.value)
        if resolution == Resolution.ABORT:
            raise AbortError(context.describe())
        if resolution == Resolution.RETRY:
            return max(retry_left, 1)
        return 0

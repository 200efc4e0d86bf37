"""Byte count and partial progress value types.

``SizeProgress`` keeps the three categories optional: a category which
was never touched (``None``) differs from a category with zero bytes.
"""

from dataclasses import dataclass
from typing import Optional

KB = 1000
MB = 1000 * KB
GB = 1000 * MB

# Lowest completion reported, so a progress bar never looks stuck at zero.
MIN_FRACTION_DONE = 0.001


def completion_fraction(done: int, left: int) -> float:
    """Return ``done / (done + left)`` floored at MIN_FRACTION_DONE."""
    total = done + left
    if total <= 0:
        return MIN_FRACTION_DONE
    return max(MIN_FRACTION_DONE, min(1.0, done / total))


class FolderSize(int):
    """Non-negative byte count."""

    def __new__(cls, value: int = 0):
        if value < 0:
            raise ValueError(f"folder size can't be negative: {value}")
        return super().__new__(cls, value)

    def __add__(self, other):
        if isinstance(other, int):
            return FolderSize(int(self) + int(other))
        return NotImplemented

    __radd__ = __add__

    def add_progress(self, progress: "SizeProgress") -> "FolderSize":
        """Accumulate every category present in ``progress``."""
        return self + progress.get_total()

    def __repr__(self) -> str:
        return f"FolderSize({int(self)})"


def _merge(a: Optional[FolderSize], b: Optional[FolderSize]) -> Optional[FolderSize]:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


@dataclass(frozen=True)
class SizeProgress:
    """Completed/skipped/failed bytes of a transfer.

    Attributes:
        completed: Bytes successfully backed up
        skipped: Bytes skipped on purpose
        failed: Bytes not backed up due to errors
    """

    completed: Optional[FolderSize] = None
    skipped: Optional[FolderSize] = None
    failed: Optional[FolderSize] = None

    @classmethod
    def for_completed(cls, size: int) -> "SizeProgress":
        return cls(completed=FolderSize(size))

    @classmethod
    def for_skipped(cls, size: int) -> "SizeProgress":
        return cls(skipped=FolderSize(size))

    @classmethod
    def for_failed(cls, size: int) -> "SizeProgress":
        return cls(failed=FolderSize(size))

    def add(self, other: "SizeProgress") -> "SizeProgress":
        """Return field-wise sum, absent fields stay absent."""
        return SizeProgress(
            completed=_merge(self.completed, other.completed),
            skipped=_merge(self.skipped, other.skipped),
            failed=_merge(self.failed, other.failed),
        )

    def get_total(self) -> FolderSize:
        total = FolderSize(0)
        for value in (self.completed, self.skipped, self.failed):
            if value is not None:
                total += value
        return total

    def is_empty(self) -> bool:
        return self.completed is None and self.skipped is None and self.failed is None

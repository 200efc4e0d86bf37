"""Tests for the in-memory folder tree."""

import gc

from rsync_backup_ng.core.dirtree import Dir, DirMetrics, FolderBackupType
from rsync_backup_ng.core.paths import SrcDstPath
from rsync_backup_ng.core.size import FolderSize


def node(name, backup_type=FolderBackupType.UNKNOWN, size=0, full_size=None):
    return Dir(
        name,
        SrcDstPath(f"/src/{name}/", f"/dst/{name}"),
        metrics=DirMetrics(
            size=FolderSize(size),
            full_size=FolderSize(full_size) if full_size is not None else None,
            backup_type=backup_type,
        ),
    )


def sample_tree():
    """root (content, 10)
    ├── a (recursive, full 100)
    │   └── a1 (inside block)
    ├── b (content, 20)
    │   ├── b1 (recursive, full 30)
    │   └── b2 (skip, full 500)
    └── c (skip, full 40)
    """
    root = node("root", FolderBackupType.CONTENT, size=10, full_size=150)
    a = node("a", FolderBackupType.RECURSIVE, size=60, full_size=100)
    a.add_child(node("a1", size=40, full_size=40))
    b = node("b", FolderBackupType.CONTENT, size=20, full_size=50)
    b.add_child(node("b1", FolderBackupType.RECURSIVE, size=30, full_size=30))
    b.add_child(node("b2", FolderBackupType.SKIP, full_size=500))
    root.add_child(a)
    root.add_child(b)
    root.add_child(node("c", FolderBackupType.SKIP, full_size=40))
    return root


class TestDirNavigation:
    """Tests for tree structure helpers."""

    def test_parent_and_root(self):
        """Test navigating up the tree."""
        root = sample_tree()
        b1 = root.childs[1].childs[0]
        assert b1.parent is root.childs[1]
        assert b1.get_root() is root
        assert root.parent is None

    def test_parent_reference_is_weak(self):
        """Test that children do not keep their parent alive."""
        root = sample_tree()
        child = root.childs[0]
        del root
        gc.collect()
        assert child.parent is None

    def test_walk_pre_order(self):
        """Test pre-order traversal in declaration order."""
        names = [d.name for d in sample_tree().walk()]
        assert names == ["root", "a", "a1", "b", "b1", "b2", "c"]

    def test_walk_post_order(self):
        """Test post-order traversal."""
        names = [d.name for d in sample_tree().walk_post_order()]
        assert names == ["a1", "a", "b1", "b2", "b", "c", "root"]

    def test_iter_blocks(self):
        """Test execution order: content first, blocks cover subtrees."""
        names = [d.name for d in sample_tree().iter_blocks()]
        assert names == ["root", "a", "b", "b1", "b2", "c"]


class TestDirAggregates:
    """Tests for size and count aggregates."""

    def test_folders_count_excludes_root(self):
        """Test that the count equals tree nodes minus the root."""
        root = sample_tree()
        assert root.get_folders_count() == len(list(root.walk())) - 1

    def test_folders_ignore_count(self):
        """Test counting skipped folders."""
        assert sample_tree().get_folders_ignore_count() == 2

    def test_total_size(self):
        """Test that each folder contributes according to its type."""
        # root content 10 + a full 100 + b content 20 + b1 full 30
        assert sample_tree().get_total_size() == 160

    def test_total_size_ignores_skipped(self):
        """Test that skipped folders never count as backed up bytes."""
        root = sample_tree()
        assert root.get_total_size() == (
            root.get_full_backup_size() + root.get_content_backup_size()
        )

    def test_ignore_size(self):
        """Test that skipped folders contribute their full size."""
        assert sample_tree().get_ignore_size() == 540

    def test_full_and_content_sizes(self):
        """Test the per-type aggregates."""
        root = sample_tree()
        assert root.get_full_backup_size() == 130
        assert root.get_content_backup_size() == 30

    def test_block_size(self):
        """Test the bytes moved by a single block."""
        root = sample_tree()
        assert root.block_size() == 10
        assert root.childs[0].block_size() == 100


class TestFolderBackupType:
    """Tests for FolderBackupType."""

    def test_descriptions(self):
        """Test that every type has a readable description."""
        for backup_type in FolderBackupType:
            assert backup_type.description

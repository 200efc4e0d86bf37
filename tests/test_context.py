"""Tests for cancellable execution contexts."""

import os
import signal
import threading

import pytest

from rsync_backup_ng.__util__ import ProcessTerminatedError
from rsync_backup_ng.config import ModuleConfig
from rsync_backup_ng.core.context import (
    BackupSessionStatus,
    ExecutionContext,
    RunningContexts,
    background,
    cancel_on_signals,
    fork_context,
    probe_modules,
)


class TestExecutionContext:
    """Tests for ExecutionContext."""

    def test_cancel(self):
        """Test the cancellation flag."""
        ctx = background()
        assert not ctx.cancelled()
        ctx.check()
        ctx.cancel()
        assert ctx.cancelled()
        with pytest.raises(ProcessTerminatedError):
            ctx.check()

    def test_cancel_propagates_to_children(self):
        """Test that cancelling a parent cancels forked children."""
        parent = background()
        child = parent.fork()
        grandchild = child.fork()
        parent.cancel()
        assert child.cancelled()
        assert grandchild.cancelled()

    def test_child_cancel_stays_local(self):
        """Test that a child does not cancel its parent."""
        parent = background()
        child = parent.fork()
        child.cancel()
        assert not parent.cancelled()

    def test_fork_of_cancelled_parent(self):
        """Test that a context forked after cancellation starts cancelled."""
        parent = background()
        parent.cancel()
        assert parent.fork().cancelled()

    def test_done_deregisters(self):
        """Test that finished children are dropped by the parent."""
        parent = background()
        child = parent.fork()
        assert parent.children_count == 1
        child.done()
        assert parent.children_count == 0
        parent.cancel()
        assert not child.cancelled()

    def test_wait(self):
        """Test waiting for cancellation from another thread."""
        ctx = ExecutionContext()
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()
        assert ctx.wait(timeout=5) is True
        timer.join()

    def test_wait_timeout(self):
        """Test that waiting returns False on timeout."""
        assert ExecutionContext().wait(timeout=0.01) is False


class TestRunningContexts:
    """Tests for RunningContexts."""

    def test_add_find_remove(self):
        """Test registry bookkeeping."""
        contexts = RunningContexts()
        pack = fork_context(background())
        contexts.add(pack)
        assert contexts.count() == 1
        assert contexts.find(pack.key) is pack
        assert contexts.remove(pack) is True
        assert contexts.remove(pack) is False
        assert contexts.find(pack.key) is None

    def test_cancel_single(self):
        """Test cancelling one registered context."""
        contexts = RunningContexts()
        first, second = fork_context(background()), fork_context(background())
        contexts.add(first)
        contexts.add(second)
        assert contexts.cancel(first) is True
        assert first.context.cancelled()
        assert not second.context.cancelled()
        assert contexts.count() == 1

    def test_cancel_all(self):
        """Test cancelling every registered context."""
        contexts = RunningContexts()
        packs = [fork_context(background()) for _ in range(3)]
        for pack in packs:
            contexts.add(pack)
        assert contexts.cancel_all() == 3
        assert all(p.context.cancelled() for p in packs)
        assert contexts.count() == 0


class TestBackupSessionStatus:
    """Tests for BackupSessionStatus."""

    def test_lifecycle(self):
        """Test start, stop and done of a session."""
        status = BackupSessionStatus()
        assert not status.is_running()
        pack = status.start()
        assert status.is_running()
        status.stop()
        assert pack.context.cancelled()
        assert not status.is_running()
        status.done(pack)
        assert not status.is_running()

    def test_parent_cancels_session(self):
        """Test that the session follows its parent context."""
        parent = background()
        status = BackupSessionStatus(parent)
        pack = status.start()
        parent.cancel()
        assert pack.context.cancelled()


class TestCancelOnSignals:
    """Tests for cancel_on_signals."""

    def test_sigterm_cancels(self):
        """Test that SIGTERM cancels the context inside the block."""
        pack = fork_context(background())
        previous = signal.getsignal(signal.SIGTERM)
        with cancel_on_signals(pack, signals=(signal.SIGTERM,)):
            os.kill(os.getpid(), signal.SIGTERM)
            assert pack.context.wait(timeout=5)
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_other_thread_noop(self):
        """Test that handlers are not installed off the main thread."""
        pack = fork_context(background())
        result = []

        def _run():
            with cancel_on_signals(pack) as p:
                result.append(p)

        thread = threading.Thread(target=_run)
        thread.start()
        thread.join()
        assert result == [pack]


class TestProbeModules:
    """Tests for probe_modules."""

    def test_results_in_order(self):
        """Test that every module is probed and errors are collected."""
        modules = [ModuleConfig(f"rsync://nas/m{i}") for i in range(5)]
        contexts = RunningContexts()

        def probe(ctx, module):
            assert contexts.count() >= 1
            if module.dest_subpath == "m3":
                raise RuntimeError("unreachable")
            return module.dest_subpath

        results = probe_modules(contexts, background(), modules, probe, max_workers=3)
        assert [r for r, _ in results] == ["m0", "m1", "m2", None, "m4"]
        assert isinstance(results[3][1], RuntimeError)
        assert contexts.count() == 0

    def test_cancel_all_interrupts(self):
        """Test that cancelling the registry stops running probes."""
        modules = [ModuleConfig(f"rsync://nas/m{i}") for i in range(2)]
        contexts = RunningContexts()
        started = threading.Barrier(3)

        def probe(ctx, module):
            started.wait(timeout=5)
            ctx.wait(timeout=5)
            ctx.check()

        def _cancel():
            started.wait(timeout=5)
            contexts.cancel_all()

        canceller = threading.Thread(target=_cancel)
        canceller.start()
        results = probe_modules(contexts, background(), modules, probe)
        canceller.join()
        assert all(isinstance(e, ProcessTerminatedError) for _, e in results)

    def test_empty(self):
        """Test that no modules means no work."""
        assert probe_modules(RunningContexts(), background(), [], lambda c, m: None) == []

"""Cancellable execution contexts shared by plan building, backup and probes.

Cancelling a context cancels all of its forked children. A child that is
done deregisters itself from its parent, so long-lived parents do not
collect finished trackers.
"""

import logging
import signal
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..__util__ import ProcessTerminatedError

logger = logging.getLogger(__name__)


class ExecutionContext:
    """Cooperative cancellation token."""

    def __init__(self, parent: Optional["ExecutionContext"] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: set[ExecutionContext] = set()
        self._parent = parent
        if parent is not None:
            parent._register(self)

    def _register(self, child: "ExecutionContext") -> None:
        with self._lock:
            self._children.add(child)
            cancelled = self._event.is_set()
        if cancelled:
            child.cancel()

    def _deregister(self, child: "ExecutionContext") -> None:
        with self._lock:
            self._children.discard(child)

    def fork(self) -> "ExecutionContext":
        return ExecutionContext(parent=self)

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout, return True when cancelled."""
        return self._event.wait(timeout)

    def check(self) -> None:
        """Raise ProcessTerminatedError when the context is cancelled."""
        if self._event.is_set():
            raise ProcessTerminatedError()

    def done(self) -> None:
        """Detach from the parent once the work under this context is over."""
        if self._parent is not None:
            self._parent._deregister(self)
            self._parent = None

    @property
    def children_count(self) -> int:
        with self._lock:
            return len(self._children)


def background() -> ExecutionContext:
    """Root context which is never cancelled by anybody but its owner."""
    return ExecutionContext()


@dataclass(eq=False)
class ContextPack:
    """Execution context bundled with its cancel function."""

    context: ExecutionContext
    key: str = field(default_factory=lambda: uuid.uuid4().hex)

    def cancel(self) -> None:
        self.context.cancel()

    def done(self) -> None:
        self.context.done()


def fork_context(parent: ExecutionContext) -> ContextPack:
    return ContextPack(context=parent.fork())


class RunningContexts:
    """Thread-safe registry of live contexts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._packs: list[ContextPack] = []

    def add(self, pack: ContextPack) -> None:
        with self._lock:
            self._packs.append(pack)

    def remove(self, pack: ContextPack) -> bool:
        with self._lock:
            for i, item in enumerate(self._packs):
                if item is pack:
                    del self._packs[i]
                    return True
        return False

    def find(self, key: str) -> Optional[ContextPack]:
        with self._lock:
            for item in self._packs:
                if item.key == key:
                    return item
        return None

    def cancel(self, pack: ContextPack) -> bool:
        """Cancel and deregister a single context."""
        if self.remove(pack):
            pack.cancel()
            return True
        return False

    def cancel_all(self) -> int:
        with self._lock:
            packs = self._packs
            self._packs = []
        for pack in packs:
            pack.cancel()
        return len(packs)

    def count(self) -> int:
        with self._lock:
            return len(self._packs)


class BackupSessionStatus:
    """Tracks whether a backup session is running."""

    def __init__(self, parent: Optional[ExecutionContext] = None) -> None:
        self._parent = parent or background()
        self._running = RunningContexts()

    def is_running(self) -> bool:
        return self._running.count() > 0

    def start(self) -> ContextPack:
        pack = fork_context(self._parent)
        self._running.add(pack)
        return pack

    def done(self, pack: ContextPack) -> None:
        self._running.remove(pack)
        pack.done()

    def stop(self) -> None:
        """Cancel the running session, if any."""
        if self._running.cancel_all():
            logger.info("Backup session termination requested")


@contextmanager
def cancel_on_signals(pack: ContextPack, signals=(signal.SIGINT, signal.SIGTERM)):
    """Cancel ``pack`` when one of ``signals`` arrives while in the block.

    Signal handlers can only be installed from the main thread; elsewhere
    the block runs without them.
    """
    if threading.current_thread() is not threading.main_thread():
        yield pack
        return

    def _handler(signum, _frame):
        logger.warning("Received %s, stopping...", signal.Signals(signum).name)
        pack.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield pack
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def probe_modules(
    contexts: RunningContexts,
    parent: ExecutionContext,
    modules: list,
    probe: Callable[[ExecutionContext, object], object],
    max_workers: int = 4,
) -> list[tuple[object, Optional[BaseException]]]:
    """Run ``probe(ctx, module)`` for every module concurrently.

    Every probe runs under its own context registered in ``contexts``, so
    ``contexts.cancel_all()`` interrupts the whole batch.

    Returns:
        List of (result, error) pairs in module order
    """

    def _run(module):
        pack = fork_context(parent)
        contexts.add(pack)
        try:
            return probe(pack.context, module), None
        except Exception as e:
            return None, e
        finally:
            contexts.remove(pack)
            pack.done()

    if not modules:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(modules)))) as pool:
        return list(pool.map(_run, modules))

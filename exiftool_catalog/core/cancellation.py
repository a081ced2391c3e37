"""Cancellation scopes shared between requests and the lifecycle controller.

WHY: Extractor processes must stop when the service shuts down, and a
request that hits a fatal error must stop its own extractor. Both cases
come down to "cancel this scope and kill whatever is attached to it".

HOW: A CancellationContext wraps a threading.Event plus a list of cancel
callbacks. ProcessRunner registers a callback that terminates its process.
Contexts form a tree: child() creates a scope that is cancelled together
with its parent, so cancelling the root stops every request scope.

RULES:
- cancel() is idempotent; callbacks run at most once
- A callback added to an already-cancelled context runs immediately
- Cancelling a child never cancels its parent
- A failing callback is logged and does not stop the others
- All state changes happen under self._lock; callbacks run outside it
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

CancelCallback = Callable[[], None]


class CancellationContext:
    """A cancellable scope that can own child scopes."""

    def __init__(self, name: str = "root", parent: Optional[CancellationContext] = None) -> None:
        self.name = name
        self._parent = parent
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[CancelCallback] = []
        self._children: List[CancellationContext] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout; return whether cancelled."""
        return self._event.wait(timeout)

    def on_cancel(self, callback: CancelCallback) -> None:
        """Register a callback to run when this context is cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def remove_callback(self, callback: CancelCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def child(self, name: str = "request") -> CancellationContext:
        """Create a scope that is cancelled whenever this one is.

        RULES:
        - A child of a cancelled context starts out cancelled
        - The child must be close()d when its owner is done with it
        """
        scope = CancellationContext(name=name, parent=self)
        with self._lock:
            if not self._event.is_set():
                self._children.append(scope)
                return scope
        scope.cancel()
        return scope

    def cancel(self) -> None:
        """Cancel this context, its callbacks and all of its children."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            children = list(self._children)
            self._callbacks.clear()
            self._children.clear()

        logger.debug(
            "Cancelling context %s (%d callbacks, %d children)",
            self.name, len(callbacks), len(children),
        )
        for callback in callbacks:
            self._run_callback(callback)
        for scope in children:
            scope.cancel()

    def close(self) -> None:
        """Detach this scope from its parent without cancelling the parent."""
        if self._parent is not None:
            self._parent._detach(self)

    def _detach(self, scope: CancellationContext) -> None:
        with self._lock:
            try:
                self._children.remove(scope)
            except ValueError:
                pass

    def _run_callback(self, callback: CancelCallback) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Cancel callback failed in context %s", self.name)

    def __repr__(self) -> str:
        return "CancellationContext(name={!r}, cancelled={})".format(self.name, self.cancelled)

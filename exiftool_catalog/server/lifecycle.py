"""Listener supervision, signal handling and graceful shutdown.

WHY: Catalog requests keep extractor processes running for as long as
the client reads. When the service is told to stop, those processes must
be killed, the listener given a bounded amount of time to drain, and the
process exit code must tell a supervisor whether the stop was clean.

HOW: LifecycleController owns the root CancellationContext. run() starts
uvicorn in a listener thread (uvicorn skips its own signal handlers off
the main thread) and then waits on a SimpleQueue fed by two producers:

  signal handlers  → ("signal", signum)
  listener thread  → ("listener", exception or None) when serving ends

Whichever arrives first decides the outcome:

  listener ended first          → cancel root, exit 1 (ListenerError)
  SIGINT / SIGTERM              → cancel root, graceful stop, exit 0
  SIGQUIT / SIGHUP              → same stop sequence, exit 1 (UnexpectedSignal)
  graceful stop fails/times out → force close, exit 1 (ShutdownError)

RULES:
- The root context is cancelled before the listener is asked to stop,
  so in-flight responses end and the listener can drain
- Graceful stop is bounded by shutdown_timeout (30 seconds by default)
- Signal handlers only enqueue; SimpleQueue.put is reentrant
- Previous signal handlers are restored when run() returns
"""

from __future__ import annotations

import logging
import queue
import signal
import threading
from typing import Any, Callable, Dict, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from exiftool_catalog.config import HOST, PORT, SHUTDOWN_TIMEOUT_SECONDS
from exiftool_catalog.core.cancellation import CancellationContext
from exiftool_catalog.server.app import create_app

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

TERMINATION_SIGNALS: Tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)
ABNORMAL_SIGNALS: Tuple[int, ...] = tuple(
    getattr(signal, name) for name in ("SIGQUIT", "SIGHUP") if hasattr(signal, name)
)

# Seconds the listener gets to exit after force_exit is set
_FORCE_CLOSE_GRACE_S = 5.0
# Wake-up interval of the main thread while waiting for events
_POLL_INTERVAL_S = 0.5

ServerFactory = Callable[[FastAPI], Any]


class ListenerError(Exception):
    """Raised when the HTTP listener fails to start or stops serving on its own."""


class ShutdownError(Exception):
    """Raised when the listener does not stop gracefully within the timeout.

    RULES:
    - The listener has already been force-closed when this is raised
    """


class UnexpectedSignal(Exception):
    """An abnormal stop signal, distinct from SIGINT/SIGTERM, was received."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__("Unexpected stop signal {}".format(_signal_name(signum)))


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def build_uvicorn_server(app: FastAPI, host: str = HOST, port: int = PORT) -> uvicorn.Server:
    config = uvicorn.Config(app, host=host, port=port, lifespan="on")
    return uvicorn.Server(config)


class LifecycleController:
    """Runs the catalog service until a signal or a listener failure."""

    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
        cancel_scope: Optional[str] = None,
        server_factory: Optional[ServerFactory] = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.shutdown_timeout = shutdown_timeout
        self.context = CancellationContext("root")
        self.app = create_app(context=self.context, cancel_scope=cancel_scope)
        self._server_factory = server_factory or (
            lambda app: build_uvicorn_server(app, host=self.host, port=self.port)
        )
        self._install_signal_handlers = install_signal_handlers
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self._server: Any = None
        self._thread: Optional[threading.Thread] = None

    # -----------------------------------------------------------------------
    # Event producers
    # -----------------------------------------------------------------------

    def request_stop(self, signum: int = signal.SIGTERM) -> None:
        """Ask run() to stop as if ``signum`` had been delivered."""
        self._events.put(("signal", signum))

    def _handle_signal(self, signum, frame) -> None:
        self.request_stop(signum)

    def _serve(self) -> None:
        error: Optional[BaseException] = None
        try:
            self._server.run()
        except SystemExit as exc:
            # uvicorn calls sys.exit() when it cannot bind
            error = ListenerError("Listener exited with status {}".format(exc.code))
        except Exception as exc:
            error = ListenerError("Listener crashed: {}".format(exc))
            error.__cause__ = exc
        else:
            if not getattr(self._server, "started", True):
                error = ListenerError("Listener failed to start on {}:{}".format(self.host, self.port))
        self._events.put(("listener", error))

    # -----------------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------------

    def run(self) -> int:
        """Serve until stopped; return the process exit code."""
        self._server = self._server_factory(self.app)
        previous = self._set_signal_handlers()
        try:
            self._thread = threading.Thread(target=self._serve, name="catalog-listener", daemon=True)
            logger.info("Starting serving requests on %s:%d", self.host, self.port)
            self._thread.start()

            kind, value = self._next_event()
            if kind == "listener":
                self.context.cancel()
                error = value or ListenerError("Listener stopped unexpectedly")
                logger.error("Error when serving requests: %s", error)
                return EXIT_FAILURE
            return self._stop(value)
        finally:
            self._restore_signal_handlers(previous)

    def _next_event(self) -> Tuple[str, Any]:
        while True:
            try:
                return self._events.get(timeout=_POLL_INTERVAL_S)
            except queue.Empty:
                continue

    def _stop(self, signum: int) -> int:
        unexpected = signum not in TERMINATION_SIGNALS
        if unexpected:
            logger.error("Unexpected stop signal %s, shutting down server", _signal_name(signum))
        else:
            logger.info("Received %s, shutting down server gracefully", _signal_name(signum))

        self.context.cancel()
        try:
            self.shutdown_listener()
        except ShutdownError as exc:
            logger.error("Error shutting down server: %s", exc)
            return EXIT_FAILURE

        if unexpected:
            logger.error("%s", UnexpectedSignal(signum))
            return EXIT_FAILURE
        logger.info("Server shutdown completed successfully")
        return EXIT_SUCCESS

    def shutdown_listener(self) -> None:
        """Stop the listener gracefully, forcing it closed after the timeout.

        RULES:
        - Raises ShutdownError on timeout (after forcing the close)
        - Raises ShutdownError if the listener reported an error while stopping
        """
        self._server.should_exit = True
        self._thread.join(self.shutdown_timeout)

        if self._thread.is_alive():
            logger.warning(
                "Graceful shutdown exceeded %.0fs, forcing listener closed",
                self.shutdown_timeout,
            )
            self._server.force_exit = True
            self._thread.join(_FORCE_CLOSE_GRACE_S)
            raise ShutdownError(
                "Listener did not stop within {:.0f}s".format(self.shutdown_timeout)
            )

        error = self._drain_listener_error()
        if error is not None:
            raise ShutdownError("Listener failed while stopping: {}".format(error)) from error

    def _drain_listener_error(self) -> Optional[BaseException]:
        error = None
        while True:
            try:
                kind, value = self._events.get_nowait()
            except queue.Empty:
                return error
            if kind == "listener" and value is not None:
                error = value
            elif kind == "signal":
                logger.info("Ignoring %s received during shutdown", _signal_name(value))

    # -----------------------------------------------------------------------
    # Signal handler installation
    # -----------------------------------------------------------------------

    def _set_signal_handlers(self) -> Dict[int, Any]:
        previous: Dict[int, Any] = {}
        if not self._install_signal_handlers:
            return previous
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not on the main thread, signal handlers not installed")
            return previous
        for signum in TERMINATION_SIGNALS + ABNORMAL_SIGNALS:
            previous[signum] = signal.signal(signum, self._handle_signal)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, Any]) -> None:
        for signum, handler in previous.items():
            # None means the handler was installed outside Python
            if handler is not None:
                signal.signal(signum, handler)

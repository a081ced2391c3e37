"""Extractor process supervision.

WHY: Every catalog request runs ``exiftool -listx`` and reads its stdout
as a stream. The process has to die when its cancellation context is
cancelled, and it must never outlive the request that started it, even
when the client disconnects halfway through.

HOW: ProcessRunner holds the fixed command. start() spawns it with
subprocess.Popen, stdout piped and stderr discarded, and returns a
RunningProcess that ties the process to the context through a cancel
callback. RunningProcess is a context manager; close() releases the pipe and
reaps the process (terminating it if needed) on every exit path.

RULES:
- ProcessStartError is raised before any output is produced
- A cancelled context refuses to start new processes
- terminate() first, kill() if the process ignores it
- close() is idempotent and safe to call from any thread
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import IO, List, Optional, Sequence

from exiftool_catalog.core.cancellation import CancellationContext

logger = logging.getLogger(__name__)

# Seconds to wait for the extractor to exit after terminate() before kill()
_TERMINATE_GRACE_S = 2.0
# Seconds close() lets the extractor exit by itself before terminating it
_EXIT_GRACE_S = 0.5


class ProcessStartError(Exception):
    """Raised when the extractor cannot be started.

    WHY: The HTTP layer has to answer with a clean server error when the
    extractor is missing or the context is already cancelled, and it can
    only do that before the first byte of the body is written.

    RULES:
    - Raised by ProcessRunner.start() only
    - The message names the command that failed
    """


class RunningProcess:
    """A started extractor process bound to a cancellation context."""

    def __init__(self, process: subprocess.Popen, context: CancellationContext) -> None:
        self._process = process
        self._context = context
        self._lock = threading.Lock()
        self._closed = False
        context.on_cancel(self.terminate)

    @property
    def stdout(self) -> IO[bytes]:
        return self._process.stdout

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    def terminate(self) -> None:
        """Stop the process if it is still running.

        HOW: SIGTERM, wait up to _TERMINATE_GRACE_S, then SIGKILL. Called
        from the context's cancel callback and from close().
        """
        if self._process.poll() is not None:
            return
        logger.info("Terminating extractor process %d", self._process.pid)
        try:
            self._process.terminate()
            self._process.wait(timeout=_TERMINATE_GRACE_S)
        except subprocess.TimeoutExpired:
            logger.warning("Extractor process %d ignored SIGTERM, killing", self._process.pid)
            self._process.kill()
            self._process.wait()
        except ProcessLookupError:
            pass

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._context.remove_callback(self.terminate)
        if self._process.stdout is not None:
            try:
                self._process.stdout.close()
            except OSError:
                logger.warning("Failed to close stdout of extractor process %d", self._process.pid)

        # A finished extractor exits on its own once stdout hits EOF
        try:
            self._process.wait(timeout=_EXIT_GRACE_S)
        except subprocess.TimeoutExpired:
            self.terminate()

        returncode = self._process.poll()
        if returncode:
            logger.warning("Extractor process %d exited with status %s", self._process.pid, returncode)
        else:
            logger.debug("Extractor process %d finished", self._process.pid)

    def __enter__(self) -> RunningProcess:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class ProcessRunner:
    """Starts the extractor command under a cancellation context."""

    def __init__(self, command: Sequence[str]) -> None:
        if not command:
            raise ValueError("Extractor command must not be empty")
        self.command: List[str] = list(command)

    def start(self, context: CancellationContext) -> RunningProcess:
        """Spawn the extractor and return its running handle.

        RULES:
        - Raises ProcessStartError if the context is already cancelled
        - Raises ProcessStartError if the binary cannot be executed
        - Raises ProcessStartError if stdout is not attached
        """
        if context.cancelled:
            raise ProcessStartError(
                "Cannot start {}: context {} is cancelled".format(self.command[0], context.name)
            )

        try:
            process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ProcessStartError(
                "Cannot start {}: {}".format(" ".join(self.command), exc)
            ) from exc

        if process.stdout is None:
            process.kill()
            process.wait()
            raise ProcessStartError("No stdout attached to {}".format(self.command[0]))

        logger.info("Started extractor process %d: %s", process.pid, " ".join(self.command))
        return RunningProcess(process, context)

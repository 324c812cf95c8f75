"""
Pipe feeder for the persistent-pipe strategy.

A PipeFeeder streams one clip's bytes into the named pipe read by the
long-lived encoder. It exposes the same handle surface as EncoderProcess
(wait_confirmed / terminate / is_alive / phase) so the supervisor treats
both the same way.

Writes go through a non-blocking descriptor polled with select(), so a stop
request is noticed within one poll interval even while the pipe is full.
"""

from __future__ import annotations

import errno
import logging
import os
import select
import threading
from typing import Callable, Optional

from streamswitch.encoder.process import ProcessPhase
from streamswitch.errors import StartupFailedError

logger = logging.getLogger(__name__)

WRITE_POLL_INTERVAL_SEC = 0.1

FEEDER_EXIT_EOF = 0
FEEDER_EXIT_ERROR = 1


class PipeFeeder:
    """Thread writing a clip into the named pipe, optionally looping it."""

    def __init__(
        self,
        name: str,
        source_path: str,
        fifo_path: str,
        chunk_bytes: int = 65536,
        loop: bool = True,
        on_unexpected_exit: Optional[Callable[[object, Optional[int]], None]] = None,
    ) -> None:
        self.name = name
        self.source_path = str(source_path)
        self.fifo_path = str(fifo_path)
        self._chunk_bytes = chunk_bytes
        self._loop = loop
        self._on_unexpected_exit = on_unexpected_exit

        self._lock = threading.Lock()
        self._phase = ProcessPhase.STARTING
        self._returncode: Optional[int] = None
        self._error: Optional[str] = None

        self._stop_event = threading.Event()
        self._exited = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._source = None
        self._fd: Optional[int] = None
        self.bytes_written = 0

    @property
    def phase(self) -> ProcessPhase:
        with self._lock:
            return self._phase

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    @property
    def stderr_tail(self) -> str:
        return self._error or ""

    def is_alive(self) -> bool:
        with self._lock:
            return self._thread is not None and self._phase in (ProcessPhase.STARTING, ProcessPhase.CONFIRMED)

    def spawn(self) -> None:
        """
        Open the clip and a writer on the pipe, then start streaming.

        Raises:
            StartupFailedError: If the clip or the pipe cannot be opened
        """
        try:
            self._source = open(self.source_path, "rb")
        except OSError as e:
            self._mark_exited(FEEDER_EXIT_ERROR)
            raise StartupFailedError(f"{self.name}: cannot open clip: {e}")

        try:
            # ENXIO here means nobody holds the read end of the pipe
            self._fd = os.open(self.fifo_path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as e:
            self._source.close()
            self._source = None
            self._mark_exited(FEEDER_EXIT_ERROR)
            raise StartupFailedError(f"{self.name}: cannot open pipe writer {self.fifo_path}: {e}")

        self._thread = threading.Thread(target=self._run, daemon=True, name=f"PipeFeeder-{self.name}")
        self._thread.start()
        logger.info(f"{self.name}: streaming {self.source_path} into {self.fifo_path}")

    def wait_confirmed(self, confirm_ms: int) -> None:
        """
        Confirm the feeder survives ``confirm_ms`` without stopping.

        Raises:
            StartupFailedError: If the feeder stopped inside the window
        """
        exited = self._exited.wait(confirm_ms / 1000.0)
        with self._lock:
            if not exited and self._phase == ProcessPhase.STARTING:
                self._phase = ProcessPhase.CONFIRMED
                logger.info(f"{self.name}: confirmed after {confirm_ms}ms ({self.bytes_written} bytes written)")
                return
        reason = f"{self.name}: stopped before confirmation"
        if self._error:
            reason += f": {self._error}"
        raise StartupFailedError(reason, self._returncode, self.stderr_tail)

    def terminate(self, graceful_timeout_ms: int) -> bool:
        """
        Ask the feeder to stop and wait for it.

        If the thread does not stop in time it is abandoned; it is a daemon
        and exits at its next poll. Idempotent.

        Returns:
            True if the thread stopped within the timeout (or was already gone)
        """
        with self._lock:
            if self._phase == ProcessPhase.EXITED or self._thread is None:
                return True
            self._phase = ProcessPhase.TERMINATING
        self._stop_event.set()

        if self._exited.wait(graceful_timeout_ms / 1000.0):
            logger.info(f"{self.name}: stopped ({self.bytes_written} bytes written)")
            return True

        logger.warning(f"{self.name}: did not stop within {graceful_timeout_ms}ms, abandoning writer thread")
        return False

    def kill(self) -> None:
        """Stop writing without waiting for the thread."""
        with self._lock:
            if self._phase == ProcessPhase.EXITED or self._thread is None:
                return
            self._phase = ProcessPhase.TERMINATING
        self._stop_event.set()

    def _run(self) -> None:
        returncode = FEEDER_EXIT_EOF
        try:
            while not self._stop_event.is_set():
                chunk = self._source.read(self._chunk_bytes)
                if not chunk:
                    if self._loop:
                        self._source.seek(0)
                        continue
                    logger.info(f"{self.name}: reached end of clip")
                    break
                if not self._write_all(chunk):
                    break
        except OSError as e:
            self._error = str(e)
            returncode = FEEDER_EXIT_ERROR
            if e.errno == errno.EPIPE:
                logger.warning(f"{self.name}: pipe reader went away")
            else:
                logger.warning(f"{self.name}: write error: {e}")
        finally:
            self._close()
            self._handle_exit(returncode)

    def _write_all(self, chunk: bytes) -> bool:
        """Write a chunk, polling for writability. Returns False if stopped."""
        view = memoryview(chunk)
        while view:
            if self._stop_event.is_set():
                return False
            _, writable, _ = select.select([], [self._fd], [], WRITE_POLL_INTERVAL_SEC)
            if not writable:
                continue
            try:
                written = os.write(self._fd, view)
            except BlockingIOError:
                continue
            view = view[written:]
            self.bytes_written += written
        return True

    def _close(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError as e:
                logger.debug(f"{self.name}: error closing pipe writer: {e}")
            self._fd = None
        if self._source is not None:
            self._source.close()
            self._source = None

    def _mark_exited(self, returncode: int) -> None:
        with self._lock:
            self._phase = ProcessPhase.EXITED
            self._returncode = returncode
        self._exited.set()

    def _handle_exit(self, returncode: int) -> None:
        with self._lock:
            previous = self._phase
            self._phase = ProcessPhase.EXITED
            self._returncode = returncode
        self._exited.set()

        if previous == ProcessPhase.CONFIRMED:
            logger.warning(f"{self.name}: stopped unexpectedly (code: {returncode})")
            if self._on_unexpected_exit is not None:
                try:
                    self._on_unexpected_exit(self, returncode)
                except Exception:
                    logger.exception(f"{self.name}: unexpected-exit handler failed")

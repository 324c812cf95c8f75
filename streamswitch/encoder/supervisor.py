"""
Process supervision for the stream switcher.

A ProcessSupervisor owns at most one live session (an encoder process or a
pipe feeder bound to one clip) and is the only component that signals the
encoder or writes to the pipe. Two backends share the interface:

- ProcessPerClipSupervisor: one ffmpeg per clip, restarted on every switch
- PersistentPipeSupervisor: one long-lived ffmpeg reading a named pipe;
  a switch swaps the feeder writing into the pipe

Unexpected exits of a confirmed session are forwarded to the crash handler
installed with set_crash_handler(). Handlers run outside the supervisor lock.
"""

from __future__ import annotations

import logging
import os
import stat
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from streamswitch.config import STRATEGY_PIPE, SwitcherConfig
from streamswitch.encoder.command import build_clip_command, build_pipe_reader_command
from streamswitch.encoder.pipe_feeder import PipeFeeder
from streamswitch.encoder.process import EncoderProcess, Launcher
from streamswitch.errors import StartupFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveSession:
    """The clip currently being served and the handle serving it."""
    target: str
    handle: object
    started_at: float

    def is_alive(self) -> bool:
        return self.handle.is_alive()


CrashHandler = Callable[[ActiveSession, Optional[int]], None]


class ProcessSupervisor(ABC):
    """
    Owner of the single live encoder session.

    Subclasses implement _create_handle(); everything else (session
    bookkeeping, termination, crash forwarding) is shared.
    """

    def __init__(self, config: SwitcherConfig, launcher: Optional[Launcher] = None) -> None:
        self.config = config
        self._launcher = launcher
        self._lock = threading.RLock()
        self._session: Optional[ActiveSession] = None
        self._crash_handler: Optional[CrashHandler] = None

    def set_crash_handler(self, handler: Optional[CrashHandler]) -> None:
        self._crash_handler = handler

    def open(self) -> None:
        """Prepare long-lived resources. No-op for the process-per-clip backend."""

    def close(self) -> None:
        """Terminate the session and release long-lived resources."""
        self.terminate_session()

    def current_session(self) -> Optional[ActiveSession]:
        with self._lock:
            return self._session

    def has_live_session(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.is_alive()

    def start_session(self, target: str, path: str) -> ActiveSession:
        """
        Start serving ``target`` and wait for confirmation.

        Args:
            target: Clip identifier
            path: Resolved clip path

        Returns:
            The confirmed ActiveSession

        Raises:
            StartupFailedError: If the handle did not survive its confirmation window
            RuntimeError: If a live session already exists
        """
        with self._lock:
            if self._session is not None and self._session.is_alive():
                raise RuntimeError(
                    f"Cannot start {target!r}: session for {self._session.target!r} is still live"
                )
            self._session = None

        handle = self._create_handle(target, str(path))
        handle.spawn()
        handle.wait_confirmed(self.config.spawn_confirm_ms)

        with self._lock:
            # The handle may have died between confirmation and here; its exit
            # callback found no session to clear, so report it as a startup failure
            if not handle.is_alive():
                raise StartupFailedError(
                    f"{handle.name}: exited right after confirmation",
                    handle.returncode,
                    handle.stderr_tail,
                )
            session = ActiveSession(target=target, handle=handle, started_at=time.time())
            self._session = session

        logger.info(f"Session live: {target}")
        return session

    def terminate_session(self) -> None:
        """
        Gracefully terminate the current session, force-killing on timeout.

        Always completes. Idempotent: returns immediately without a session.
        """
        with self._lock:
            session = self._session
            self._session = None
        if session is None:
            return

        logger.info(f"Terminating session: {session.target}")
        graceful = session.handle.terminate(self.config.graceful_timeout_ms)
        if not graceful:
            logger.warning(f"Session {session.target} was force-stopped")

    def kill_session(self) -> None:
        """Force-stop the current session with no graceful phase. Idempotent."""
        with self._lock:
            session = self._session
            self._session = None
        if session is None:
            return
        logger.warning(f"Force-killing session: {session.target}")
        session.handle.kill()

    @abstractmethod
    def _create_handle(self, target: str, path: str):
        """Build (but do not start) the handle serving ``target``."""

    def _on_handle_exit(self, handle, returncode: Optional[int]) -> None:
        """Exit callback from a confirmed handle that stopped on its own."""
        with self._lock:
            session = self._session
            if session is None or session.handle is not handle:
                return
            self._session = None
        self._report_crash(session, returncode)

    def _report_crash(self, session: ActiveSession, returncode: Optional[int]) -> None:
        handler = self._crash_handler
        if handler is None:
            logger.warning(f"Session {session.target} died (exit code: {returncode}); no crash handler installed")
            return
        try:
            handler(session, returncode)
        except Exception:
            logger.exception("Crash handler failed")


class ProcessPerClipSupervisor(ProcessSupervisor):
    """Starts a fresh ffmpeg process for every clip."""

    def _create_handle(self, target: str, path: str) -> EncoderProcess:
        return EncoderProcess(
            name=f"encoder[{target}]",
            cmd=build_clip_command(self.config, path),
            launcher=self._launcher,
            on_unexpected_exit=self._on_handle_exit,
            runtime_error_limit=self.config.runtime_error_limit,
        )


class PersistentPipeSupervisor(ProcessSupervisor):
    """
    One long-lived ffmpeg reading a named pipe; sessions are pipe feeders.

    The supervisor keeps its own read-write descriptor on the pipe for its
    whole lifetime. The encoder therefore never sees EOF when one feeder
    closes and the next one opens.
    """

    def __init__(self, config: SwitcherConfig, launcher: Optional[Launcher] = None) -> None:
        super().__init__(config, launcher)
        self.fifo_path = config.resolved_fifo_path
        self._reader: Optional[EncoderProcess] = None
        self._hold_fd: Optional[int] = None
        self._reader_lost = False

    def open(self) -> None:
        """Recreate the named pipe and start the persistent reader."""
        self._ensure_fifo()
        try:
            self._ensure_reader()
        except StartupFailedError as e:
            # Retried lazily by the next start_session()
            logger.error(f"Persistent reader failed to start: {e}")

    def close(self) -> None:
        super().close()
        with self._lock:
            reader = self._reader
            self._reader = None
        if reader is not None:
            reader.terminate(self.config.graceful_timeout_ms)
        if self._hold_fd is not None:
            try:
                os.close(self._hold_fd)
            except OSError as e:
                logger.debug(f"Error closing pipe hold descriptor: {e}")
            self._hold_fd = None
        try:
            os.unlink(self.fifo_path)
        except FileNotFoundError:
            pass
        logger.info(f"Named pipe removed: {self.fifo_path}")

    @property
    def reader(self) -> Optional[EncoderProcess]:
        with self._lock:
            return self._reader

    def _ensure_fifo(self) -> None:
        if self._hold_fd is not None:
            try:
                os.close(self._hold_fd)
            except OSError:
                pass
            self._hold_fd = None
        if os.path.lexists(self.fifo_path):
            os.unlink(self.fifo_path)
        logger.info(f"Creating named pipe: {self.fifo_path}")
        os.mkfifo(self.fifo_path)
        # O_RDWR never blocks on a FIFO and keeps a writer attached between feeders
        self._hold_fd = os.open(self.fifo_path, os.O_RDWR | os.O_NONBLOCK)

    def _ensure_reader(self) -> EncoderProcess:
        with self._lock:
            reader = self._reader
        if reader is not None and reader.is_alive():
            return reader

        # A dead reader leaves unread bytes in the pipe buffer; start the next one on a fresh pipe
        stale = reader is not None or self._reader_lost
        if stale or self._hold_fd is None or not os.path.exists(self.fifo_path) or not stat.S_ISFIFO(os.stat(self.fifo_path).st_mode):
            self._ensure_fifo()
        self._reader_lost = False

        reader = EncoderProcess(
            name="pipe-reader",
            cmd=build_pipe_reader_command(self.config, self.fifo_path),
            launcher=self._launcher,
            on_unexpected_exit=self._on_reader_exit,
            runtime_error_limit=self.config.runtime_error_limit,
        )
        reader.spawn()
        reader.wait_confirmed(self.config.spawn_confirm_ms)
        with self._lock:
            self._reader = reader
        logger.info(f"Persistent reader running (PID={reader.pid})")
        return reader

    def start_session(self, target: str, path: str) -> ActiveSession:
        self._ensure_reader()
        return super().start_session(target, path)

    def _create_handle(self, target: str, path: str) -> PipeFeeder:
        return PipeFeeder(
            name=f"feeder[{target}]",
            source_path=path,
            fifo_path=self.fifo_path,
            chunk_bytes=self.config.pipe_chunk_bytes,
            loop=True,
            on_unexpected_exit=self._on_handle_exit,
        )

    def _on_reader_exit(self, reader, returncode: Optional[int]) -> None:
        """The persistent reader died: drop the session and report it as a crash."""
        logger.warning(f"Persistent reader died (exit code: {returncode}); it will be re-created")
        with self._lock:
            if self._reader is reader:
                self._reader = None
                self._reader_lost = True
            session = self._session
            self._session = None
        if session is None:
            return
        # Stop the feeder before reporting so its own exit is not a second crash
        session.handle.terminate(self.config.graceful_timeout_ms)
        self._report_crash(session, returncode)


def create_supervisor(config: SwitcherConfig, launcher: Optional[Launcher] = None) -> ProcessSupervisor:
    """Build the supervisor backend selected by ``config.strategy``."""
    if config.strategy == STRATEGY_PIPE:
        return PersistentPipeSupervisor(config, launcher)
    return ProcessPerClipSupervisor(config, launcher)

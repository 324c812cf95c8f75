"""
Encoder process handle for the stream switcher.

EncoderProcess wraps one ffmpeg subprocess and drives a small state machine:

    STARTING -> CONFIRMED -> TERMINATING -> EXITED

Two daemon threads feed it events: an exit watcher (blocking wait() on the
process) and a stderr drain (blocking readline()). The owner drives the
remaining transitions through wait_confirmed() and terminate().

An exit while CONFIRMED was not requested by anyone; it is reported through
the on_unexpected_exit callback. An exit while STARTING is a startup failure
and surfaces from wait_confirmed() instead.
"""

from __future__ import annotations

import enum
import logging
import re
import subprocess
import threading
from typing import Callable, List, Optional

from streamswitch.errors import StartupFailedError

logger = logging.getLogger(__name__)


class ProcessPhase(enum.Enum):
    """Lifecycle phase of one encoder process or pipe feeder."""
    STARTING = 1
    CONFIRMED = 2
    TERMINATING = 3
    EXITED = 4


# stderr lines that mean the encoder cannot work (bad input, refused connection)
HARD_FAILURE_PATTERN = re.compile(
    r"connection refused"
    r"|address already in use"
    r"|connection reset by peer"
    r"|broken pipe"
    r"|input/output error"
    r"|no such file or directory"
    r"|error opening (input|output)"
    r"|failed to (open|connect)"
    r"|could not (open|write|find)"
    r"|server returned 4\d\d",
    re.IGNORECASE,
)

# stderr lines counted against runtime_error_limit once confirmed
RUNTIME_ERROR_PATTERN = re.compile(r"error|invalid|failed|refused", re.IGNORECASE)

# How long to wait for the kernel to reap a SIGKILLed process before giving up on it
KILL_REAP_TIMEOUT_SEC = 1.0

# Keep the last 10KB of stderr for diagnostics
STDERR_TAIL_MAX_SIZE = 10 * 1024


def popen_launcher(cmd: List[str]) -> subprocess.Popen:
    """Start an encoder with stdin/stdout detached and stderr piped."""
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        bufsize=0,
    )


Launcher = Callable[[List[str]], subprocess.Popen]
ExitCallback = Callable[[object, Optional[int]], None]


class EncoderProcess:
    """
    One supervised ffmpeg process.

    Not reusable: a new instance is created for every startup attempt.
    """

    def __init__(
        self,
        name: str,
        cmd: List[str],
        launcher: Optional[Launcher] = None,
        on_unexpected_exit: Optional[ExitCallback] = None,
        runtime_error_limit: int = 10,
    ) -> None:
        """
        Initialize the handle. Nothing is started until spawn().

        Args:
            name: Label used in log lines (e.g., "encoder[idle.mp4]")
            cmd: Full ffmpeg argument list
            launcher: Callable that starts the process (default: popen_launcher)
            on_unexpected_exit: Called with (handle, returncode) when a confirmed process exits on its own
            runtime_error_limit: stderr error lines tolerated after confirmation before the process is killed
        """
        self.name = name
        self.cmd = list(cmd)
        self._launcher = launcher or popen_launcher
        self._on_unexpected_exit = on_unexpected_exit
        self._runtime_error_limit = runtime_error_limit

        self._lock = threading.Lock()
        self._phase = ProcessPhase.STARTING
        self._popen: Optional[subprocess.Popen] = None
        self._returncode: Optional[int] = None

        # Set on exit, or on a hard failure line while STARTING
        self._startup_settled = threading.Event()
        self._exited = threading.Event()
        self._hard_failure: Optional[str] = None

        self._runtime_errors = 0
        self._stderr_tail = ""

        self._watch_thread: Optional[threading.Thread] = None
        self._stderr_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def phase(self) -> ProcessPhase:
        with self._lock:
            return self._phase

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid if self._popen is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail

    def is_alive(self) -> bool:
        with self._lock:
            return self._popen is not None and self._phase in (ProcessPhase.STARTING, ProcessPhase.CONFIRMED)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def spawn(self) -> None:
        """
        Launch the process and start the watcher threads.

        Raises:
            StartupFailedError: If the process could not be launched at all
        """
        logger.debug(f"{self.name}: launching: {' '.join(self.cmd)}")
        try:
            self._popen = self._launcher(self.cmd)
        except OSError as e:
            with self._lock:
                self._phase = ProcessPhase.EXITED
            self._exited.set()
            self._startup_settled.set()
            raise StartupFailedError(f"{self.name}: failed to launch encoder: {e}")

        logger.info(f"{self.name}: started ffmpeg PID={self._popen.pid}")

        # stderr drain first so no early diagnostic line is lost
        if self._popen.stderr is not None:
            self._stderr_thread = threading.Thread(
                target=self._drain_stderr,
                daemon=True,
                name=f"EncoderStderr-{self._popen.pid}",
            )
            self._stderr_thread.start()

        self._watch_thread = threading.Thread(
            target=self._watch_exit,
            daemon=True,
            name=f"EncoderWatch-{self._popen.pid}",
        )
        self._watch_thread.start()

    def wait_confirmed(self, confirm_ms: int) -> None:
        """
        Wait out the startup-confirmation window.

        The process is confirmed if it is still running after ``confirm_ms``
        and has not printed a hard failure line.

        Raises:
            StartupFailedError: If the process exited or failed hard inside the window
        """
        settled = self._startup_settled.wait(confirm_ms / 1000.0)

        with self._lock:
            if not settled and self._phase == ProcessPhase.STARTING:
                self._phase = ProcessPhase.CONFIRMED
                logger.info(f"{self.name}: confirmed live after {confirm_ms}ms")
                return
            hard_failure = self._hard_failure
            phase = self._phase

        if phase != ProcessPhase.EXITED:
            # Hard failure while still running; make sure it goes away
            self.terminate(graceful_timeout_ms=int(KILL_REAP_TIMEOUT_SEC * 1000))

        if hard_failure:
            reason = f"{self.name}: startup failed: {hard_failure}"
        else:
            reason = f"{self.name}: exited before confirmation"
        logger.warning(reason)
        raise StartupFailedError(reason, self._returncode, self._stderr_tail)

    def terminate(self, graceful_timeout_ms: int) -> bool:
        """
        Stop the process: SIGTERM, wait, then SIGKILL.

        Always returns; never raises for a process that refuses to die.
        Idempotent.

        Args:
            graceful_timeout_ms: How long to wait after SIGTERM before SIGKILL

        Returns:
            True if the process exited on its own after SIGTERM (or was already gone)
        """
        with self._lock:
            if self._phase == ProcessPhase.EXITED or self._popen is None:
                return True
            self._phase = ProcessPhase.TERMINATING
        popen = self._popen

        try:
            popen.terminate()
        except OSError as e:
            logger.warning(f"{self.name}: SIGTERM failed ({e}), using SIGKILL")

        if self._exited.wait(graceful_timeout_ms / 1000.0):
            logger.info(f"{self.name}: terminated (exit code: {self._returncode})")
            return True

        logger.warning(f"{self.name}: did not exit within {graceful_timeout_ms}ms, killing")
        try:
            popen.kill()
        except OSError as e:
            logger.warning(f"{self.name}: SIGKILL failed: {e}")

        if not self._exited.wait(KILL_REAP_TIMEOUT_SEC):
            logger.error(f"{self.name}: PID={popen.pid} still not reaped after SIGKILL, abandoning")
        return False

    def kill(self) -> None:
        """SIGKILL without a graceful phase. Idempotent."""
        with self._lock:
            if self._phase == ProcessPhase.EXITED or self._popen is None:
                return
            self._phase = ProcessPhase.TERMINATING
        popen = self._popen

        logger.warning(f"{self.name}: force-killing PID={popen.pid}")
        try:
            popen.kill()
        except OSError as e:
            logger.warning(f"{self.name}: SIGKILL failed: {e}")
        if not self._exited.wait(KILL_REAP_TIMEOUT_SEC):
            logger.error(f"{self.name}: PID={popen.pid} still not reaped after SIGKILL, abandoning")

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def _watch_exit(self) -> None:
        """Block on the process and report its exit."""
        popen = self._popen
        try:
            returncode = popen.wait()
        except Exception as e:
            logger.warning(f"{self.name}: error waiting for process: {e}")
            returncode = None
        self._handle_exit(returncode)

    def _handle_exit(self, returncode: Optional[int]) -> None:
        with self._lock:
            previous = self._phase
            self._phase = ProcessPhase.EXITED
            self._returncode = returncode
        self._exited.set()
        self._startup_settled.set()

        if previous == ProcessPhase.CONFIRMED:
            logger.warning(f"{self.name}: exited unexpectedly (exit code: {returncode})")
            if self._on_unexpected_exit is not None:
                try:
                    self._on_unexpected_exit(self, returncode)
                except Exception:
                    logger.exception(f"{self.name}: unexpected-exit handler failed")
        elif previous == ProcessPhase.STARTING:
            logger.debug(f"{self.name}: exited during startup (exit code: {returncode})")
        else:
            logger.debug(f"{self.name}: exited after stop request (exit code: {returncode})")

    def _drain_stderr(self) -> None:
        """Read stderr until EOF, logging lines and watching for failures."""
        stream = self._popen.stderr
        try:
            while True:
                line = stream.readline()
                if not line:
                    break
                text = line.decode(errors="ignore").rstrip() if isinstance(line, bytes) else str(line).rstrip()
                if text:
                    self._on_stderr_line(text)
        except (OSError, ValueError) as e:
            logger.debug(f"{self.name}: stderr read error (likely closed): {e}")
        logger.debug(f"{self.name}: stderr drain thread exiting")

    def _on_stderr_line(self, text: str) -> None:
        new_line = text + "\n"
        tail = self._stderr_tail + new_line
        if len(tail) > STDERR_TAIL_MAX_SIZE:
            tail = tail[-STDERR_TAIL_MAX_SIZE:]
        self._stderr_tail = tail

        with self._lock:
            phase = self._phase

        if phase == ProcessPhase.STARTING:
            if HARD_FAILURE_PATTERN.search(text):
                logger.error(f"[FFMPEG] {self.name}: {text}")
                with self._lock:
                    if self._hard_failure is None:
                        self._hard_failure = text
                self._startup_settled.set()
            else:
                logger.debug(f"[FFMPEG] {self.name}: {text}")
            return

        if phase == ProcessPhase.CONFIRMED and RUNTIME_ERROR_PATTERN.search(text):
            self._runtime_errors += 1
            logger.warning(f"[FFMPEG] {self.name}: runtime error [{self._runtime_errors}]: {text}")
            if self._runtime_errors > self._runtime_error_limit:
                logger.error(
                    f"{self.name}: more than {self._runtime_error_limit} runtime errors, killing encoder"
                )
                # Phase stays CONFIRMED so the exit is reported as unexpected
                try:
                    self._popen.kill()
                except OSError as e:
                    logger.warning(f"{self.name}: SIGKILL failed: {e}")
            return

        logger.debug(f"[FFMPEG] {self.name}: {text}")

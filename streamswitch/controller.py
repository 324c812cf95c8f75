"""
Stream switch controller.

SwitchController accepts switch requests from any thread, keeps them in a
deduplicated queue and drains the queue on a single worker thread. Each
dequeued target runs the switch protocol:

    1. skip if the target is already live
    2. resolve the clip (missing clip: reject, no process action)
    3. terminate the current session
    4. wait the safety interval
    5. start the new session (with startup retry)
    6. record the new current target

Every wait inside the protocol can be interrupted by shutdown().
"""

import enum
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from streamswitch.clips import ClipLibrary
from streamswitch.config import SwitcherConfig
from streamswitch.errors import SwitchAborted, SwitchFailedError, TargetNotFoundError
from streamswitch.recovery import CrashRecovery, StartupRetry
from streamswitch.switch_queue import SwitchQueue

logger = logging.getLogger(__name__)

WORKER_JOIN_TIMEOUT_SEC = 5.0


class SwitchState(enum.Enum):
    IDLE = "idle"
    SWITCHING = "switching"


@dataclass(frozen=True)
class SwitchStatus:
    """Read-only snapshot of the controller."""
    current_target: Optional[str]
    queue_length: int
    is_switching: bool
    is_playing: bool
    strategy: str
    crash_count: int
    started_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SwitchController:
    """
    Serializes clip switches onto one encoder session.

    Thread-safe. request_switch() only touches the queue; the switch protocol
    runs on the controller's worker thread (or on whoever calls
    process_queue() when autostart is off).
    """

    def __init__(
        self,
        config: SwitcherConfig,
        supervisor,
        clip_library: Optional[ClipLibrary] = None,
        autostart: bool = True,
    ) -> None:
        """
        Initialize the controller and open the supervisor.

        Args:
            config: Switcher configuration
            supervisor: ProcessSupervisor owning the encoder session
            clip_library: Clip resolver (default: ClipLibrary(config.clip_dir))
            autostart: Start the drain worker thread immediately
        """
        self.config = config
        self.supervisor = supervisor
        self.clips = clip_library or ClipLibrary(config.clip_dir)

        self._cond = threading.Condition()
        self._queue = SwitchQueue()
        self._state = SwitchState.IDLE
        self._in_flight: Optional[str] = None
        self._current_target: Optional[str] = None
        self._started_at: Optional[float] = None
        # Crashed target whose restart waits for the in-flight switch to finish
        self._pending_recovery: Optional[str] = None

        # Set by shutdown(); every protocol wait returns early when it is set
        self._halt_event = threading.Event()
        self._halting = False
        self._closed = False

        self.recovery = CrashRecovery(self)
        self._retry = StartupRetry(
            retry_limit=config.retry_limit,
            backoff_ms=config.retry_backoff_ms,
            supervisor=supervisor,
            pause=self._pause,
        )

        self.supervisor.set_crash_handler(self.recovery.handle_unexpected_exit)
        self.supervisor.open()

        self._worker: Optional[threading.Thread] = None
        if autostart:
            self.start()

        logger.info(
            f"SwitchController ready (strategy={config.strategy}, "
            f"safety_interval={config.safety_interval_ms}ms)"
        )

    @property
    def state(self) -> SwitchState:
        with self._cond:
            return self._state

    @property
    def queue(self) -> SwitchQueue:
        return self._queue

    def start(self) -> None:
        """Start the drain worker thread."""
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._run, daemon=True, name="SwitchWorker")
        self._worker.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def request_switch(self, target: str) -> None:
        """
        Submit a target for switching. Returns immediately.

        Args:
            target: Clip identifier

        Raises:
            ValueError: If target is not a non-empty string
        """
        if not isinstance(target, str) or not target.strip():
            raise ValueError(f"Switch target must be a non-empty string, got {target!r}")

        with self._cond:
            if self._closed or self._halting:
                logger.warning(f"Controller is shutting down, ignoring switch to {target}")
                return

            if not self._queue:
                if self._in_flight == target:
                    logger.info(f"Switch to {target} already in progress")
                    return
                if (
                    self._state == SwitchState.IDLE
                    and self._current_target == target
                    and self.supervisor.has_live_session()
                ):
                    logger.info(f"Already streaming {target}")
                    return

            if self._queue.enqueue(target):
                logger.info(f"Queued switch to {target} (queue: {list(self._queue.snapshot())})")
            self._cond.notify_all()

    def process_queue(self) -> None:
        """
        Drain the queue, one switch at a time.

        Returns immediately if a drain is already running or there is nothing
        to do. Failures of individual switches are logged and never stop the
        drain.
        """
        with self._cond:
            if self._state != SwitchState.IDLE or not self._queue or self._halting:
                return
            self._state = SwitchState.SWITCHING

        try:
            while True:
                with self._cond:
                    if self._halting:
                        break
                    target = self._queue.dequeue()
                    if target is None:
                        break
                    self._in_flight = target

                try:
                    self._execute_switch(target)
                except SwitchAborted as e:
                    logger.info(f"Switch to {target} aborted: {e}")
                except TargetNotFoundError as e:
                    logger.error(f"Rejected switch: {e}")
                except SwitchFailedError as e:
                    logger.error(f"Switch failed: {e}")
                except Exception:
                    logger.exception(f"Unexpected error while switching to {target}")
                finally:
                    with self._cond:
                        self._in_flight = None
                        self._requeue_pending_recovery()
        finally:
            with self._cond:
                self._requeue_pending_recovery()
                self._state = SwitchState.IDLE
                self._cond.notify_all()

    def shutdown(self) -> None:
        """
        Stop switching and tear down the encoder session.

        Clears the queue, interrupts the in-flight switch at its next wait,
        waits for it to unwind, then terminates the live session. The
        controller accepts new requests again once this returns.
        """
        logger.info("Switch controller shutting down")
        with self._cond:
            self._halting = True
            dropped = len(self._queue)
            self._queue.clear()
            self._halt_event.set()
            while self._state == SwitchState.SWITCHING:
                self._cond.wait()

        if dropped:
            logger.info(f"Dropped {dropped} pending switch request(s)")

        try:
            self.supervisor.terminate_session()
        finally:
            with self._cond:
                self._queue.clear()
                self._current_target = None
                self._started_at = None
                self._pending_recovery = None
                self._halting = False
                self._halt_event.clear()
                self._cond.notify_all()
        logger.info("Switch controller stopped")

    def close(self) -> None:
        """Shut down, stop the worker thread and release supervisor resources."""
        self.shutdown()
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join(timeout=WORKER_JOIN_TIMEOUT_SEC)
            if self._worker.is_alive():
                logger.warning("Switch worker did not stop in time")
            self._worker = None
        self.supervisor.close()

    def status(self):
        """Return a SwitchStatus snapshot."""
        is_playing = self.supervisor.has_live_session()
        with self._cond:
            return SwitchStatus(
                current_target=self._current_target,
                queue_length=len(self._queue),
                is_switching=self._state == SwitchState.SWITCHING,
                is_playing=is_playing,
                strategy=self.config.strategy,
                crash_count=self.recovery.crash_count,
                started_at=self._started_at,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self) -> None:
        """Worker loop: sleep until there is work, then drain."""
        logger.debug("Switch worker started")
        while True:
            with self._cond:
                while not self._closed and (self._halting or not self._queue):
                    self._cond.wait()
                if self._closed:
                    break
            self.process_queue()
        logger.debug("Switch worker exiting")

    def _execute_switch(self, target: str) -> None:
        session = self.supervisor.current_session()
        if session is not None and session.target == target and session.is_alive():
            logger.info(f"{target} is already live, nothing to do")
            return

        path = self.clips.resolve(target)
        logger.info(f"Switching to {target}")
        started = time.monotonic()

        self.supervisor.terminate_session()
        with self._cond:
            self._current_target = None
            self._started_at = None

        self._pause(self.config.safety_interval_ms)

        new_session = self._retry.run(
            target,
            lambda: self.supervisor.start_session(target, str(path)),
        )

        if self._halt_event.is_set():
            raise SwitchAborted(f"shutdown requested while starting {target}")

        with self._cond:
            self._current_target = target
            self._started_at = new_session.started_at
        logger.info(f"Now streaming {target} (switch took {time.monotonic() - started:.2f}s)")

    def _pause(self, ms: int) -> None:
        """Interruptible wait used for the safety interval and retry backoff."""
        if self._halt_event.wait(max(ms, 0) / 1000.0):
            raise SwitchAborted("shutdown requested")

    def _resume_if_quiet(self, target: str) -> bool:
        """
        Re-queue ``target`` after a crash if nothing else is pending.

        A crash that lands while a switch is running is parked and settled
        when that switch ends (see _requeue_pending_recovery).

        Returns:
            True if the target was queued
        """
        with self._cond:
            if self._current_target == target:
                self._current_target = None
                self._started_at = None
            if self._closed or self._halting:
                return False
            if self._state == SwitchState.SWITCHING or self._in_flight is not None:
                self._pending_recovery = target
                logger.info(f"Switch in progress, restart of {target} deferred until it finishes")
                return False
            if self._queue:
                return False
            self._queue.enqueue(target)
            self._cond.notify_all()
            return True

    def _requeue_pending_recovery(self) -> None:
        """Queue a parked crash restart if the stream is dead and nothing is pending. Caller holds _cond."""
        target = self._pending_recovery
        if target is None:
            return
        self._pending_recovery = None
        if self.supervisor.has_live_session():
            return
        if self._current_target == target:
            self._current_target = None
            self._started_at = None
        if self._closed or self._halting or self._queue:
            return
        logger.info(f"Crash recovery: re-queued {target} after in-flight switch")
        self._queue.enqueue(target)
        self._cond.notify_all()

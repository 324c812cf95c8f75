"""
Startup retry and crash recovery for the switch controller.

StartupRetry wraps one target's startup in a bounded retry loop with linear
backoff. CrashRecovery reacts to a confirmed session dying on its own by
re-submitting its target, unless newer work is already pending.
"""

import logging
import threading
from typing import Callable, Optional

from streamswitch.errors import StartupFailedError, SwitchFailedError

logger = logging.getLogger(__name__)


class StartupRetry:
    """
    Bounded startup retry.

    The first attempt is followed by up to ``retry_limit`` retries. Before
    retry ``n`` the loop waits ``backoff_ms * n`` through ``pause``, which
    may raise to abort the loop (e.g., SwitchAborted on shutdown).
    """

    def __init__(
        self,
        retry_limit: int,
        backoff_ms: int,
        supervisor,
        pause: Callable[[int], None],
    ) -> None:
        self.retry_limit = retry_limit
        self.backoff_ms = backoff_ms
        self._supervisor = supervisor
        self._pause = pause

    def run(self, target: str, start: Callable[[], object]):
        """
        Run ``start`` until it succeeds or attempts are exhausted.

        Args:
            target: Clip identifier (for logging and the terminal error)
            start: Zero-argument callable performing one startup attempt

        Returns:
            Whatever ``start`` returned on success

        Raises:
            SwitchFailedError: If every attempt raised StartupFailedError
        """
        attempts = self.retry_limit + 1
        last_error: Optional[StartupFailedError] = None

        for attempt in range(1, attempts + 1):
            try:
                result = start()
            except StartupFailedError as e:
                last_error = e
                logger.warning(f"Startup attempt {attempt}/{attempts} for {target} failed: {e}")
                if e.stderr_tail:
                    logger.debug(f"Encoder stderr tail for {target}:\n{e.stderr_tail}")
                # Clear any half-started residue before the next attempt
                self._supervisor.terminate_session()
                if attempt < attempts:
                    delay_ms = self.backoff_ms * attempt
                    logger.info(f"Retrying {target} in {delay_ms}ms")
                    self._pause(delay_ms)
                continue

            if attempt > 1:
                logger.info(f"{target} started on attempt {attempt}/{attempts}")
            return result

        raise SwitchFailedError(target, attempts, last_error)


class CrashRecovery:
    """Restarts the last target after an unexpected encoder exit."""

    def __init__(self, controller) -> None:
        self._controller = controller
        self._lock = threading.Lock()
        self._crash_count = 0

    @property
    def crash_count(self) -> int:
        with self._lock:
            return self._crash_count

    def handle_unexpected_exit(self, session, returncode: Optional[int]) -> None:
        """
        Crash handler installed on the process supervisor.

        Args:
            session: The ActiveSession that died
            returncode: Exit code of the encoder, if known
        """
        with self._lock:
            self._crash_count += 1
            count = self._crash_count
        logger.warning(
            f"Encoder for {session.target} exited unexpectedly "
            f"(exit code: {returncode}, crash #{count})"
        )

        if self._controller._resume_if_quiet(session.target):
            logger.info(f"Crash recovery: re-queued {session.target}")
        else:
            logger.info(f"Crash recovery: not restarting {session.target} now")

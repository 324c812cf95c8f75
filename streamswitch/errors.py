"""
Error types raised by the switch controller and its process supervisors.
"""

from typing import Optional


class SwitchError(Exception):
    """Base class for errors local to one switch request."""


class TargetNotFoundError(SwitchError):
    """The requested clip does not exist. No process action was taken."""

    def __init__(self, target: str, path: Optional[str] = None) -> None:
        self.target = target
        self.path = path
        where = f" ({path})" if path else ""
        super().__init__(f"Clip not found: {target!r}{where}")


class StartupFailedError(SwitchError):
    """
    One startup attempt did not survive its confirmation window.

    Carries the failure reason, the exit code (if the process exited) and the
    tail of the encoder's stderr for diagnostics.
    """

    def __init__(
        self,
        reason: str,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
    ) -> None:
        self.reason = reason
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = reason
        if returncode is not None:
            message += f" (exit code: {returncode})"
        super().__init__(message)


class SwitchFailedError(SwitchError):
    """All startup attempts for a target were exhausted."""

    def __init__(self, target: str, attempts: int, last_error: Optional[StartupFailedError] = None) -> None:
        self.target = target
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to start {target!r} after {attempts} attempt(s): {last_error}"
        )


class SwitchAborted(SwitchError):
    """The in-flight switch was interrupted by shutdown."""

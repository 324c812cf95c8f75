"""
Stream switcher.

Keeps an outbound RTMP stream fed from one of several clips and switches the
active clip on request, one switch at a time, through a supervised ffmpeg
encoder.
"""

from streamswitch.config import SwitcherConfig, load_config
from streamswitch.controller import SwitchController, SwitchState, SwitchStatus
from streamswitch.errors import (
    StartupFailedError,
    SwitchAborted,
    SwitchError,
    SwitchFailedError,
    TargetNotFoundError,
)
from streamswitch.switch_queue import SwitchQueue

__version__ = "0.1.0"

__all__ = [
    "StartupFailedError",
    "SwitchAborted",
    "SwitchController",
    "SwitchError",
    "SwitchFailedError",
    "SwitchQueue",
    "SwitchState",
    "SwitchStatus",
    "SwitcherConfig",
    "TargetNotFoundError",
    "load_config",
]

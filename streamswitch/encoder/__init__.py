"""
Encoder process management for the stream switcher.
"""

from streamswitch.encoder.process import EncoderProcess, ProcessPhase
from streamswitch.encoder.supervisor import (
    ActiveSession,
    PersistentPipeSupervisor,
    ProcessPerClipSupervisor,
    ProcessSupervisor,
    create_supervisor,
)

__all__ = [
    "ActiveSession",
    "EncoderProcess",
    "PersistentPipeSupervisor",
    "ProcessPerClipSupervisor",
    "ProcessPhase",
    "ProcessSupervisor",
    "create_supervisor",
]

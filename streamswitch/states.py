"""
High-level stream states and their clips.

The conversation front end reports states (welcome, idle, speaking,
processing, response); StateMapper turns them into clip identifiers and
submits them to the switch controller.
"""

import enum
import logging
from typing import Dict, Optional, Union

from streamswitch.config import DEFAULT_CLIP_MAP

logger = logging.getLogger(__name__)


class StreamState(str, enum.Enum):
    WELCOME = "welcome"
    IDLE = "idle"
    SPEAKING = "speaking"
    PROCESSING = "processing"
    RESPONSE = "response"


# "start" is what the control surface calls the welcome state
STATE_ALIASES = {"start": StreamState.WELCOME.value}


class StateMapper:
    """Maps stream states to clip identifiers."""

    def __init__(self, clip_map: Optional[Dict[str, str]] = None) -> None:
        self._clip_map = dict(clip_map if clip_map is not None else DEFAULT_CLIP_MAP)
        self.current_state: Optional[str] = None

    @staticmethod
    def normalize(state: Union[str, StreamState]) -> str:
        name = state.value if isinstance(state, StreamState) else str(state).strip().lower()
        return STATE_ALIASES.get(name, name)

    def knows(self, state: Union[str, StreamState]) -> bool:
        return self.normalize(state) in self._clip_map

    def clip_for(self, state: Union[str, StreamState]) -> str:
        """
        Look up the clip for a state.

        Raises:
            KeyError: If the state has no clip
        """
        name = self.normalize(state)
        try:
            return self._clip_map[name]
        except KeyError:
            raise KeyError(f"Unknown stream state: {name}")

    def apply(self, controller, state: Union[str, StreamState]) -> str:
        """
        Switch the controller to the clip for ``state``.

        Returns:
            The clip identifier that was requested
        """
        clip = self.clip_for(state)
        self.current_state = self.normalize(state)
        logger.info(f"State -> {self.current_state} (clip: {clip})")
        controller.request_switch(clip)
        return clip

    @property
    def states(self) -> Dict[str, str]:
        return dict(self._clip_map)

"""
Stream switcher service.

Wires configuration, process supervisor, switch controller and the HTTP
control server together, and owns their start/stop order.
"""

import logging
import threading
from typing import Optional

from streamswitch.clips import ClipLibrary
from streamswitch.config import SwitcherConfig, load_config
from streamswitch.control.server import ControlServer
from streamswitch.controller import SwitchController
from streamswitch.encoder.process import Launcher
from streamswitch.encoder.supervisor import create_supervisor
from streamswitch.states import StateMapper

logger = logging.getLogger(__name__)


class SwitcherService:
    """The running switcher: controller plus control server."""

    def __init__(self, config: Optional[SwitcherConfig] = None, launcher: Optional[Launcher] = None):
        """
        Initialize the service. Nothing is started until start().

        Args:
            config: Switcher configuration (default: load_config())
            launcher: Encoder launcher override (tests)
        """
        self.config = config or load_config()
        self._launcher = launcher
        self.clips = ClipLibrary(self.config.clip_dir)
        self.state_mapper = StateMapper(self.config.clip_map)
        self.controller: Optional[SwitchController] = None
        self.control_server: Optional[ControlServer] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Start the controller and the control server, then apply the start state."""
        logger.info("=== Stream switcher starting ===")
        logger.info(f"Output: {self.config.output_url}")
        logger.info(f"Clip directory: {self.config.clip_dir} ({len(self.clips.available())} clips)")

        supervisor = create_supervisor(self.config, self._launcher)
        self.controller = SwitchController(self.config, supervisor, clip_library=self.clips)

        self.control_server = ControlServer(
            self.config.host,
            self.config.port,
            self.controller,
            state_mapper=self.state_mapper,
        )
        self.control_server.start()

        if self.config.start_state:
            self.state_mapper.apply(self.controller, self.config.start_state)

        logger.info("=== Stream switcher started ===")

    def run_forever(self) -> None:
        """Block until stop() is called or the process is interrupted."""
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()

    def request_stop(self) -> None:
        """Ask run_forever() to return (signal-handler safe)."""
        self._stop_event.set()

    def stop(self) -> None:
        """Stop the control server, then the controller and its encoder."""
        self._stop_event.set()
        if self.control_server is not None:
            self.control_server.stop()
            self.control_server = None
        if self.controller is not None:
            self.controller.close()
            self.controller = None
        logger.info("Stream switcher stopped")

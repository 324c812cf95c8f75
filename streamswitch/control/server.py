"""
HTTP control server for the stream switcher.

Endpoints:
    GET  /status          controller status
    GET  /clips           clips available in the clip directory
    POST /stream/switch   {"target": "<clip>"}
    POST /stream/<state>  switch to the clip mapped to a stream state
    POST /stream/stop     stop streaming
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from streamswitch.states import StateMapper

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024


def make_control_handler(controller, state_mapper: StateMapper):
    """Create a ControlHandler class bound to a controller and state mapper."""

    class ControlHandler(BaseHTTPRequestHandler):
        """HTTP request handler for switcher control endpoints."""

        def do_GET(self):
            if self.path == "/status":
                self._send_json(200, controller.status().to_dict())
            elif self.path == "/clips":
                self._send_json(200, {"clips": controller.clips.available()})
            elif self.path.startswith("/stream/"):
                self._send_error_response(405, "Method Not Allowed")
            else:
                self._send_error_response(404, "Not Found")

        def do_POST(self):
            if not self.path.startswith("/stream/"):
                self._send_error_response(404, "Not Found")
                return

            action = self.path[len("/stream/"):].strip("/")
            try:
                data = self._read_json()
            except ValueError as e:
                self._send_error_response(400, str(e))
                return

            try:
                if action == "switch":
                    self._handle_switch(data)
                elif action == "stop":
                    self._handle_stop()
                else:
                    self._handle_state(action, data)
            except Exception as e:
                logger.error(f"Error handling POST {self.path}: {e}", exc_info=True)
                self._send_error_response(500, "Internal server error")

        def _handle_switch(self, data: dict) -> None:
            target = data.get("target")
            if not isinstance(target, str) or not target.strip():
                self._send_error_response(400, "Missing 'target' field")
                return
            if not controller.clips.exists(target):
                self._send_error_response(404, f"Clip not found: {target}")
                return
            controller.request_switch(target)
            self._send_json(202, {"status": "accepted", "target": target})

        def _handle_state(self, state: str, data: dict) -> None:
            if not state_mapper.knows(state):
                self._send_error_response(404, f"Unknown stream state: {state}")
                return
            clip = state_mapper.clip_for(state)
            if not controller.clips.exists(clip):
                self._send_error_response(404, f"Clip not found: {clip}")
                return
            text = data.get("text")
            if text:
                logger.info(f"[{state_mapper.normalize(state)}] {text}")
            state_mapper.apply(controller, state)
            self._send_json(202, {
                "status": "accepted",
                "state": state_mapper.normalize(state),
                "target": clip,
            })

        def _handle_stop(self) -> None:
            controller.shutdown()
            self._send_json(200, {"status": "stopped"})

        def _read_json(self) -> dict:
            content_length = int(self.headers.get("Content-Length", 0) or 0)
            if content_length == 0:
                return {}
            if content_length > MAX_BODY_BYTES:
                raise ValueError("Request body too large")
            body = self.rfile.read(content_length)
            try:
                data = json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ValueError(f"Invalid JSON: {e}")
            if not isinstance(data, dict):
                raise ValueError("Request body must be a JSON object")
            return data

        def _send_json(self, status_code: int, payload: dict) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _send_error_response(self, status_code: int, error_message: str) -> None:
            """Send error response in JSON format."""
            self._send_json(status_code, {"status": "error", "error": error_message})

        def log_message(self, format, *args):
            """Override to use our logger."""
            logger.debug(f"{self.address_string()} - {format % args}")

    return ControlHandler


class ControlServer:
    """HTTP control server running on a background thread."""

    def __init__(self, host: str, port: int, controller, state_mapper: Optional[StateMapper] = None):
        """
        Initialize control server.

        Args:
            host: Host to bind to
            port: Port to bind to (0 picks a free port)
            controller: SwitchController to drive
            state_mapper: State-to-clip mapping (default: StateMapper with the controller's clip map)
        """
        self.host = host
        self.port = port
        self.controller = controller
        self.state_mapper = state_mapper or StateMapper(controller.config.clip_map)
        self.server: Optional[ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self._shutdown = False

    def start(self) -> None:
        """Start HTTP server in a background thread."""
        if self.server is not None:
            raise RuntimeError("Server already started")

        handler_class = make_control_handler(self.controller, self.state_mapper)
        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)
        self.server.daemon_threads = True
        # Report the real port when bound to 0
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(
            target=self._run_server,
            daemon=True,
            name="ControlServer",
        )
        self.server_thread.start()

        logger.info(f"Control server listening on {self.host}:{self.port}")

    def _run_server(self):
        try:
            self.server.serve_forever()
        except Exception as e:
            if not self._shutdown:
                logger.error(f"Control server error: {e}")

    def stop(self) -> None:
        """Stop HTTP server."""
        if self.server is None:
            return

        self._shutdown = True
        self.server.shutdown()
        self.server.server_close()

        if self.server_thread:
            self.server_thread.join(timeout=2.0)

        self.server = None
        self.server_thread = None

        logger.info("Control server stopped")

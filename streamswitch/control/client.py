"""
HTTP control client for the stream switcher.

Used by the command line to talk to a running ``streamswitch serve``.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class SwitcherControlClient:
    """
    Client for the switcher's HTTP control API.

    Stateless and transport-only: every method returns the decoded JSON
    response, or None if the request failed (the failure is logged).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8010, timeout: float = 5.0):
        """
        Initialize control client.

        Args:
            host: Control server host (default: 127.0.0.1)
            port: Control server port (default: 8010)
            timeout: Request timeout in seconds
        """
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout

        # Suppress httpx INFO level request logging
        logging.getLogger("httpx").setLevel(logging.WARNING)

    def switch(self, target: str) -> Optional[Dict[str, Any]]:
        """
        Request a switch to a clip.

        Args:
            target: Clip identifier

        Returns:
            Response dict, or None if the request failed
        """
        return self._post("/stream/switch", {"target": target})

    def set_state(self, state: str, text: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Switch to the clip mapped to a stream state.

        Args:
            state: Stream state (welcome, idle, speaking, processing, response)
            text: Optional response text (logged by the server)

        Returns:
            Response dict, or None if the request failed
        """
        payload = {"text": text} if text else {}
        return self._post(f"/stream/{state}", payload)

    def stop(self) -> Optional[Dict[str, Any]]:
        return self._post("/stream/stop", {})

    def status(self) -> Optional[Dict[str, Any]]:
        return self._get("/status")

    def clips(self) -> Optional[Dict[str, Any]]:
        return self._get("/clips")

    def _get(self, path: str) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = httpx.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"GET {path} failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"GET {path} returned invalid JSON: {e}")
            return None

    def _post(self, path: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = httpx.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"POST {path} failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"POST {path} returned invalid JSON: {e}")
            return None

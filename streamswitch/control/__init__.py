"""
HTTP control surface for the stream switcher.
"""

from streamswitch.control.client import SwitcherControlClient
from streamswitch.control.server import ControlServer

__all__ = ["ControlServer", "SwitcherControlClient"]

#!/usr/bin/env python3
"""
Stream switcher entry point.

Run the service:            python3 -m streamswitch [serve]
Talk to a running service:  python3 -m streamswitch switch idle.mp4
                            python3 -m streamswitch state speaking
                            python3 -m streamswitch status
                            python3 -m streamswitch stop
"""

import argparse
import json
import logging
import logging.handlers
import os
import signal
import sys
from typing import List, Optional

from streamswitch.config import load_config
from streamswitch.control.client import SwitcherControlClient

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """Configure root logging, optionally adding a rotation-tolerant file handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    if log_file:
        handler = logging.handlers.WatchedFileHandler(log_file, mode="a")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamswitch",
        description="Switch the clip an ffmpeg encoder streams to an RTMP endpoint",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Control server host for client commands (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Control server port for client commands (default: SWITCHER_PORT or 8010)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the switcher service (default)")

    switch = sub.add_parser("switch", help="Switch to a clip")
    switch.add_argument("target", help="Clip filename in the clip directory")

    state = sub.add_parser("state", help="Switch to the clip mapped to a stream state")
    state.add_argument("name", help="welcome, idle, speaking, processing or response")
    state.add_argument("--text", default=None, help="Response text to log with the state change")

    sub.add_parser("status", help="Show switcher status")
    sub.add_parser("stop", help="Stop streaming")
    return parser


def serve() -> int:
    """Run the service until interrupted or terminated."""
    try:
        config = load_config()
    except (ValueError, FileNotFoundError) as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logging.error(f"Switcher failed to start: {e}")
        return 1

    setup_logging(config.log_level, config.log_file)

    from streamswitch.service import SwitcherService

    service = SwitcherService(config)

    def _handle_signal(signum, frame):
        logging.info(f"Received signal {signum}, shutting down")
        service.request_stop()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        service.start()
    except Exception as e:
        logging.error(f"Switcher failed to start: {e}", exc_info=True)
        service.stop()
        return 1

    service.run_forever()
    return 0


def run_client_command(args: argparse.Namespace) -> int:
    host = args.host or "127.0.0.1"
    port = args.port or int(os.getenv("SWITCHER_PORT", "8010"))
    client = SwitcherControlClient(host, port)

    if args.command == "switch":
        result = client.switch(args.target)
    elif args.command == "state":
        result = client.set_state(args.name, text=args.text)
    elif args.command == "status":
        result = client.status()
    else:
        result = client.stop()

    if result is None:
        print(f"Request to {client.base_url} failed", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command in (None, "serve"):
        return serve()
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    return run_client_command(args)


if __name__ == "__main__":
    sys.exit(main())

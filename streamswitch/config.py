"""
Configuration management for the stream switcher.

Reads configuration from .env file and environment variables with sensible defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv


# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/streamswitch/switcher.env")

STRATEGY_PROCESS = "process"
STRATEGY_PIPE = "pipe"
VALID_STRATEGIES = (STRATEGY_PROCESS, STRATEGY_PIPE)

DEFAULT_CLIP_MAP = {
    "welcome": "welcome.mp4",
    "idle": "idle.mp4",
    "speaking": "speaking.mp4",
    "processing": "idle.mp4",  # processing shares the idle clip
    "response": "speaking.mp4",
}

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("SWITCHER_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_clip_map(clip_map_str: str) -> Dict[str, str]:
    """
    Parse a state-to-clip map from a comma-separated string.

    Args:
        clip_map_str: Comma-separated ``state=clip`` pairs (e.g., "idle=idle.mp4,speaking=talk.mp4")

    Returns:
        Default clip map updated with the parsed pairs

    Raises:
        ValueError: If a pair is malformed
    """
    clip_map = dict(DEFAULT_CLIP_MAP)
    if not clip_map_str:
        return clip_map

    for pair in clip_map_str.split(","):
        pair = pair.strip()
        if not pair:
            continue
        state, sep, clip = pair.partition("=")
        state = state.strip().lower()
        clip = clip.strip()
        if not sep or not state or not clip:
            raise ValueError(f"Invalid clip map entry: {pair!r} (must be state=clip)")
        clip_map[state] = clip
    return clip_map


def _int_env(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _bool_env(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SwitcherConfig:
    """Switcher configuration loaded from .env file and environment variables."""

    # Output target
    output_url: str = "rtmp://127.0.0.1:1935/live/stream"

    # Clip sources
    clip_dir: str = "videos"
    clip_map: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CLIP_MAP))
    start_state: Optional[str] = None

    # Switching strategy
    strategy: str = STRATEGY_PROCESS

    # Switch timing
    safety_interval_ms: int = 3000
    graceful_timeout_ms: int = 7000
    spawn_confirm_ms: int = 1000
    retry_limit: int = 3
    retry_backoff_ms: int = 500
    runtime_error_limit: int = 10

    # Persistent-pipe strategy
    fifo_path: Optional[str] = None
    pipe_chunk_bytes: int = 65536

    # Encoder arguments
    ffmpeg_bin: str = "ffmpeg"
    stream_loop: bool = False
    video_size: str = "720x1280"
    frame_rate: int = 30
    video_bitrate: str = "1200k"
    gop: int = 60
    audio_bitrate: str = "128k"
    audio_rate: int = 44100
    audio_channels: int = 2
    encoder_debug: bool = False

    # Control server
    host: str = "0.0.0.0"
    port: int = 8010

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def resolved_fifo_path(self) -> str:
        """Named pipe path, defaulting to a pipe inside the clip directory."""
        if self.fifo_path:
            return self.fifo_path
        return str(Path(self.clip_dir) / "stream_fifo")

    @classmethod
    def load_config(cls) -> "SwitcherConfig":
        """
        Load configuration from environment variables.

        Returns:
            SwitcherConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        start_state = os.getenv("SWITCHER_START_STATE", "").strip().lower() or None
        fifo_path = os.getenv("SWITCHER_FIFO_PATH") or None
        log_file = os.getenv("SWITCHER_LOG_FILE") or None

        try:
            clip_map = _parse_clip_map(os.getenv("SWITCHER_CLIP_MAP", ""))
        except ValueError as e:
            raise ValueError(f"Invalid SWITCHER_CLIP_MAP: {e}")

        config = cls(
            output_url=os.getenv("SWITCHER_OUTPUT_URL", cls.output_url),
            clip_dir=os.getenv("SWITCHER_CLIP_DIR", cls.clip_dir),
            clip_map=clip_map,
            start_state=start_state,
            strategy=os.getenv("SWITCHER_STRATEGY", STRATEGY_PROCESS).strip().lower(),
            safety_interval_ms=_int_env("SWITCHER_SAFETY_INTERVAL_MS", "3000"),
            graceful_timeout_ms=_int_env("SWITCHER_GRACEFUL_TIMEOUT_MS", "7000"),
            spawn_confirm_ms=_int_env("SWITCHER_SPAWN_CONFIRM_MS", "1000"),
            retry_limit=_int_env("SWITCHER_RETRY_LIMIT", "3"),
            retry_backoff_ms=_int_env("SWITCHER_RETRY_BACKOFF_MS", "500"),
            runtime_error_limit=_int_env("SWITCHER_RUNTIME_ERROR_LIMIT", "10"),
            fifo_path=fifo_path,
            pipe_chunk_bytes=_int_env("SWITCHER_PIPE_CHUNK_BYTES", "65536"),
            ffmpeg_bin=os.getenv("SWITCHER_FFMPEG_BIN", "ffmpeg"),
            stream_loop=_bool_env("SWITCHER_STREAM_LOOP"),
            video_size=os.getenv("SWITCHER_VIDEO_SIZE", "720x1280"),
            frame_rate=_int_env("SWITCHER_FRAME_RATE", "30"),
            video_bitrate=os.getenv("SWITCHER_VIDEO_BITRATE", "1200k"),
            gop=_int_env("SWITCHER_GOP", "60"),
            audio_bitrate=os.getenv("SWITCHER_AUDIO_BITRATE", "128k"),
            audio_rate=_int_env("SWITCHER_AUDIO_RATE", "44100"),
            audio_channels=_int_env("SWITCHER_AUDIO_CHANNELS", "2"),
            encoder_debug=_bool_env("SWITCHER_ENCODER_DEBUG"),
            host=os.getenv("SWITCHER_HOST", "0.0.0.0"),
            port=_int_env("SWITCHER_PORT", "8010"),
            log_level=os.getenv("SWITCHER_LOG_LEVEL", "INFO"),
            log_file=log_file,
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.output_url:
            raise ValueError("Output URL cannot be empty")

        if self.strategy not in VALID_STRATEGIES:
            raise ValueError(
                f"Invalid SWITCHER_STRATEGY: {self.strategy} "
                f"(must be one of: {', '.join(VALID_STRATEGIES)})"
            )

        if self.safety_interval_ms < 0:
            raise ValueError(f"Invalid safety interval: {self.safety_interval_ms} (must be >= 0)")

        if self.graceful_timeout_ms <= 0:
            raise ValueError(f"Invalid graceful timeout: {self.graceful_timeout_ms} (must be > 0)")

        if self.spawn_confirm_ms <= 0:
            raise ValueError(f"Invalid spawn confirmation window: {self.spawn_confirm_ms} (must be > 0)")

        if self.retry_limit < 0:
            raise ValueError(f"Invalid retry limit: {self.retry_limit} (must be >= 0)")

        if self.retry_backoff_ms < 0:
            raise ValueError(f"Invalid retry backoff: {self.retry_backoff_ms} (must be >= 0)")

        if self.runtime_error_limit <= 0:
            raise ValueError(f"Invalid runtime error limit: {self.runtime_error_limit} (must be > 0)")

        if self.pipe_chunk_bytes <= 0:
            raise ValueError(f"Invalid pipe chunk size: {self.pipe_chunk_bytes} (must be > 0)")

        if self.frame_rate <= 0 or self.gop <= 0:
            raise ValueError("Frame rate and GOP must be positive")

        for name, bitrate in (("video", self.video_bitrate), ("audio", self.audio_bitrate)):
            if not bitrate.endswith("k"):
                raise ValueError(f"Invalid {name} bitrate format: {bitrate} (must end with 'k', e.g., '128k')")
            try:
                bitrate_value = int(bitrate[:-1])
            except ValueError:
                raise ValueError(f"Invalid {name} bitrate: {bitrate}")
            if bitrate_value <= 0:
                raise ValueError(f"Invalid {name} bitrate value: {bitrate_value}")

        if self.port < 0 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port} (must be 0-65535)")

        if self.start_state is not None and self.start_state not in self.clip_map:
            raise ValueError(
                f"Invalid SWITCHER_START_STATE: {self.start_state} "
                f"(must be one of: {', '.join(sorted(self.clip_map))})"
            )

        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )

        if self.strategy == STRATEGY_PIPE and not Path(self.clip_dir).is_dir():
            raise FileNotFoundError(
                f"SWITCHER_CLIP_DIR does not exist: {self.clip_dir}"
            )


def load_config() -> SwitcherConfig:
    """
    Load and validate switcher configuration from environment variables.

    Returns:
        SwitcherConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return SwitcherConfig.load_config()
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        raise

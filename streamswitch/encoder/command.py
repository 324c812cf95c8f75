"""
FFmpeg command construction for the stream switcher.

Both strategies share one output argument set (H.264 + AAC in FLV pushed to
the configured RTMP URL). They differ only in the input: a clip file for the
process-per-clip strategy, the named pipe for the persistent-pipe strategy.
"""

import time
from typing import List

from streamswitch.config import SwitcherConfig

# Input timestamp handling; regenerates PTS so every clip starts clean
INPUT_FLAGS = [
    "-fflags", "+genpts+discardcorrupt",
]

DEFAULT_LOGLEVEL = "warning"
DEBUG_LOGLEVEL = "debug"


def _output_args(config: SwitcherConfig) -> List[str]:
    """Encoder and container arguments shared by both strategies."""
    bufsize = f"{int(config.video_bitrate[:-1]) * 3 // 2}k"
    return [
        "-avoid_negative_ts", "make_zero",
        "-fps_mode", "cfr",
        # Video
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-tune", "zerolatency",
        "-profile:v", "baseline",
        "-level", "3.1",
        "-r", str(config.frame_rate),
        "-s", config.video_size,
        "-pix_fmt", "yuv420p",
        "-b:v", config.video_bitrate,
        "-maxrate", config.video_bitrate,
        "-bufsize", bufsize,
        "-g", str(config.gop),
        "-keyint_min", str(config.gop),
        "-x264-params", f"scenecut=0:open_gop=0:min-keyint={config.gop}:keyint={config.gop}",
        # Audio
        "-c:a", "aac",
        "-ar", str(config.audio_rate),
        "-ac", str(config.audio_channels),
        "-b:a", config.audio_bitrate,
        "-af", "aresample=async=1:min_comp=0.1:first_pts=0",
        # Container
        "-f", "flv",
        "-flvflags", "no_duration_filesize+no_sequence_end",
        "-metadata", f"streamId=switch_{int(time.time() * 1000)}",
        config.output_url,
    ]


def _head(config: SwitcherConfig) -> List[str]:
    loglevel = DEBUG_LOGLEVEL if config.encoder_debug else DEFAULT_LOGLEVEL
    return [
        config.ffmpeg_bin,
        "-hide_banner",
        "-nostdin",
        "-loglevel", loglevel,
    ]


def build_clip_command(config: SwitcherConfig, clip_path: str) -> List[str]:
    """
    Build the encoder command for one clip (process-per-clip strategy).

    Args:
        config: Switcher configuration
        clip_path: Path of the clip to stream

    Returns:
        FFmpeg argument list
    """
    cmd = _head(config)
    if config.stream_loop:
        # -stream_loop is an input option and must precede -i
        cmd += ["-stream_loop", "-1"]
    cmd += ["-re", *INPUT_FLAGS, "-i", str(clip_path)]
    cmd += _output_args(config)
    return cmd


def build_pipe_reader_command(config: SwitcherConfig, fifo_path: str) -> List[str]:
    """
    Build the long-lived encoder command reading from the named pipe.

    Args:
        config: Switcher configuration
        fifo_path: Path of the named pipe

    Returns:
        FFmpeg argument list
    """
    cmd = _head(config)
    cmd += ["-re", *INPUT_FLAGS, "-i", str(fifo_path)]
    cmd += _output_args(config)
    return cmd

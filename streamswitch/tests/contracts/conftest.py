"""
Shared pytest fixtures for stream switcher contract tests.

Clips live in a per-test temporary directory and every encoder is a fake
from test_doubles, so no ffmpeg binary or RTMP server is needed.
"""

import threading
from dataclasses import replace

import pytest

from streamswitch.config import STRATEGY_PIPE, SwitcherConfig
from streamswitch.controller import SwitchController
from streamswitch.encoder.supervisor import PersistentPipeSupervisor, ProcessPerClipSupervisor
from streamswitch.tests.contracts.test_doubles import FakeLauncher

CLIP_NAMES = ("welcome.mp4", "idle.mp4", "speaking.mp4")


@pytest.fixture
def clip_dir(tmp_path):
    """Clip directory holding small placeholder clips."""
    directory = tmp_path / "videos"
    directory.mkdir()
    for index, name in enumerate(CLIP_NAMES):
        (directory / name).write_bytes(bytes([index + 1]) * 4096)
    return directory


@pytest.fixture
def fast_config(clip_dir):
    """Configuration with millisecond-scale timings for tests."""
    return SwitcherConfig(
        output_url="rtmp://127.0.0.1:1935/live/test",
        clip_dir=str(clip_dir),
        safety_interval_ms=10,
        graceful_timeout_ms=200,
        spawn_confirm_ms=30,
        retry_limit=2,
        retry_backoff_ms=5,
        port=0,
    )


@pytest.fixture
def pipe_config(clip_dir, fast_config):
    """Persistent-pipe configuration with the pipe inside the clip directory."""
    return replace(
        fast_config,
        strategy=STRATEGY_PIPE,
        fifo_path=str(clip_dir / "test_fifo"),
        pipe_chunk_bytes=1024,
    )


@pytest.fixture
def launcher():
    """Fake encoder launcher."""
    return FakeLauncher()


@pytest.fixture
def supervisor(fast_config, launcher):
    """Process-per-clip supervisor over the fake launcher."""
    sup = ProcessPerClipSupervisor(fast_config, launcher)
    yield sup
    sup.close()


@pytest.fixture
def pipe_supervisor(pipe_config, launcher):
    """Persistent-pipe supervisor over the fake launcher (opened)."""
    sup = PersistentPipeSupervisor(pipe_config, launcher)
    sup.open()
    yield sup
    sup.close()


@pytest.fixture
def controller(fast_config, launcher):
    """Running SwitchController (worker thread on) over the fake launcher."""
    ctrl = SwitchController(fast_config, ProcessPerClipSupervisor(fast_config, launcher))
    yield ctrl
    ctrl.close()


@pytest.fixture
def manual_controller(fast_config, launcher):
    """SwitchController without a worker; tests call process_queue() themselves."""
    ctrl = SwitchController(
        fast_config,
        ProcessPerClipSupervisor(fast_config, launcher),
        autostart=False,
    )
    yield ctrl
    ctrl.close()


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """
    Optional fixture to detect thread leaks between tests.

    Request it explicitly in tests that must shut everything down.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    # Give exiting daemon threads a moment to finish
    for t in threading.enumerate():
        if t.ident not in before and t is not threading.current_thread():
            t.join(timeout=1.0)
    after = set(t.ident for t in threading.enumerate() if t.is_alive())
    leaked = after - before
    if leaked:
        leaked_threads = [t for t in threading.enumerate() if t.ident in leaked]
        thread_info = "\n".join(f"  - {t.name} (daemon={t.daemon})" for t in leaked_threads)
        assert False, f"Thread leak detected, shutdown incomplete.\nLeaked threads:\n{thread_info}"

"""
Contract tests for the process-per-clip supervisor.

Covers: single active session, confirmed start, idempotent termination,
startup failure leaves no session, crash forwarding, backend selection.
"""

from dataclasses import replace
from unittest.mock import Mock

import pytest

from streamswitch.config import STRATEGY_PIPE
from streamswitch.encoder.supervisor import (
    PersistentPipeSupervisor,
    ProcessPerClipSupervisor,
    create_supervisor,
)
from streamswitch.errors import StartupFailedError
from streamswitch.tests.contracts.test_doubles import wait_until


class TestSessionLifecycle:
    @pytest.mark.timeout(5)
    def test_start_session_registers_confirmed_session(self, supervisor, launcher, clip_dir):
        path = clip_dir / "idle.mp4"
        session = supervisor.start_session("idle.mp4", str(path))

        assert session.target == "idle.mp4"
        assert supervisor.current_session() is session
        assert supervisor.has_live_session()
        assert launcher.last.input_path == str(path)
        assert launcher.last.args[-1] == supervisor.config.output_url

    @pytest.mark.timeout(5)
    def test_second_live_session_is_refused(self, supervisor, clip_dir):
        supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        with pytest.raises(RuntimeError):
            supervisor.start_session("speaking.mp4", str(clip_dir / "speaking.mp4"))

    @pytest.mark.timeout(5)
    def test_terminate_session_stops_process_and_clears_session(self, supervisor, launcher, clip_dir):
        supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))
        fake = launcher.last

        supervisor.terminate_session()

        assert fake.returncode is not None
        assert supervisor.current_session() is None
        assert not supervisor.has_live_session()

    @pytest.mark.timeout(5)
    def test_kill_session_force_kills_without_crash_report(self, supervisor, launcher, clip_dir):
        handler = Mock()
        supervisor.set_crash_handler(handler)
        supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        supervisor.kill_session()
        supervisor.kill_session()

        assert launcher.last.kill_calls == 1
        assert launcher.last.terminate_calls == 0
        assert supervisor.current_session() is None
        assert not wait_until(lambda: handler.called, timeout=0.1)

    def test_terminate_without_session_is_noop(self, supervisor, launcher):
        supervisor.terminate_session()
        supervisor.terminate_session()
        assert launcher.launched == []

    @pytest.mark.timeout(5)
    def test_stubborn_process_is_force_killed(self, supervisor, launcher, clip_dir):
        launcher.script({"ignore_sigterm": True})
        supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        supervisor.terminate_session()

        assert launcher.last.kill_calls == 1
        assert supervisor.current_session() is None

    @pytest.mark.timeout(5)
    def test_startup_failure_leaves_no_session(self, supervisor, launcher, clip_dir):
        launcher.script({"exit_on_start": 1})

        with pytest.raises(StartupFailedError):
            supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        assert supervisor.current_session() is None
        assert launcher.running() == []


class TestCrashForwarding:
    @pytest.mark.timeout(5)
    def test_crash_is_forwarded_once_and_clears_session(self, supervisor, launcher, clip_dir):
        handler = Mock()
        supervisor.set_crash_handler(handler)
        session = supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        launcher.last.crash(1)

        assert wait_until(lambda: handler.called)
        handler.assert_called_once_with(session, 1)
        assert supervisor.current_session() is None

    @pytest.mark.timeout(5)
    def test_requested_termination_is_not_a_crash(self, supervisor, clip_dir):
        handler = Mock()
        supervisor.set_crash_handler(handler)
        supervisor.start_session("idle.mp4", str(clip_dir / "idle.mp4"))

        supervisor.terminate_session()

        assert not wait_until(lambda: handler.called, timeout=0.1)


class TestBackendSelection:
    def test_process_strategy_builds_process_per_clip_supervisor(self, fast_config):
        assert isinstance(create_supervisor(fast_config), ProcessPerClipSupervisor)

    def test_pipe_strategy_builds_persistent_pipe_supervisor(self, fast_config):
        config = replace(fast_config, strategy=STRATEGY_PIPE)
        assert isinstance(create_supervisor(config), PersistentPipeSupervisor)

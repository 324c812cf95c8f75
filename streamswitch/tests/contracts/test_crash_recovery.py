"""
Contract tests for crash recovery and startup retry.

Covers: restart of the last target after an unexpected exit, deferral to
pending work, crashes that land mid-switch, crash accounting, retry backoff
schedule and exhaustion.
"""

from unittest.mock import Mock

import pytest

from streamswitch.clips import ClipLibrary
from streamswitch.controller import SwitchController
from streamswitch.encoder.supervisor import ProcessPerClipSupervisor
from streamswitch.errors import StartupFailedError, SwitchFailedError
from streamswitch.recovery import StartupRetry
from streamswitch.tests.contracts.test_doubles import wait_until


class TestCrashRecovery:
    @pytest.mark.timeout(5)
    def test_crash_with_empty_queue_restarts_last_target(self, controller, launcher, clip_dir):
        controller.request_switch("idle.mp4")
        assert wait_until(lambda: controller.status().current_target == "idle.mp4")
        first = launcher.last

        first.crash(1)

        assert wait_until(lambda: len(launcher.launched) == 2 and controller.status().current_target == "idle.mp4")
        assert launcher.last is not first
        assert launcher.last.input_path == str(clip_dir / "idle.mp4")
        assert controller.status().crash_count == 1

    @pytest.mark.timeout(5)
    def test_crash_requeues_target_when_idle(self, manual_controller, launcher):
        manual_controller.request_switch("idle.mp4")
        manual_controller.process_queue()

        launcher.last.crash(1)

        assert wait_until(lambda: manual_controller.queue.snapshot() == ("idle.mp4",))
        assert manual_controller.status().current_target is None
        assert not manual_controller.status().is_playing

        manual_controller.process_queue()
        assert manual_controller.status().current_target == "idle.mp4"
        assert len(launcher.launched) == 2

    @pytest.mark.timeout(5)
    def test_crash_with_pending_work_defers_to_it(self, manual_controller, launcher, clip_dir):
        manual_controller.request_switch("idle.mp4")
        manual_controller.process_queue()
        manual_controller.request_switch("speaking.mp4")

        launcher.last.crash(1)

        assert wait_until(lambda: manual_controller.status().crash_count == 1)
        assert manual_controller.queue.snapshot() == ("speaking.mp4",)

        manual_controller.process_queue()
        assert manual_controller.status().current_target == "speaking.mp4"
        assert launcher.inputs() == [str(clip_dir / "idle.mp4"), str(clip_dir / "speaking.mp4")]

    @pytest.mark.timeout(5)
    def test_no_restart_after_shutdown(self, controller, launcher):
        controller.request_switch("idle.mp4")
        assert wait_until(lambda: controller.status().current_target == "idle.mp4")

        controller.shutdown()

        assert not wait_until(lambda: len(launcher.launched) > 1, timeout=0.2)
        assert controller.status().crash_count == 0



class HookedClipLibrary(ClipLibrary):
    """ClipLibrary that runs a callback before resolving each target."""

    def __init__(self, clip_dir, on_resolve):
        super().__init__(clip_dir)
        self.on_resolve = on_resolve

    def resolve(self, target):
        self.on_resolve(target)
        return super().resolve(target)


class TestCrashDuringSwitch:
    @pytest.fixture
    def crash_live_on(self, fast_config, launcher, clip_dir):
        """Build a manual controller whose live encoder crashes while ``target`` is being resolved."""
        controllers = []

        def build(target):
            def on_resolve(resolving):
                if resolving != target:
                    return
                launcher.last.crash(1)
                assert wait_until(
                    lambda: ctrl.status().crash_count == 1 and ctrl.status().current_target is None
                )

            ctrl = SwitchController(
                fast_config,
                ProcessPerClipSupervisor(fast_config, launcher),
                clip_library=HookedClipLibrary(clip_dir, on_resolve),
                autostart=False,
            )
            controllers.append(ctrl)
            return ctrl

        yield build
        for ctrl in controllers:
            ctrl.close()

    @pytest.mark.timeout(5)
    def test_crash_during_rejected_switch_restarts_crashed_target(self, crash_live_on, launcher, clip_dir):
        ctrl = crash_live_on("missing.mp4")
        ctrl.request_switch("idle.mp4")
        ctrl.process_queue()

        ctrl.request_switch("missing.mp4")
        ctrl.process_queue()

        status = ctrl.status()
        assert status.crash_count == 1
        assert status.current_target == "idle.mp4"
        assert status.is_playing
        assert status.queue_length == 0
        assert launcher.inputs() == [str(clip_dir / "idle.mp4"), str(clip_dir / "idle.mp4")]

    @pytest.mark.timeout(5)
    def test_crash_during_successful_switch_is_not_restarted(self, crash_live_on, launcher, clip_dir):
        ctrl = crash_live_on("speaking.mp4")
        ctrl.request_switch("idle.mp4")
        ctrl.process_queue()

        ctrl.request_switch("speaking.mp4")
        ctrl.process_queue()

        status = ctrl.status()
        assert status.crash_count == 1
        assert status.current_target == "speaking.mp4"
        assert ctrl.queue.snapshot() == ()
        assert launcher.inputs() == [str(clip_dir / "idle.mp4"), str(clip_dir / "speaking.mp4")]

class TestStartupRetry:
    def test_success_on_first_attempt_does_not_pause(self):
        pause = Mock()
        retry = StartupRetry(retry_limit=3, backoff_ms=500, supervisor=Mock(), pause=pause)

        assert retry.run("idle.mp4", lambda: "session") == "session"
        pause.assert_not_called()

    def test_backoff_grows_linearly_with_attempt(self):
        pause = Mock()
        supervisor = Mock()
        start = Mock(side_effect=[StartupFailedError("x"), StartupFailedError("y"), "session"])
        retry = StartupRetry(retry_limit=3, backoff_ms=500, supervisor=supervisor, pause=pause)

        assert retry.run("idle.mp4", start) == "session"
        assert [c.args[0] for c in pause.call_args_list] == [500, 1000]
        assert supervisor.terminate_session.call_count == 2

    def test_exhaustion_raises_with_last_error(self):
        last = StartupFailedError("connection refused", returncode=1)
        start = Mock(side_effect=[StartupFailedError("a"), StartupFailedError("b"), last])
        retry = StartupRetry(retry_limit=2, backoff_ms=10, supervisor=Mock(), pause=Mock())

        with pytest.raises(SwitchFailedError) as excinfo:
            retry.run("idle.mp4", start)

        assert excinfo.value.attempts == 3
        assert excinfo.value.last_error is last
        assert excinfo.value.target == "idle.mp4"

    def test_zero_retry_limit_means_single_attempt(self):
        start = Mock(side_effect=StartupFailedError("boom"))
        pause = Mock()
        retry = StartupRetry(retry_limit=0, backoff_ms=10, supervisor=Mock(), pause=pause)

        with pytest.raises(SwitchFailedError):
            retry.run("idle.mp4", start)
        assert start.call_count == 1
        pause.assert_not_called()

    def test_pause_abort_propagates(self):
        class Abort(Exception):
            pass

        start = Mock(side_effect=StartupFailedError("boom"))
        retry = StartupRetry(retry_limit=3, backoff_ms=10, supervisor=Mock(), pause=Mock(side_effect=Abort()))

        with pytest.raises(Abort):
            retry.run("idle.mp4", start)
        assert start.call_count == 1

"""
Test doubles (fakes, stubs) for stream switcher contract tests.

FakeEncoderPopen stands in for an ffmpeg subprocess.Popen: it can exit at
start, print stderr lines, ignore SIGTERM, or crash on demand. FakeLauncher
hands out scripted FakeEncoderPopen instances and records every launch.
No real ffmpeg is ever started.
"""

import itertools
import queue
import subprocess
import threading
import time
from typing import Callable, List, Optional, Sequence


class FakeStderr:
    """Blocking readline() over a queue; b'' once the process has exited."""

    def __init__(self):
        self._lines: "queue.Queue[bytes]" = queue.Queue()

    def feed(self, line: bytes) -> None:
        self._lines.put(line)

    def close(self) -> None:
        self._lines.put(b"")

    def readline(self) -> bytes:
        line = self._lines.get()
        if line == b"":
            # Keep returning EOF for any further reads
            self._lines.put(b"")
        return line


class FakeEncoderPopen:
    """Fake ffmpeg process."""

    _pids = itertools.count(40000)

    def __init__(
        self,
        cmd: List[str],
        exit_on_start: Optional[int] = None,
        stderr_lines: Sequence[str] = (),
        ignore_sigterm: bool = False,
    ):
        self.args = list(cmd)
        self.pid = next(self._pids)
        self.returncode: Optional[int] = None
        self.stderr = FakeStderr()
        self.ignore_sigterm = ignore_sigterm
        self.terminate_calls = 0
        self.kill_calls = 0
        self.exited_at: Optional[float] = None
        self._lock = threading.Lock()
        self._exited = threading.Event()

        for line in stderr_lines:
            self.emit(line)
        if exit_on_start is not None:
            self._exit(exit_on_start)

    @property
    def input_path(self) -> Optional[str]:
        if "-i" not in self.args:
            return None
        return self.args[self.args.index("-i") + 1]

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_sigterm:
            self._exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self._exit(-9)

    def crash(self, returncode: int = 1) -> None:
        """Simulate the encoder dying on its own."""
        self._exit(returncode)

    def emit(self, text: str) -> None:
        self.stderr.feed(text.encode("utf-8") + b"\n")

    def is_running(self) -> bool:
        return self.returncode is None

    def _exit(self, returncode: int) -> None:
        with self._lock:
            if self.returncode is not None:
                return
            self.returncode = returncode
            self.exited_at = time.monotonic()
        self.stderr.close()
        self._exited.set()


class FakeLauncher:
    """
    Launcher returning scripted FakeEncoderPopen instances.

    script() queues per-launch behaviours: a dict of FakeEncoderPopen keyword
    arguments, or an exception instance to raise from the launch itself.
    Launches beyond the script get a healthy process.
    """

    def __init__(self):
        self.launched: List[FakeEncoderPopen] = []
        self.commands: List[List[str]] = []
        self.launch_times: List[float] = []
        self._script: list = []
        self.peak_running = 0
        self._lock = threading.Lock()

    def script(self, *behaviours) -> None:
        with self._lock:
            self._script.extend(behaviours)

    def __call__(self, cmd: List[str]) -> FakeEncoderPopen:
        with self._lock:
            behaviour = self._script.pop(0) if self._script else {}
            self.commands.append(list(cmd))
            self.launch_times.append(time.monotonic())
        if isinstance(behaviour, Exception):
            raise behaviour
        popen = FakeEncoderPopen(cmd, **behaviour)
        with self._lock:
            self.launched.append(popen)
            running = sum(1 for p in self.launched if p.is_running())
            self.peak_running = max(self.peak_running, running)
        return popen

    @property
    def last(self) -> Optional[FakeEncoderPopen]:
        with self._lock:
            return self.launched[-1] if self.launched else None

    def running(self) -> List[FakeEncoderPopen]:
        with self._lock:
            return [p for p in self.launched if p.is_running()]

    def inputs(self) -> List[Optional[str]]:
        """Input path of every launched process, in launch order."""
        with self._lock:
            return [p.input_path for p in self.launched]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()

"""Tests for running child processes with masked output."""

import io
import subprocess
import sys
import threading
import time

import pytest

from amber import runner
from amber.errors import OutputForwardingError
from amber.runner import build_env, run_masked


def _python(code: str):
    return [sys.executable, "-c", code]


def _run(code: str, secrets, env=None, placeholder="***"):
    out, err = io.BytesIO(), io.BytesIO()
    returncode = run_masked(_python(code), env, secrets, placeholder, stdout=out, stderr=err)
    return returncode, out.getvalue(), err.getvalue()


def _in_thread(target, timeout=30):
    """Run ``target`` in a thread and return what it raised, failing if it hangs."""
    raised = []

    def wrapper():
        try:
            target()
        except BaseException as e:
            raised.append(e)

    thread = threading.Thread(target=wrapper, daemon=True)
    thread.start()
    thread.join(timeout)
    assert not thread.is_alive(), "run_masked did not return"
    return raised[0] if raised else None


class _Sink(io.BytesIO):
    """Binary sink that raises ``error`` on the first write containing ``trigger``."""

    def __init__(self, error, trigger=b""):
        super().__init__()
        self.error = error
        self.trigger = trigger

    def write(self, data):
        if self.trigger in data:
            raise self.error
        return super().write(data)


@pytest.fixture
def started(monkeypatch):
    """Child processes started by the runner."""
    procs = []

    class RecordingPopen(subprocess.Popen):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            procs.append(self)

    monkeypatch.setattr(runner.subprocess, "Popen", RecordingPopen)
    return procs


class TestBuildEnv:
    """Tests for the child environment."""

    def test_adds_pairs_to_base(self):
        env = build_env([("PASSWORD", "deadbeef")], base={"PATH": "/bin"})
        assert env == {"PATH": "/bin", "PASSWORD": "deadbeef"}

    def test_defaults_to_os_environ(self, monkeypatch):
        monkeypatch.setenv("AMBER_TEST_MARKER", "1")
        assert build_env([])["AMBER_TEST_MARKER"] == "1"


class TestRunMasked:
    """Tests for run_masked."""

    def test_masks_stdout_and_stderr(self):
        code = "import sys; print('out abcdef'); print('err abcdef', file=sys.stderr)"
        returncode, out, err = _run(code, ["abcdef"])
        assert returncode == 0
        assert out.strip() == b"out ***"
        assert err.strip() == b"err ***"

    def test_secret_from_environment(self):
        """The typical case: the child prints a variable it was given."""
        code = "import os; print('token=' + os.environ['PASSWORD'])"
        env = build_env([("PASSWORD", "deadbeef")])
        returncode, out, _ = _run(code, ["deadbeef"], env=env)
        assert returncode == 0
        assert out.strip() == b"token=***"

    def test_split_writes(self):
        """A secret written in two pieces with a pause in between is masked."""
        code = (
            "import sys, time\n"
            "sys.stdout.write('xx ab'); sys.stdout.flush()\n"
            "time.sleep(0.2)\n"
            "sys.stdout.write('cdef yy'); sys.stdout.flush()\n"
        )
        _, out, _ = _run(code, ["abcdef"])
        assert out == b"xx *** yy"

    def test_tail_flushed_on_clean_exit(self):
        code = "import sys; sys.stdout.write('ends with ab')"
        _, out, _ = _run(code, ["abcdef"])
        assert out == b"ends with ab"

    def test_exit_code_propagates(self):
        returncode, _, _ = _run("import sys; sys.exit(3)", ["abcdef"])
        assert returncode == 3

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_killed_child_discards_tail(self):
        """Bytes held back when the child dies from a signal are never written."""
        code = (
            "import os, signal, sys\n"
            "sys.stdout.write('xx abcde'); sys.stdout.flush()\n"
            "os.kill(os.getpid(), signal.SIGKILL)\n"
        )
        returncode, out, _ = _run(code, ["abcdef"])
        assert returncode < 0
        assert out == b"xx "

    def test_missing_command(self, tmp_path):
        with pytest.raises(OSError):
            run_masked([str(tmp_path / "no-such-program")], None, ["abcdef"],
                       stdout=io.BytesIO(), stderr=io.BytesIO())


class TestFailures:
    """Tests for sink failures and interrupts while the child is running."""

    def test_failing_sink_kills_child(self, started):
        """A reader that went away must not leave the child blocked on a full pipe."""
        code = "import sys; sys.stdout.buffer.write(b'x' * 2000000); sys.stdout.flush()"
        sink = _Sink(BrokenPipeError(32, "Broken pipe"))

        error = _in_thread(lambda: run_masked(_python(code), None, ["abcdef"],
                                              stdout=sink, stderr=io.BytesIO()))

        assert isinstance(error, OutputForwardingError)
        assert error.stream == "stdout"
        assert isinstance(error.error, BrokenPipeError)
        assert started[0].returncode is not None

    def test_interrupt_from_sink_discards_tail(self, started):
        """An interrupt while a partial match is held kills the child and drops the held bytes."""
        code = (
            "import sys, time\n"
            "sys.stdout.write('first\\n'); sys.stdout.flush()\n"
            "time.sleep(0.2)\n"
            "sys.stdout.write('xx abcde'); sys.stdout.flush()\n"
            "time.sleep(30)\n"
        )
        sink = _Sink(KeyboardInterrupt(), trigger=b"xx")

        error = _in_thread(lambda: run_masked(_python(code), None, ["abcdef"],
                                              stdout=sink, stderr=io.BytesIO()))

        assert isinstance(error, KeyboardInterrupt)
        assert started[0].returncode is not None
        assert b"abcde" not in sink.getvalue()

    def test_interrupt_while_waiting_discards_tail(self, started, monkeypatch):
        """Ctrl-C in the parent kills the child, reaps it and never writes the held prefix."""
        out = io.BytesIO()

        def interrupted_join(pump, timeout=None):
            deadline = time.monotonic() + 10
            while b"xx " not in out.getvalue() and time.monotonic() < deadline:
                time.sleep(0.01)
            raise KeyboardInterrupt

        monkeypatch.setattr(runner._Pump, "join", interrupted_join)
        code = (
            "import sys, time\n"
            "sys.stdout.write('xx abcde'); sys.stdout.flush()\n"
            "time.sleep(30)\n"
        )

        with pytest.raises(KeyboardInterrupt):
            run_masked(_python(code), None, ["abcdef"], stdout=out, stderr=io.BytesIO())

        assert started[0].returncode is not None
        assert out.getvalue() == b"xx "
        assert b"abcde" not in out.getvalue()

"""Run a child process with secrets in its environment."""

import logging
import os
import subprocess
import sys
import threading
from typing import Optional

from .config import DEFAULT_PLACEHOLDER
from .errors import OutputForwardingError
from .mask import StreamMasker

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def build_env(pairs, base: Optional[dict] = None) -> dict:
    """Parent environment plus the decrypted name/value pairs."""
    env = dict(os.environ if base is None else base)
    for name, value in pairs:
        logger.debug("Setting env var in child process: %s", name)
        env[name] = value
    return env


def run_unmasked(command: list[str], env: Optional[dict]) -> int:
    """Run without touching the child's output."""
    result = subprocess.run(command, env=env, shell=False)
    return result.returncode


class _Pump(threading.Thread):
    """Copy one child stream to a sink through its own masker, in arrival order.

    If reading or writing fails, ``on_error`` is called so the child does
    not block forever on a pipe nobody drains any more.
    """

    def __init__(self, source, sink, masker: StreamMasker, stream: str, on_error):
        super().__init__(name=f"amber-{stream}", daemon=True)
        self.source = source
        self.sink = sink
        self.masker = masker
        self.stream = stream
        self.on_error = on_error
        self.error = None

    def run(self):
        try:
            while True:
                chunk = self.source.read1(CHUNK_SIZE)
                if not chunk:
                    break
                self._write(self.masker.feed(chunk))
        except BaseException as e:
            self.error = e
            self.masker.discard()
            logger.debug("Forwarding %s failed, killing child process", self.stream)
            self.on_error()

    def _write(self, data: bytes):
        if data:
            self.sink.write(data)
            self.sink.flush()

    def finish(self, clean: bool):
        """Flush the held back tail after a clean exit, otherwise drop it."""
        if clean and self.error is None:
            self._write(self.masker.flush())
        else:
            self.masker.discard()


def run_masked(command: list[str], env: Optional[dict], secrets, placeholder=DEFAULT_PLACEHOLDER,
               stdout=None, stderr=None) -> int:
    """
    Run ``command`` with stdout and stderr masked.

    Each stream gets its own thread and masker and is forwarded to the
    matching binary sink (defaults: the parent's stdout/stderr). If the
    child is killed by a signal, or we are interrupted while waiting, the
    maskers' held back bytes are discarded. If a sink fails the child is
    killed and ``OutputForwardingError`` is raised.

    Returns the child's exit code (negative for a signal on POSIX).
    """
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr.buffer
    secrets = list(secrets)

    proc = subprocess.Popen(
        command,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        shell=False,
    )

    pumps = [
        _Pump(proc.stdout, stdout, StreamMasker(secrets, placeholder), "stdout", proc.kill),
        _Pump(proc.stderr, stderr, StreamMasker(secrets, placeholder), "stderr", proc.kill),
    ]
    for pump in pumps:
        pump.start()

    clean = False
    try:
        for pump in pumps:
            pump.join()
        returncode = proc.wait()
        clean = returncode >= 0
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        for pump in pumps:
            pump.finish(clean)
        proc.stdout.close()
        proc.stderr.close()

    for pump in pumps:
        if pump.error is None:
            continue
        if isinstance(pump.error, Exception):
            raise OutputForwardingError(pump.stream, pump.error) from pump.error
        raise pump.error
    if not clean:
        logger.warning("Child process died from signal %d, discarded buffered output", -returncode)
    return returncode

"""Plain-pipe fallback backend.

Used where no pseudo-console is available. The child talks to ordinary
pipes, so nothing echoes typed input back; this backend echoes it
locally instead. A ``pyte`` screen tracks cursor and screen state for
diagnostics. The raw output bytes are still forwarded verbatim, the
screen is never used for rendering.

stdout and stderr each get a reader thread. Both feed the same screen,
which is guarded by a lock.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading

import pyte

from termbridge.domain.models import PtySize
from termbridge.pty.base import (
    READ_CHUNK_SIZE,
    TERM_ENV,
    OutputCallback,
    PtyIOError,
    SpawnError,
)

logger = logging.getLogger(__name__)

CTRL_C = 0x03
CTRL_D = 0x04
CARRIAGE_RETURN = 0x0D

SCREEN_HISTORY = 1000

SHIM_ENV = {
    "TERM": TERM_ENV,
    "COLORTERM": "truecolor",
    "TERM_PROGRAM": "termbridge",
    "CLICOLOR": "1",
    "CLICOLOR_FORCE": "1",
}


def local_echo(data: bytes) -> bytes | None:
    """Bytes to echo back to the peer for an input chunk, if any.

    Single control keys get special treatment: Enter echoes as CR LF,
    Ctrl-C and Ctrl-D are not echoed. Everything else, escape
    sequences included, is echoed unchanged.
    """
    if not data:
        return None
    if len(data) == 1:
        if data[0] in (CTRL_C, CTRL_D):
            return None
        if data[0] == CARRIAGE_RETURN:
            return b"\r\n"
    return data


class PipePty:
    """A child process on plain pipes with locally tracked terminal state."""

    def __init__(self, proc: subprocess.Popen, size: PtySize) -> None:
        self._proc = proc
        self._screen = pyte.HistoryScreen(size.cols, size.rows, history=SCREEN_HISTORY)
        self._stream = pyte.ByteStream(self._screen)
        self._screen_lock = threading.Lock()
        self._on_output: OutputCallback | None = None
        self._open_streams = 0
        self._streams_lock = threading.Lock()
        self._readers: list[threading.Thread] = []

    @classmethod
    def spawn(
        cls,
        command: list[str],
        size: PtySize,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> PipePty:
        """Start ``command`` with piped stdio.

        An unusable ``cwd`` is ignored with a warning rather than
        failing the spawn.

        Raises:
            SpawnError: If the executable cannot be started.
        """
        if cwd is not None and not os.path.isdir(cwd):
            logger.warning("Working directory %s not usable, ignoring", cwd)
            cwd = None

        child_env = {**os.environ, **(env or {}), **SHIM_ENV}
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=child_env,
                bufsize=0,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SpawnError(f"Failed to start {command[0]!r}: {e}", command) from e

        logger.info(
            "Started %s on pipes (pid=%d, %dx%d)",
            " ".join(command), proc.pid, size.cols, size.rows,
        )
        return cls(proc, size)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def screen_lines(self) -> list[str]:
        """Current contents of the tracked screen."""
        with self._screen_lock:
            return list(self._screen.display)

    @property
    def cursor(self) -> tuple[int, int]:
        """Tracked cursor position as (column, row)."""
        with self._screen_lock:
            return self._screen.cursor.x, self._screen.cursor.y

    def start(self, on_output: OutputCallback) -> None:
        self._on_output = on_output
        streams = [("stdout", self._proc.stdout), ("stderr", self._proc.stderr)]
        self._open_streams = len(streams)
        for name, pipe in streams:
            reader = threading.Thread(
                target=self._read_stream,
                args=(name, pipe),
                name=f"pipe-pty-{self.pid}-{name}",
                daemon=True,
            )
            self._readers.append(reader)
            reader.start()

    def _read_stream(self, name: str, pipe) -> None:
        try:
            while True:
                try:
                    data = pipe.read(READ_CHUNK_SIZE)
                except OSError as e:
                    logger.debug("Read from %s of pid %d failed: %s", name, self.pid, e)
                    break
                if not data:
                    break
                with self._screen_lock:
                    self._stream.feed(data)
                self._on_output(data)
        finally:
            pipe.close()
            with self._streams_lock:
                self._open_streams -= 1
                finished = self._open_streams == 0
            if finished:
                self._on_output(None)

    def write(self, data: bytes) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.closed:
            raise PtyIOError("Process input is closed")
        try:
            stdin.write(data)
            stdin.flush()
        except (OSError, ValueError) as e:
            raise PtyIOError(f"Failed to write to process: {e}") from e

        echo = local_echo(data)
        if echo is not None and self._on_output is not None:
            self._on_output(echo)

    def resize(self, size: PtySize) -> None:
        # Pipes have no window size; only the tracked screen changes
        with self._screen_lock:
            self._screen.resize(lines=size.rows, columns=size.cols)

    def kill(self, force: bool = False) -> None:
        if self._proc.poll() is not None:
            return
        try:
            if force:
                self._proc.kill()
            else:
                self._proc.terminate()
        except ProcessLookupError:
            logger.debug("Process %d already gone", self.pid)
        except OSError as e:
            raise PtyIOError(f"Failed to terminate process {self.pid}: {e}") from e

    def wait(self) -> int | None:
        return self._proc.wait()

    def close(self) -> None:
        stdin = self._proc.stdin
        if stdin is not None and not stdin.closed:
            try:
                stdin.close()
            except OSError as e:
                logger.warning("Error closing stdin of pid %d: %s", self.pid, e)

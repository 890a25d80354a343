"""POSIX pseudo-terminal backend.

The child runs on the slave side of a fresh pty pair, in its own
session with the pty as controlling terminal. The parent keeps only
the master descriptor. Output is read when the event loop reports the
master readable, so the reader never blocks the loop.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios

from termbridge.domain.models import PtySize
from termbridge.pty.base import (
    READ_CHUNK_SIZE,
    TERM_ENV,
    OutputCallback,
    PtyIOError,
    SpawnError,
)

logger = logging.getLogger(__name__)


def _set_winsize(fd: int, size: PtySize) -> None:
    winsize = struct.pack("HHHH", size.rows, size.cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _claim_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the pty slave
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PosixPty:
    """A child process attached to a pseudo-terminal.

    Usage::

        backend = PosixPty.spawn(["bash"], PtySize(cols=80, rows=24))
        backend.start(on_output)
        backend.write(b"ls\\n")
        backend.kill()
        backend.close()
    """

    def __init__(self, proc: subprocess.Popen, master_fd: int) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_output: OutputCallback | None = None

    @classmethod
    def spawn(
        cls,
        command: list[str],
        size: PtySize,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> PosixPty:
        """Start ``command`` on a new pty.

        Raises:
            SpawnError: If the pty cannot be opened, the working
                directory cannot be entered or the executable cannot
                be started. Nothing is left open in that case.
        """
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Cannot open pseudo-terminal: {e}", command) from e

        child_env = {**os.environ, **(env or {})}
        child_env["TERM"] = TERM_ENV

        try:
            _set_winsize(slave_fd, size)
            proc = subprocess.Popen(
                command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=child_env,
                start_new_session=True,
                preexec_fn=_claim_controlling_tty,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to start {command[0]!r}: {e}", command) from e
        finally:
            # Parent never keeps the slave side
            os.close(slave_fd)

        logger.info(
            "Started %s on pty (pid=%d, %dx%d)",
            " ".join(command), proc.pid, size.cols, size.rows,
        )
        return cls(proc, master_fd)

    @property
    def pid(self) -> int:
        return self._proc.pid

    def start(self, on_output: OutputCallback) -> None:
        """Register the master descriptor with the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._on_output = on_output
        self._loop.add_reader(self._master_fd, self._on_readable)

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK_SIZE)
        except OSError as e:
            # EIO once the slave side is gone
            logger.debug("PTY read ended for pid %d: %s", self.pid, e)
            data = b""
        if data:
            self._on_output(data)
            return
        self._stop_reading()
        self._on_output(None)

    def _stop_reading(self) -> None:
        if self._loop is not None and self._master_fd >= 0:
            self._loop.remove_reader(self._master_fd)
        self._loop = None

    def write(self, data: bytes) -> None:
        if self._master_fd < 0:
            raise PtyIOError("PTY is closed")
        view = memoryview(data)
        try:
            while view:
                written = os.write(self._master_fd, view)
                view = view[written:]
        except OSError as e:
            raise PtyIOError(f"Failed to write to PTY: {e}") from e

    def resize(self, size: PtySize) -> None:
        if self._master_fd < 0:
            raise PtyIOError("PTY is closed")
        try:
            _set_winsize(self._master_fd, size)
        except OSError as e:
            raise PtyIOError(f"Failed to resize PTY: {e}") from e

    def kill(self, force: bool = False) -> None:
        if self._proc.poll() is not None:
            return
        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            self._proc.send_signal(sig)
        except ProcessLookupError:
            logger.debug("Process %d already gone", self.pid)
        except OSError as e:
            raise PtyIOError(f"Failed to signal process {self.pid}: {e}") from e

    def wait(self) -> int | None:
        return self._proc.wait()

    def close(self) -> None:
        """Stop reading and close the master; the child sees a hangup."""
        if self._master_fd < 0:
            return
        self._stop_reading()
        fd, self._master_fd = self._master_fd, -1
        try:
            os.close(fd)
        except OSError as e:
            logger.warning("Error closing PTY master for pid %d: %s", self.pid, e)

"""Windows pseudo-console backend.

Attaches the child to a ConPTY through ``pywinpty``, which owns the
pseudo-console handle and the named pipes bridging it. A dedicated
thread performs the blocking reads. Only importable on Windows.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading

from winpty import Backend, WinptyError
from winpty import PtyProcess as WinPtyProcess

from termbridge.domain.models import PtySize
from termbridge.pty.base import (
    READ_CHUNK_SIZE,
    TERM_ENV,
    OutputCallback,
    PtyIOError,
    SpawnError,
)

logger = logging.getLogger(__name__)


class ConPty:
    """A child process attached to a Windows pseudo-console."""

    def __init__(self, proc: WinPtyProcess) -> None:
        self._proc = proc
        self._on_output: OutputCallback | None = None
        self._reader: threading.Thread | None = None
        self._closed = False

    @classmethod
    def spawn(
        cls,
        command: list[str],
        size: PtySize,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ConPty:
        """Start ``command`` attached to a new pseudo-console.

        Raises:
            SpawnError: If the pseudo-console or the process cannot be created.
        """
        child_env = {**os.environ, **(env or {})}
        child_env["TERM"] = TERM_ENV
        try:
            proc = WinPtyProcess.spawn(
                subprocess.list2cmdline(command),
                cwd=cwd,
                env=child_env,
                dimensions=(size.rows, size.cols),
                backend=Backend.ConPTY,
            )
        except (OSError, WinptyError) as e:
            raise SpawnError(f"Failed to start {command[0]!r}: {e}", command) from e

        logger.info(
            "Started %s on pseudo-console (pid=%d, %dx%d)",
            " ".join(command), proc.pid, size.cols, size.rows,
        )
        return cls(proc)

    @property
    def pid(self) -> int:
        return self._proc.pid

    def start(self, on_output: OutputCallback) -> None:
        self._on_output = on_output
        self._reader = threading.Thread(
            target=self._read_loop, name=f"conpty-{self.pid}-reader", daemon=True
        )
        self._reader.start()

    def _read_loop(self) -> None:
        try:
            while not self._closed:
                try:
                    text = self._proc.read(READ_CHUNK_SIZE)
                except EOFError:
                    break
                except (OSError, WinptyError) as e:
                    logger.debug("Pseudo-console read for pid %d ended: %s", self.pid, e)
                    break
                if text:
                    self._on_output(text.encode("utf-8"))
        finally:
            self._on_output(None)

    def write(self, data: bytes) -> None:
        if self._closed:
            raise PtyIOError("Pseudo-console is closed")
        try:
            self._proc.write(data.decode("utf-8", errors="replace"))
        except (OSError, EOFError, WinptyError) as e:
            raise PtyIOError(f"Failed to write to pseudo-console: {e}") from e

    def resize(self, size: PtySize) -> None:
        if self._closed:
            raise PtyIOError("Pseudo-console is closed")
        try:
            self._proc.setwinsize(size.rows, size.cols)
        except (OSError, WinptyError) as e:
            raise PtyIOError(f"Failed to resize pseudo-console: {e}") from e

    def kill(self, force: bool = False) -> None:
        # TerminateProcess is already forcible
        if not self._proc.isalive():
            return
        try:
            self._proc.terminate(force=True)
        except (OSError, WinptyError) as e:
            raise PtyIOError(f"Failed to terminate process {self.pid}: {e}") from e

    def wait(self) -> int | None:
        return self._proc.wait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._proc.close(force=True)
        except (OSError, WinptyError) as e:
            logger.warning("Error closing pseudo-console for pid %d: %s", self.pid, e)

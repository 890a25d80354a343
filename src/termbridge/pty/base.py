"""Capability interface shared by the pseudo-terminal backends.

Each platform strategy (POSIX pty, Windows ConPTY, plain-pipe shim)
provides the same small set of operations. Backends are plain classes
satisfying the ``PtyBackend`` protocol; the strategy is picked at
runtime by ``termbridge.pty.process.spawn_pty``.

Blocking calls (``write``, ``wait``) are issued from worker threads by
``PtyProcess``, never from the event loop.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional, Protocol

from termbridge.domain.models import PtySize

logger = logging.getLogger(__name__)

# Largest chunk forwarded from the terminal in one piece
READ_CHUNK_SIZE = 8192

TERM_ENV = "xterm-256color"

# Receives each output chunk, then None once at end of stream.
# May be called from any thread.
OutputCallback = Callable[[Optional[bytes]], None]


class PtyStrategy(str, enum.Enum):
    """How the child process gets its terminal."""

    AUTO = "auto"
    POSIX = "posix"  # forkpty-style pseudo-terminal
    CONPTY = "conpty"  # Windows pseudo-console
    PIPE = "pipe"  # plain pipes with a local terminal-state shim


class PtyBackend(Protocol):
    """Operations every backend implements."""

    @property
    def pid(self) -> int: ...

    def start(self, on_output: OutputCallback) -> None:
        """Begin forwarding output to ``on_output``."""
        ...

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the child's input. Blocking."""
        ...

    def resize(self, size: PtySize) -> None: ...

    def kill(self, force: bool = False) -> None:
        """Terminate the child. Must tolerate an already-exited child."""
        ...

    def wait(self) -> int | None:
        """Block until the child exits and return its exit status."""
        ...

    def close(self) -> None:
        """Release the terminal resource. Safe to call more than once."""
        ...


class SpawnError(Exception):
    """Raised when the child process or its terminal cannot be created."""

    def __init__(self, message: str, command: list[str] | None = None) -> None:
        super().__init__(message)
        self.command = command or []


class PtyIOError(Exception):
    """Raised when reading, writing, resizing or signalling the terminal fails."""

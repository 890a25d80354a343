"""Pseudo-terminal process management for termbridge.

Spawns a child process on a terminal and exposes its output as an
ordered stream of byte chunks, with fire-and-forget input, resize and
termination, uniformly across POSIX and Windows.

Public API:
    spawn_pty -- Start a command on a terminal, returning a PtyProcess
    PtyProcess -- Handle owning the child, its terminal and I/O bridges
    PtyStrategy -- Backend selection (auto, posix, conpty, pipe)
    SpawnError -- Raised when nothing could be started
    PtyIOError -- Raised when terminal I/O or control fails
"""

from termbridge.pty.base import PtyBackend, PtyIOError, PtyStrategy, SpawnError
from termbridge.pty.process import PtyProcess, resolve_strategy, spawn_pty

__all__ = [
    "PtyBackend",
    "PtyIOError",
    "PtyProcess",
    "PtyStrategy",
    "SpawnError",
    "resolve_strategy",
    "spawn_pty",
]

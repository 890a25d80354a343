"""Platform-independent handle on a spawned terminal process.

``PtyProcess`` owns exactly one backend together with the channels
bridging it to asyncio:

* an unbounded output queue fed by the backend's reader, terminated by
  a ``None`` end-of-stream marker;
* a bounded input queue drained by a writer task that performs the
  blocking writes in a worker thread;
* a reaper thread that waits for the child so it never lingers as a
  zombie.

Release is guaranteed through ``aclose()``, which the async context
manager calls on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Callable

from termbridge.domain.models import PtySize
from termbridge.pty.base import PtyBackend, PtyIOError, PtyStrategy, SpawnError

logger = logging.getLogger(__name__)

DEFAULT_INPUT_QUEUE_SIZE = 1024

# Seconds to wait for the child after SIGTERM before escalating
DEFAULT_KILL_GRACE = 1.0

# First Windows 10 build shipping the pseudo-console API
CONPTY_MIN_BUILD = 17763

BackendFactory = Callable[..., PtyBackend]


def conpty_available() -> bool:
    if sys.platform != "win32":
        return False
    return sys.getwindowsversion().build >= CONPTY_MIN_BUILD


def resolve_strategy(strategy: PtyStrategy = PtyStrategy.AUTO) -> PtyStrategy:
    """Pick the concrete strategy for this platform."""
    if strategy is not PtyStrategy.AUTO:
        return strategy
    if sys.platform != "win32":
        return PtyStrategy.POSIX
    return PtyStrategy.CONPTY if conpty_available() else PtyStrategy.PIPE


def backend_factory(strategy: PtyStrategy) -> BackendFactory:
    """Return the ``spawn`` callable implementing ``strategy``."""
    strategy = resolve_strategy(strategy)
    if strategy is PtyStrategy.POSIX:
        from termbridge.pty.posix import PosixPty
        return PosixPty.spawn
    if strategy is PtyStrategy.CONPTY:
        from termbridge.pty.conpty import ConPty
        return ConPty.spawn
    from termbridge.pty.pipe import PipePty
    return PipePty.spawn


class PtyProcess:
    """A running child process and its terminal.

    Usage::

        async with await spawn_pty(["bash"], PtySize()) as proc:
            proc.write(b"echo hi\\n")
            chunk = await proc.read()
    """

    def __init__(
        self,
        backend: PtyBackend,
        size: PtySize,
        input_queue_size: int = DEFAULT_INPUT_QUEUE_SIZE,
        kill_grace: float = DEFAULT_KILL_GRACE,
    ) -> None:
        self._backend = backend
        self._size = size
        self._kill_grace = kill_grace
        self._output: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._input: asyncio.Queue[bytes] = asyncio.Queue(maxsize=input_queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._pending_write: asyncio.Future[None] | None = None
        self._exited = asyncio.Event()
        self._returncode: int | None = None
        self._eof = False
        self._write_failed = False
        self._closed = False

    @property
    def pid(self) -> int:
        return self._backend.pid

    @property
    def size(self) -> PtySize:
        return self._size

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def has_exited(self) -> bool:
        return self._exited.is_set()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def backend(self) -> PtyBackend:
        return self._backend

    async def start(self) -> None:
        """Start the output bridge, the writer task and the reaper."""
        self._loop = asyncio.get_running_loop()
        self._backend.start(self._on_output)
        self._writer_task = asyncio.create_task(
            self._write_loop(), name=f"pty-writer-{self.pid}"
        )
        threading.Thread(
            target=self._reap, name=f"pty-reaper-{self.pid}", daemon=True
        ).start()

    # -- output -------------------------------------------------------------

    def _on_output(self, chunk: bytes | None) -> None:
        # Called from the loop thread or from backend reader threads
        try:
            self._loop.call_soon_threadsafe(self._output.put_nowait, chunk)
        except RuntimeError:
            logger.debug("Event loop closed, dropping output for pid %d", self.pid)

    async def read(self) -> bytes | None:
        """Next output chunk in production order, or None at end of stream."""
        if self._eof:
            return None
        chunk = await self._output.get()
        if chunk is None:
            self._eof = True
        return chunk

    # -- input --------------------------------------------------------------

    def write(self, data: bytes) -> None:
        """Queue ``data`` for the child without waiting for the write.

        Raises:
            PtyIOError: If the process is closed, the writer has failed,
                or the input queue is full (the data is dropped).
        """
        if self._closed or self._write_failed:
            raise PtyIOError(f"PTY for pid {self.pid} is not writable")
        try:
            self._input.put_nowait(data)
        except asyncio.QueueFull:
            raise PtyIOError(
                f"Input queue full for pid {self.pid}, dropped {len(data)} bytes"
            ) from None

    async def _write_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            data = await self._input.get()
            self._pending_write = loop.run_in_executor(None, self._backend.write, data)
            try:
                # Shielded so aclose() can still wait for a write in progress
                await asyncio.shield(self._pending_write)
            except PtyIOError as e:
                logger.error("Writer for pid %d stopped: %s", self.pid, e)
                self._write_failed = True
                return

    # -- control ------------------------------------------------------------

    async def resize(self, size: PtySize) -> None:
        """Apply a new window size.

        Raises:
            PtyIOError: If the terminal rejects the size.
        """
        if self._closed:
            raise PtyIOError(f"PTY for pid {self.pid} is closed")
        self._backend.resize(size)
        self._size = size
        logger.debug("Resized pid %d to %dx%d", self.pid, size.cols, size.rows)

    def kill(self, force: bool = False) -> None:
        """Signal the child to terminate. Errors are logged, not raised."""
        if self._exited.is_set():
            return
        try:
            self._backend.kill(force=force)
        except PtyIOError as e:
            logger.warning("Failed to kill pid %d: %s", self.pid, e)

    def _reap(self) -> None:
        try:
            code = self._backend.wait()
        except OSError as e:
            logger.warning("Waiting for pid %d failed: %s", self.pid, e)
            code = None
        try:
            self._loop.call_soon_threadsafe(self._mark_exited, code)
        except RuntimeError:
            logger.debug("Event loop closed before pid %d was reaped", self.pid)

    def _mark_exited(self, code: int | None) -> None:
        self._returncode = code
        self._exited.set()
        logger.info("Process %d exited (code=%s)", self.pid, code)

    async def wait(self) -> int | None:
        """Wait for the child to exit and return its exit status."""
        await self._exited.wait()
        return self._returncode

    async def aclose(self) -> None:
        """Kill the child and release the terminal. Idempotent."""
        if self._closed:
            return
        self._closed = True

        self.kill()
        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
        await self._finish_pending_write()
        self._backend.close()

        if self._loop is None:
            return
        if not await self._wait_exited(self._kill_grace):
            logger.warning("Process %d ignored SIGTERM, killing", self.pid)
            self.kill(force=True)
            if not await self._wait_exited(self._kill_grace):
                logger.warning("Process %d still running after kill", self.pid)

    async def _finish_pending_write(self) -> None:
        # The terminal must stay open while a worker thread is writing to it
        pending = self._pending_write
        if pending is None:
            return
        if not pending.done():
            done, _ = await asyncio.wait({pending}, timeout=self._kill_grace)
            if not done:
                logger.warning("Write to pid %d still blocked, killing", self.pid)
                self.kill(force=True)
                await asyncio.wait({pending}, timeout=self._kill_grace)
        if pending.done() and not pending.cancelled() and pending.exception() is not None:
            logger.debug("Last write to pid %d failed: %s", self.pid, pending.exception())

    async def _wait_exited(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._exited.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def __aenter__(self) -> PtyProcess:
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        await self.aclose()


async def spawn_pty(
    command: list[str],
    size: PtySize,
    cwd: str | None = None,
    strategy: PtyStrategy = PtyStrategy.AUTO,
    input_queue_size: int = DEFAULT_INPUT_QUEUE_SIZE,
    env: dict[str, str] | None = None,
) -> PtyProcess:
    """Spawn ``command`` on a terminal and start bridging its I/O.

    Raises:
        SpawnError: If nothing could be started. No process or terminal
            resource is left behind.
    """
    if not command:
        raise SpawnError("No command given")

    factory = backend_factory(strategy)
    loop = asyncio.get_running_loop()
    spawning = loop.run_in_executor(None, factory, command, size, cwd, env)
    try:
        backend = await asyncio.shield(spawning)
    except asyncio.CancelledError:
        # The worker thread still creates the child; release it once it exists
        spawning.add_done_callback(_discard_spawned)
        raise

    process = PtyProcess(backend, size, input_queue_size=input_queue_size)
    try:
        await process.start()
    except BaseException:
        _release_backend(backend)
        raise
    return process


def _release_backend(backend: PtyBackend) -> None:
    """Force-kill and close a backend that never became a PtyProcess."""
    try:
        backend.kill(force=True)
    except PtyIOError as e:
        logger.warning("Failed to kill pid %d: %s", backend.pid, e)
    backend.close()
    threading.Thread(
        target=backend.wait, name=f"pty-reaper-{backend.pid}", daemon=True
    ).start()


def _discard_spawned(spawning: asyncio.Future) -> None:
    if spawning.cancelled() or spawning.exception() is not None:
        return
    backend = spawning.result()
    logger.info("Spawn of pid %d was cancelled, releasing it", backend.pid)
    _release_backend(backend)

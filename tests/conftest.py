"""Shared test fixtures for the termbridge test suite.

Provides in-memory stand-ins for the two ends of a session: a peer that
records what it is sent, and a terminal process whose output is fed by
the test.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import pytest

from termbridge.domain.models import PtySize
from termbridge.pty.base import PtyIOError
from termbridge.session.peer import TransportError


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakePeer:
    """A peer whose incoming frames are queued by the test."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.sent: list[bytes] = []
        self.close_calls = 0
        self.fail_send = False

    def feed(self, *frames: bytes) -> None:
        for frame in frames:
            self.incoming.put_nowait(frame)

    def disconnect(self) -> None:
        self.incoming.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    @property
    def outputs(self) -> list[bytes]:
        """Payloads of the Output frames sent so far."""
        return [frame[1:] for frame in self.sent if frame[:1] == b"0"]

    async def send(self, frame: bytes) -> None:
        if self.fail_send or self.closed:
            raise TransportError("peer went away")
        self.sent.append(frame)

    async def receive(self) -> bytes | None:
        return await self.incoming.get()

    async def close(self) -> None:
        self.close_calls += 1


class FakeProcess:
    """Stands in for PtyProcess: records input, output comes from the test."""

    def __init__(self, size: PtySize, output: list[bytes | None] | None = None,
                 echo: bool = False) -> None:
        self.pid = 4242
        self.size = size
        self.echo = echo
        self.output: asyncio.Queue[bytes | None] = asyncio.Queue()
        for chunk in output or []:
            self.output.put_nowait(chunk)
        self.written: list[bytes] = []
        self.resizes: list[PtySize] = []
        self.aclose_calls = 0
        self.write_error: PtyIOError | None = None

    def emit(self, chunk: bytes) -> None:
        self.output.put_nowait(chunk)

    def exit(self) -> None:
        self.output.put_nowait(None)

    async def read(self) -> bytes | None:
        return await self.output.get()

    def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(data)
        if self.echo:
            self.output.put_nowait(data)

    async def resize(self, size: PtySize) -> None:
        self.resizes.append(size)
        self.size = size

    async def aclose(self) -> None:
        self.aclose_calls += 1


class FakeSpawner:
    """Async spawn function recording its calls and returning FakeProcess."""

    def __init__(self, output: list[bytes | None] | None = None, echo: bool = False) -> None:
        self.calls: list[tuple[list[str], PtySize, dict]] = []
        self.processes: list[FakeProcess] = []
        self.error: Exception | None = None
        self._output = output
        self._echo = echo

    @property
    def process(self) -> FakeProcess | None:
        return self.processes[-1] if self.processes else None

    async def __call__(self, command: list[str], size: PtySize, **kwargs) -> FakeProcess:
        self.calls.append((list(command), size, kwargs))
        if self.error is not None:
            raise self.error
        process = FakeProcess(size, output=self._output, echo=self._echo)
        self.processes.append(process)
        return process


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def peer() -> FakePeer:
    return FakePeer()


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def spawner_factory() -> Callable[..., FakeSpawner]:
    """Build spawners with preloaded output or echoing processes."""
    return FakeSpawner


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a condition from async tests, failing after a timeout."""

    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met within %.1fs" % timeout)
            await asyncio.sleep(0.005)

    return _wait_until

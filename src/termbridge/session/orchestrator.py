"""Per-connection session: state machine and concurrency loop.

One ``Session`` bridges one peer to at most one terminal process::

    CONNECTING -> AWAITING_INIT -> ACTIVE <-> PAUSED -> CLOSING -> CLOSED

A single task waits on whichever completes first: the next frame from
the peer, or (only while ACTIVE) the next output chunk from the
terminal. Output produced while PAUSED stays queued in the process's
output channel and is delivered, in order, after resume.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import socket
from typing import Awaitable, Callable

from termbridge.domain.models import (
    ClientMessage,
    InitMessage,
    InputMessage,
    MouseClickMessage,
    MouseDragMessage,
    OutputMessage,
    PauseMessage,
    PtySize,
    ResizeMessage,
    ResumeMessage,
    ServerMessage,
    SessionState,
    SetPreferencesMessage,
    SetWindowTitleMessage,
)
from termbridge.protocol.codec import (
    ProtocolError,
    ProtocolVariant,
    encode_server_message,
    parse_client_frame,
)
from termbridge.protocol.mouse import mouse_report_for
from termbridge.pty.base import PtyIOError, PtyStrategy, SpawnError
from termbridge.pty.process import DEFAULT_INPUT_QUEUE_SIZE, PtyProcess, spawn_pty
from termbridge.session.peer import Peer, TransportError

logger = logging.getLogger(__name__)

SpawnFunc = Callable[..., Awaitable[PtyProcess]]


class AuthError(Exception):
    """Raised when the peer's credential is missing or wrong."""


def default_window_title(command: list[str]) -> str:
    try:
        hostname = socket.gethostname() or "localhost"
    except OSError:
        hostname = "localhost"
    return f"{' '.join(command)} ({hostname})"


class Session:
    """Owns one peer connection and the terminal process it drives.

    ``run()`` never raises for session-level failures: authentication,
    spawn and transport errors end the session, protocol errors only
    drop the offending frame. Whatever the exit path, the terminal
    process is killed exactly once and the state ends as CLOSED.
    """

    def __init__(
        self,
        peer: Peer,
        command: list[str],
        cwd: str | None = None,
        credential: str | None = None,
        writable: bool = False,
        variant: ProtocolVariant = ProtocolVariant.PLAIN,
        title: str | None = None,
        preferences: str = "{}",
        strategy: PtyStrategy = PtyStrategy.AUTO,
        input_queue_size: int = DEFAULT_INPUT_QUEUE_SIZE,
        spawn: SpawnFunc = spawn_pty,
    ) -> None:
        self._peer = peer
        self._command = list(command)
        self._cwd = cwd
        self._credential = credential
        self._writable = writable
        self._variant = variant
        self._title = title or default_window_title(self._command)
        self._preferences = preferences
        self._strategy = strategy
        self._input_queue_size = input_queue_size
        self._spawn = spawn

        self._state = SessionState.CONNECTING
        self._authenticated = credential is None
        self._process: PtyProcess | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def paused(self) -> bool:
        return self._state is SessionState.PAUSED

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def process(self) -> PtyProcess | None:
        return self._process

    async def run(self) -> None:
        """Drive the session until the peer leaves or a fatal error occurs."""
        logger.info("Session started")
        try:
            await self._send_startup()
            self._state = SessionState.AWAITING_INIT
            await self._serve()
        except AuthError as e:
            logger.warning("Closing session: %s", e)
        except SpawnError as e:
            logger.error("Failed to spawn %s: %s", " ".join(self._command), e)
        except TransportError as e:
            logger.error("Peer connection failed: %s", e)
        finally:
            self._state = SessionState.CLOSING
            await self._teardown()
            self._state = SessionState.CLOSED
            logger.info("Session closed")

    async def _send_startup(self) -> None:
        await self._send(SetWindowTitleMessage(title=self._title))
        await self._send(SetPreferencesMessage(preferences=self._preferences))

    async def _send(self, message: ServerMessage) -> None:
        await self._peer.send(encode_server_message(message))

    async def _serve(self) -> None:
        recv_task: asyncio.Task[bytes | None] | None = None
        out_task: asyncio.Task[bytes | None] | None = None
        try:
            while True:
                if recv_task is None:
                    recv_task = asyncio.create_task(self._peer.receive())
                if out_task is None and self._process is not None:
                    out_task = asyncio.create_task(self._process.read())

                waiters: set[asyncio.Task] = {recv_task}
                if out_task is not None and self._state is SessionState.ACTIVE:
                    waiters.add(out_task)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                if out_task in done:
                    chunk = out_task.result()
                    out_task = None
                    if chunk is None:
                        logger.info("Terminal output ended, closing session")
                        return
                    await self._send(OutputMessage(data=chunk))
                    logger.debug("Sent %d bytes of output", len(chunk))

                if recv_task in done:
                    frame = recv_task.result()
                    recv_task = None
                    if frame is None:
                        logger.info("Peer closed the connection")
                        return
                    await self._handle_frame(frame)
        finally:
            for task in (recv_task, out_task):
                if task is not None and not task.done():
                    task.cancel()
            pending = [t for t in (recv_task, out_task) if t is not None]
            await asyncio.gather(*pending, return_exceptions=True)

    async def _handle_frame(self, frame: bytes) -> None:
        try:
            message = parse_client_frame(frame, self._variant)
        except ProtocolError as e:
            logger.warning("Dropping client frame: %s", e)
            return

        if isinstance(message, InitMessage):
            await self._handle_init(message)
            return
        if self._process is None:
            logger.warning("Ignoring %s frame received before Init", message.kind)
            return
        await self._dispatch(message)

    async def _handle_init(self, message: InitMessage) -> None:
        if self._process is not None:
            logger.warning("Ignoring repeated Init frame")
            return
        logger.info("Received Init: cols=%d, rows=%d", message.columns, message.rows)

        self._authenticate(message.auth_token)
        size = PtySize.from_request(message.columns, message.rows)

        logger.info("Spawning %s at %dx%d", " ".join(self._command), size.cols, size.rows)
        self._process = await self._spawn(
            self._command,
            size,
            cwd=self._cwd,
            strategy=self._strategy,
            input_queue_size=self._input_queue_size,
        )
        self._state = SessionState.ACTIVE
        logger.info("Terminal process started (pid=%d)", self._process.pid)

    def _authenticate(self, token: str | None) -> None:
        if self._credential is None:
            return
        if token is None:
            raise AuthError("No auth token provided")
        if not hmac.compare_digest(token.encode("utf-8"), self._credential.encode("utf-8")):
            raise AuthError("Authentication failed")
        self._authenticated = True

    async def _dispatch(self, message: ClientMessage) -> None:
        if isinstance(message, InputMessage):
            if not self._writable:
                logger.debug("Read-only session, ignoring input")
                return
            self._write(message.data.encode("utf-8"))
        elif isinstance(message, (MouseClickMessage, MouseDragMessage)):
            if not self._writable:
                logger.debug("Read-only session, ignoring mouse event")
                return
            self._write(mouse_report_for(message))
        elif isinstance(message, ResizeMessage):
            await self._resize(message.columns, message.rows)
        elif isinstance(message, PauseMessage):
            if self._state is SessionState.ACTIVE:
                self._state = SessionState.PAUSED
                logger.debug("Output paused")
        elif isinstance(message, ResumeMessage):
            if self._state is SessionState.PAUSED:
                self._state = SessionState.ACTIVE
                logger.debug("Output resumed")

    def _write(self, data: bytes) -> None:
        try:
            self._process.write(data)
        except PtyIOError as e:
            logger.warning("Dropping input: %s", e)

    async def _resize(self, cols: int, rows: int) -> None:
        if cols == 0 or rows == 0:
            logger.warning("Ignoring resize to %dx%d", cols, rows)
            return
        try:
            await self._process.resize(PtySize(cols=cols, rows=rows))
        except PtyIOError as e:
            logger.error("Failed to resize terminal: %s", e)

    async def _teardown(self) -> None:
        if self._process is not None:
            logger.info("Killing terminal process %d", self._process.pid)
            await self._process.aclose()
        try:
            await self._peer.close()
        except TransportError as e:
            logger.debug("Error closing peer: %s", e)

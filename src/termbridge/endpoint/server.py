"""FastAPI application serving terminal sessions over WebSocket.

    GET  /health -> {"status": "ok", "active_sessions": 1, ...}
    GET  /token  -> {"token": ""}
    WS   /ws     one Session per accepted connection

Admission (max clients, serve-once, origin check) is decided here,
before the session starts.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable
from urllib.parse import urlparse

from fastapi import FastAPI, WebSocket, status
from pydantic import BaseModel

from termbridge.config.settings import Settings
from termbridge.endpoint.peer import WebSocketPeer
from termbridge.pty.process import spawn_pty
from termbridge.session.orchestrator import Session, SpawnFunc

logger = logging.getLogger(__name__)

# Subprotocol spoken by ttyd-compatible browser clients
TTY_SUBPROTOCOL = "tty"


class HealthResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = 0
    sessions_served: int = 0
    writable: bool = False


class TokenResponse(BaseModel):
    token: str = ""


def _origin_matches(websocket: WebSocket) -> bool:
    origin = websocket.headers.get("origin")
    if not origin:
        return True
    return urlparse(origin).netloc.lower() == websocket.headers.get("host", "").lower()


def create_app(
    settings: Settings | None = None,
    spawn: SpawnFunc = spawn_pty,
    on_finished: Callable[[], None] | None = None,
) -> FastAPI:
    """Create the terminal-sharing application.

    Args:
        settings: Full configuration; defaults are used if None.
        spawn: Process spawner handed to each session (for testing).
        on_finished: Called once the single session of a ``once``
            server has ended, typically to stop the ASGI server.
    """
    settings = settings or Settings()
    server_cfg = settings.server
    terminal_cfg = settings.terminal

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Serving %s (writable=%s, mouse=%s)",
            " ".join(terminal_cfg.command), terminal_cfg.writable, terminal_cfg.mouse,
        )
        yield
        logger.info("Endpoint stopped with %d active sessions", len(app.state.sessions))

    app = FastAPI(
        title="termbridge",
        description="Share a terminal over WebSocket",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = set()
    app.state.sessions_served = 0

    def _rejection_reason(websocket: WebSocket) -> str | None:
        if server_cfg.check_origin and not _origin_matches(websocket):
            return f"origin {websocket.headers.get('origin')!r} not allowed"
        if server_cfg.once and app.state.sessions_served > 0:
            return "already served the single allowed client"
        if server_cfg.max_clients and len(app.state.sessions) >= server_cfg.max_clients:
            return f"client limit {server_cfg.max_clients} reached"
        return None

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(
            active_sessions=len(app.state.sessions),
            sessions_served=app.state.sessions_served,
            writable=terminal_cfg.writable,
        )

    @app.get("/token")
    async def get_token() -> TokenResponse:
        return TokenResponse()

    @app.websocket("/ws")
    async def terminal_socket(websocket: WebSocket) -> None:
        client = websocket.client.host if websocket.client else "unknown"
        reason = _rejection_reason(websocket)
        if reason is not None:
            logger.warning("Rejecting connection from %s: %s", client, reason)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        session = Session(
            WebSocketPeer(websocket),
            command=terminal_cfg.command,
            cwd=terminal_cfg.cwd,
            credential=terminal_cfg.credential_value,
            writable=terminal_cfg.writable,
            variant=terminal_cfg.protocol_variant,
            title=terminal_cfg.title,
            preferences=terminal_cfg.preferences_json,
            strategy=terminal_cfg.pty_strategy,
            input_queue_size=terminal_cfg.input_queue_size,
            spawn=spawn,
        )
        # The slot is taken before the first await
        app.state.sessions.add(session)
        app.state.sessions_served += 1
        try:
            requested = websocket.scope.get("subprotocols", [])
            subprotocol = TTY_SUBPROTOCOL if TTY_SUBPROTOCOL in requested else None
            await websocket.accept(subprotocol=subprotocol)
            logger.info("Accepted connection from %s", client)
            await session.run()
        finally:
            app.state.sessions.discard(session)
            logger.info("Connection from %s finished", client)
            if server_cfg.once and on_finished is not None:
                on_finished()

    return app

"""Adapts a FastAPI/Starlette WebSocket to the session's Peer interface.

Only binary messages carry protocol frames; text messages are ignored.
"""

from __future__ import annotations

import logging

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from termbridge.session.peer import TransportError

logger = logging.getLogger(__name__)


class WebSocketPeer:
    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, frame: bytes) -> None:
        if self._closed:
            raise TransportError("WebSocket is closed")
        try:
            await self._ws.send_bytes(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise TransportError(f"Failed to send frame: {e}") from e

    async def receive(self) -> bytes | None:
        while True:
            try:
                message = await self._ws.receive()
            except (RuntimeError, OSError) as e:
                self._closed = True
                raise TransportError(f"Failed to receive frame: {e}") from e

            if message["type"] == "websocket.disconnect":
                self._closed = True
                logger.debug("WebSocket disconnected (code=%s)", message.get("code"))
                return None

            data = message.get("bytes")
            if data is not None:
                return data
            logger.debug("Ignoring non-binary WebSocket message")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws.application_state is not WebSocketState.CONNECTED:
            return
        try:
            await self._ws.close()
        except (RuntimeError, OSError) as e:
            raise TransportError(f"Failed to close WebSocket: {e}") from e

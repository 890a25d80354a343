"""Interface the session needs from its transport.

A peer delivers one ordered stream of frames in each direction. The
connection acceptor provides the concrete implementation; see
``termbridge.endpoint.peer.WebSocketPeer``.
"""

from __future__ import annotations

from typing import Protocol


class Peer(Protocol):
    async def send(self, frame: bytes) -> None:
        """Deliver one frame.

        Raises:
            TransportError: If the connection is gone.
        """
        ...

    async def receive(self) -> bytes | None:
        """Next frame from the remote side, or None once it has closed.

        Raises:
            TransportError: If the connection failed.
        """
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class TransportError(Exception):
    """Raised when the peer connection fails."""

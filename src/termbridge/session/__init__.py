"""Session orchestration for termbridge.

Public API:
    Session -- Bridges one peer connection to one terminal process
    Peer -- Transport interface a session consumes
    AuthError -- Credential missing or wrong
    TransportError -- Peer connection failure
"""

from termbridge.session.orchestrator import AuthError, Session
from termbridge.session.peer import Peer, TransportError

__all__ = ["AuthError", "Peer", "Session", "TransportError"]

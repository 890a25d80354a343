"""Wire protocol for termbridge.

Parses tagged frames from the peer into typed commands and serializes
server events back into frames.

Public API:
    parse_client_frame -- Decode a peer frame into a ClientMessage
    encode_server_message -- Encode a ServerMessage into a frame
    ProtocolVariant -- Plain or mouse-reporting command set
    ProtocolError -- Raised for undecodable frames
"""

from termbridge.protocol.codec import (
    ProtocolError,
    ProtocolVariant,
    encode_client_message,
    encode_server_message,
    parse_client_frame,
    parse_server_frame,
)
from termbridge.protocol.mouse import mouse_report_for

__all__ = [
    "ProtocolError",
    "ProtocolVariant",
    "encode_client_message",
    "encode_server_message",
    "mouse_report_for",
    "parse_client_frame",
    "parse_server_frame",
]

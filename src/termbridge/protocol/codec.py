"""Frame codec for the terminal wire protocol.

Every transport message carries exactly one frame: a single ASCII
command tag followed by the payload. There is no length prefix, the
transport's own message boundaries delimit frames.

Client -> server tags::

    '0' Input      raw keystroke bytes (decoded as lossy UTF-8)
    '1' Resize     {"columns": u16, "rows": u16}
    '2' Pause      (empty)
    '3' Resume     (empty)
    '4' MouseClick {"x", "y", "button", "pressed"}           (mouse variant)
    '5' MouseDrag  {"x", "y", "button", "start_x", "start_y"} (mouse variant)
    '{' Init       the whole frame, tag included, is the JSON object
                   {"columns", "rows", "AuthToken"}

Server -> client tags::

    '0' Output, '1' SetWindowTitle, '2' SetPreferences
"""

from __future__ import annotations

import enum
import json
import logging

from pydantic import BaseModel, ValidationError

from termbridge.domain.models import (
    ClientMessage,
    InitMessage,
    InputMessage,
    MouseClickMessage,
    MouseDragMessage,
    OutputMessage,
    PauseMessage,
    ResizeMessage,
    ResumeMessage,
    ServerMessage,
    SetPreferencesMessage,
    SetWindowTitleMessage,
)

logger = logging.getLogger(__name__)

# Client -> server
INPUT = ord("0")
RESIZE_TERMINAL = ord("1")
PAUSE = ord("2")
RESUME = ord("3")
MOUSE_CLICK = ord("4")
MOUSE_DRAG = ord("5")
JSON_DATA = ord("{")

# Server -> client
OUTPUT = ord("0")
SET_WINDOW_TITLE = ord("1")
SET_PREFERENCES = ord("2")


class ProtocolVariant(str, enum.Enum):
    """Which command set the peer speaks."""

    PLAIN = "plain"
    MOUSE = "mouse"  # PLAIN plus the MouseClick/MouseDrag commands


class ProtocolError(Exception):
    """Raised when a frame cannot be decoded."""

    def __init__(self, message: str, tag: int | None = None) -> None:
        super().__init__(message)
        self.tag = tag


def _validate(model: type[BaseModel], payload: bytes) -> BaseModel:
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise ProtocolError(f"Malformed {model.__name__} payload: {e}") from e


def parse_client_frame(
    frame: bytes, variant: ProtocolVariant = ProtocolVariant.PLAIN
) -> ClientMessage:
    """Decode one frame received from the peer.

    Raises:
        ProtocolError: On empty frames, unknown tags or malformed JSON.
    """
    if not frame:
        raise ProtocolError("Empty frame")

    tag = frame[0]
    payload = bytes(frame[1:])

    if tag == INPUT:
        return InputMessage(data=payload.decode("utf-8", errors="replace"))
    if tag == RESIZE_TERMINAL:
        return _validate(ResizeMessage, payload)
    if tag == PAUSE:
        return PauseMessage()
    if tag == RESUME:
        return ResumeMessage()
    if tag == JSON_DATA:
        # The tag byte is the opening brace of the JSON document
        return _validate(InitMessage, bytes(frame))
    if variant is ProtocolVariant.MOUSE:
        if tag == MOUSE_CLICK:
            return _validate(MouseClickMessage, payload)
        if tag == MOUSE_DRAG:
            return _validate(MouseDragMessage, payload)

    raise ProtocolError(f"Unknown command: {chr(tag)!r} (0x{tag:02X})", tag=tag)


def encode_server_message(message: ServerMessage) -> bytes:
    """Serialize an event for the peer: tag byte followed by the raw payload."""
    if isinstance(message, OutputMessage):
        return bytes([OUTPUT]) + message.data
    if isinstance(message, SetWindowTitleMessage):
        return bytes([SET_WINDOW_TITLE]) + message.title.encode("utf-8")
    if isinstance(message, SetPreferencesMessage):
        return bytes([SET_PREFERENCES]) + message.preferences.encode("utf-8")
    raise TypeError(f"Not a server message: {type(message).__name__}")


def parse_server_frame(frame: bytes) -> ServerMessage:
    """Decode one frame sent by the server (client side of the protocol)."""
    if not frame:
        raise ProtocolError("Empty frame")
    tag = frame[0]
    payload = bytes(frame[1:])
    if tag == OUTPUT:
        return OutputMessage(data=payload)
    if tag == SET_WINDOW_TITLE:
        return SetWindowTitleMessage(title=payload.decode("utf-8", errors="replace"))
    if tag == SET_PREFERENCES:
        return SetPreferencesMessage(preferences=payload.decode("utf-8", errors="replace"))
    raise ProtocolError(f"Unknown command: {chr(tag)!r} (0x{tag:02X})", tag=tag)


def encode_client_message(message: ClientMessage) -> bytes:
    """Serialize a command the way a client puts it on the wire."""
    if isinstance(message, InitMessage):
        return message.model_dump_json(by_alias=True).encode("utf-8")
    if isinstance(message, InputMessage):
        return bytes([INPUT]) + message.data.encode("utf-8")
    if isinstance(message, PauseMessage):
        return bytes([PAUSE])
    if isinstance(message, ResumeMessage):
        return bytes([RESUME])

    tags = {
        ResizeMessage: RESIZE_TERMINAL,
        MouseClickMessage: MOUSE_CLICK,
        MouseDragMessage: MOUSE_DRAG,
    }
    tag = tags.get(type(message))
    if tag is None:
        raise TypeError(f"Not a client message: {type(message).__name__}")
    body = json.dumps(message.model_dump(), separators=(",", ":"))
    return bytes([tag]) + body.encode("utf-8")

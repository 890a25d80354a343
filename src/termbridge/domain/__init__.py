"""Domain models for termbridge.

This package contains the value objects exchanged between the peer,
the session and the pseudo-terminal. All models use Pydantic v2 for
validation and serialization.
"""

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

__all__ = [
    "ClientMessage",
    "InitMessage",
    "InputMessage",
    "MouseClickMessage",
    "MouseDragMessage",
    "OutputMessage",
    "PauseMessage",
    "PtySize",
    "ResizeMessage",
    "ResumeMessage",
    "ServerMessage",
    "SessionState",
    "SetPreferencesMessage",
    "SetWindowTitleMessage",
]

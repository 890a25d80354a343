"""Core domain models for the termbridge system.

These models represent the data flowing across the bridge: terminal
sizes, commands decoded from the remote peer, events sent back to it,
and the lifecycle states of a session.
"""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COLS = 80
DEFAULT_ROWS = 24

# Largest value representable by a 16-bit unsigned field on the wire
U16_MAX = 0xFFFF


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle states of one bridged connection."""

    CONNECTING = "connecting"  # Startup frames not yet sent
    AWAITING_INIT = "awaiting_init"  # Waiting for the Init frame
    ACTIVE = "active"  # PTY running, output forwarded
    PAUSED = "paused"  # PTY running, output held back
    CLOSING = "closing"  # Tearing down, PTY being killed
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Terminal geometry
# ---------------------------------------------------------------------------


class PtySize(BaseModel):
    """Terminal dimensions in character cells."""

    model_config = ConfigDict(frozen=True)

    cols: int = Field(default=DEFAULT_COLS, ge=0, le=U16_MAX)
    rows: int = Field(default=DEFAULT_ROWS, ge=0, le=U16_MAX)

    @classmethod
    def from_request(cls, cols: int, rows: int) -> PtySize:
        """Build a size from a peer request, defaulting zero dimensions."""
        return cls(cols=cols or DEFAULT_COLS, rows=rows or DEFAULT_ROWS)


# ---------------------------------------------------------------------------
# Client -> server messages (discriminated union)
# ---------------------------------------------------------------------------


class InitMessage(BaseModel):
    """First frame of a session: requested size and optional credential."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["init"] = Field(default="init", exclude=True)
    columns: int = Field(default=0, ge=0, le=U16_MAX)
    rows: int = Field(default=0, ge=0, le=U16_MAX)
    auth_token: str | None = Field(default=None, alias="AuthToken")


class InputMessage(BaseModel):
    """Keystrokes typed by the peer."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["input"] = Field(default="input", exclude=True)
    data: str


class ResizeMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["resize"] = Field(default="resize", exclude=True)
    columns: int = Field(ge=0, le=U16_MAX)
    rows: int = Field(ge=0, le=U16_MAX)


class PauseMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pause"] = Field(default="pause", exclude=True)


class ResumeMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["resume"] = Field(default="resume", exclude=True)


class MouseClickMessage(BaseModel):
    """A button press or release at a cell position (mouse variant only)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["mouse_click"] = Field(default="mouse_click", exclude=True)
    x: int = Field(ge=0, le=U16_MAX)
    y: int = Field(ge=0, le=U16_MAX)
    button: int = Field(ge=0, le=0xFF, description="0=left, 1=middle, 2=right")
    pressed: bool


class MouseDragMessage(BaseModel):
    """Pointer motion with a button held (mouse variant only)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["mouse_drag"] = Field(default="mouse_drag", exclude=True)
    x: int = Field(ge=0, le=U16_MAX)
    y: int = Field(ge=0, le=U16_MAX)
    button: int = Field(ge=0, le=0xFF, description="0=left, 1=middle, 2=right")
    start_x: int = Field(ge=0, le=U16_MAX)
    start_y: int = Field(ge=0, le=U16_MAX)


ClientMessage = Annotated[
    Union[
        InitMessage,
        InputMessage,
        ResizeMessage,
        PauseMessage,
        ResumeMessage,
        MouseClickMessage,
        MouseDragMessage,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Server -> client messages
# ---------------------------------------------------------------------------


class OutputMessage(BaseModel):
    """Raw bytes produced by the terminal."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["output"] = "output"
    data: bytes


class SetWindowTitleMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["set_window_title"] = "set_window_title"
    title: str


class SetPreferencesMessage(BaseModel):
    """Client preferences as a JSON document."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_preferences"] = "set_preferences"
    preferences: str = "{}"


ServerMessage = Annotated[
    Union[OutputMessage, SetWindowTitleMessage, SetPreferencesMessage],
    Field(discriminator="kind"),
]

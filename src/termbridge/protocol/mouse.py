"""X10 mouse report synthesis.

Mouse events from the peer are turned into the 5-byte report a
mouse-aware terminal program expects on its input:

    ESC 'M' <button-state> <col + 32> <row + 32>

Button-state codes: left press 0x20, middle press 0x21, right press
0x22, any release 0x23. Drags set bit 0x40 on the press codes.
Coordinates share a single byte with the +32 offset, so anything above
223 is clamped to the last addressable cell.
"""

from __future__ import annotations

from termbridge.domain.models import MouseClickMessage, MouseDragMessage

ESC = 0x1B
REPORT_PREFIX = bytes([ESC, ord("M")])

BUTTON_LEFT = 0x20
BUTTON_MIDDLE = 0x21
BUTTON_RIGHT = 0x22
BUTTON_RELEASE = 0x23
DRAG_FLAG = 0x40

COORD_OFFSET = 32
MAX_COORD = 0xFF - COORD_OFFSET

_PRESS_CODES = {
    0: BUTTON_LEFT,
    1: BUTTON_MIDDLE,
    2: BUTTON_RIGHT,
}


def _coord(value: int) -> int:
    return min(max(value, 0), MAX_COORD) + COORD_OFFSET


def mouse_click_report(x: int, y: int, button: int, pressed: bool) -> bytes:
    """Encode a press or release at cell (x, y).

    Unknown buttons are reported as a release, as are all releases.
    """
    state = _PRESS_CODES.get(button, BUTTON_RELEASE) if pressed else BUTTON_RELEASE
    return REPORT_PREFIX + bytes([state, _coord(x), _coord(y)])


def mouse_drag_report(x: int, y: int, button: int) -> bytes:
    """Encode motion with a button held; unknown buttons drag as left."""
    state = _PRESS_CODES.get(button, BUTTON_LEFT) | DRAG_FLAG
    return REPORT_PREFIX + bytes([state, _coord(x), _coord(y)])


def mouse_report_for(message: MouseClickMessage | MouseDragMessage) -> bytes:
    if isinstance(message, MouseDragMessage):
        return mouse_drag_report(message.x, message.y, message.button)
    return mouse_click_report(message.x, message.y, message.button, message.pressed)

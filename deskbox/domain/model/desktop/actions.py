"""Desktop input action vocabulary.

The set of actions is closed; callers pick from ActionType and cannot
register new ones at runtime.
"""

from dataclasses import dataclass, field
from enum import Enum


class ActionType(Enum):
    """Supported desktop actions."""

    LEFT_CLICK = "left_click"
    RIGHT_CLICK = "right_click"
    MIDDLE_CLICK = "middle_click"
    DOUBLE_CLICK = "double_click"
    SCROLL = "scroll"
    MOVE_MOUSE = "move_mouse"
    MOUSE_PRESS = "mouse_press"
    MOUSE_RELEASE = "mouse_release"
    WRITE = "write"
    PRESS = "press"
    DRAG = "drag"
    GET_CURSOR_POSITION = "get_cursor_position"
    GET_SCREEN_SIZE = "get_screen_size"
    GET_CURRENT_WINDOW = "get_current_window"
    GET_APPLICATION_WINDOWS = "get_application_windows"
    GET_WINDOW_TITLE = "get_window_title"
    FOCUS_WINDOW = "focus_window"
    LAUNCH = "launch"
    WAIT = "wait"
    OPEN = "open"


class MouseButton(Enum):
    """Mouse buttons with their X11 button numbers."""

    LEFT = 1
    MIDDLE = 2
    RIGHT = 3

    @classmethod
    def from_name(cls, name: str) -> "MouseButton":
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown mouse button: {name}") from None


class ScrollDirection(Enum):
    """Scroll direction with the X11 wheel button used for it."""

    UP = 4
    DOWN = 5


@dataclass
class InputAction:
    """A single discriminated input request.

    Only the fields relevant to ``type`` are read; the rest are ignored.
    ``x``/``y`` double as the drag start and ``end_x``/``end_y`` as its end.
    """

    type: ActionType
    x: int | None = None
    y: int | None = None
    button: MouseButton = MouseButton.LEFT
    direction: ScrollDirection = ScrollDirection.DOWN
    amount: int = 1
    text: str | None = None
    keys: list[str] = field(default_factory=list)
    chunk_size: int | None = None
    delay_in_ms: int | None = None
    end_x: int | None = None
    end_y: int | None = None
    window_id: str | None = None
    application: str | None = None
    uri: str | None = None
    target: str | None = None
    ms: int | None = None

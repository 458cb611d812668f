"""Input dispatch: semantic desktop actions to xdotool commands."""

import logging
import shlex
from typing import TYPE_CHECKING, Optional, Sequence, Union

from deskbox.application.services.desktop.utils import break_into_chunks, check_window_id
from deskbox.domain.model.desktop.actions import MouseButton, ScrollDirection

if TYPE_CHECKING:
    from deskbox.application.services.desktop.sandbox_handle import SandboxHandle

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 25
DEFAULT_DELAY_IN_MS = 75

# Symbolic key names -> X keysym names understood by xdotool
KEYS = {
    "alt": "Alt_L",
    "alt_left": "Alt_L",
    "alt_right": "Alt_R",
    "backspace": "BackSpace",
    "break": "Pause",
    "caps_lock": "Caps_Lock",
    "cmd": "Super_L",
    "command": "Super_L",
    "control": "Control_L",
    "control_left": "Control_L",
    "control_right": "Control_R",
    "ctrl": "Control_L",
    "del": "Delete",
    "delete": "Delete",
    "down": "Down",
    "end": "End",
    "enter": "Return",
    "esc": "Escape",
    "escape": "Escape",
    "f1": "F1",
    "f2": "F2",
    "f3": "F3",
    "f4": "F4",
    "f5": "F5",
    "f6": "F6",
    "f7": "F7",
    "f8": "F8",
    "f9": "F9",
    "f10": "F10",
    "f11": "F11",
    "f12": "F12",
    "home": "Home",
    "insert": "Insert",
    "left": "Left",
    "menu": "Menu",
    "meta": "Meta_L",
    "num_lock": "Num_Lock",
    "page_down": "Page_Down",
    "page_up": "Page_Up",
    "pause": "Pause",
    "print": "Print",
    "right": "Right",
    "scroll_lock": "Scroll_Lock",
    "shift": "Shift_L",
    "shift_left": "Shift_L",
    "shift_right": "Shift_R",
    "space": "space",
    "super": "Super_L",
    "super_left": "Super_L",
    "super_right": "Super_R",
    "tab": "Tab",
    "up": "Up",
    "win": "Super_L",
    "windows": "Super_L",
}


def map_key(key: str) -> str:
    """Translate a symbolic key name; unknown names pass through lower-cased."""
    lower_key = key.lower()
    return KEYS.get(lower_key, lower_key)


def build_key_sequence(key: Union[str, Sequence[str]]) -> str:
    """Map a key or an ordered chord of keys to an xdotool key argument."""
    if isinstance(key, str):
        return map_key(key)
    if not key:
        raise ValueError("At least one key is required")
    return "+".join(map_key(k) for k in key)


class InputDispatcher:
    """
    Translates mouse, keyboard and window actions into remote commands.

    Mouse actions move the cursor first when both coordinates are given.
    """

    def __init__(
        self,
        desktop: "SandboxHandle",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay_in_ms: int = DEFAULT_DELAY_IN_MS,
    ) -> None:
        self._desktop = desktop
        self.chunk_size = chunk_size
        self.delay_in_ms = delay_in_ms

    async def left_click(self, x: Optional[int] = None, y: Optional[int] = None) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool click {MouseButton.LEFT.value}")

    async def double_click(self, x: Optional[int] = None, y: Optional[int] = None) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool click --repeat 2 {MouseButton.LEFT.value}")

    async def right_click(self, x: Optional[int] = None, y: Optional[int] = None) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool click {MouseButton.RIGHT.value}")

    async def middle_click(self, x: Optional[int] = None, y: Optional[int] = None) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool click {MouseButton.MIDDLE.value}")

    async def click(
        self,
        button: MouseButton = MouseButton.LEFT,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> None:
        """Single click with any button."""
        if button is MouseButton.RIGHT:
            await self.right_click(x, y)
        elif button is MouseButton.MIDDLE:
            await self.middle_click(x, y)
        else:
            await self.left_click(x, y)

    async def scroll(
        self,
        direction: ScrollDirection = ScrollDirection.DOWN,
        amount: int = 1,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> None:
        if amount < 1:
            raise ValueError(f"Scroll amount must be positive, got {amount}")
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool click --repeat {amount} {direction.value}")

    async def move_mouse(self, x: int, y: int) -> None:
        await self._desktop.run(f"xdotool mousemove --sync {int(x)} {int(y)}")

    async def mouse_press(
        self,
        button: MouseButton = MouseButton.LEFT,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool mousedown {button.value}")

    async def mouse_release(
        self,
        button: MouseButton = MouseButton.LEFT,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> None:
        await self._move_if_requested(x, y)
        await self._desktop.run(f"xdotool mouseup {button.value}")

    async def drag(self, start: Sequence[int], end: Sequence[int]) -> None:
        """Press at ``start``, move to ``end`` and release there."""
        x1, y1 = start
        x2, y2 = end
        await self.move_mouse(x1, y1)
        await self.mouse_press()
        await self.move_mouse(x2, y2)
        await self.mouse_release()

    async def write(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        delay_in_ms: Optional[int] = None,
    ) -> None:
        """
        Type text in chunks.

        Slow remote input queues drop keystrokes when fed long strings, so
        text is typed in chunks with a per-keystroke delay.

        Args:
            text: Text to type
            chunk_size: Characters per xdotool invocation
            delay_in_ms: Delay between keystrokes
        """
        chunk_size = chunk_size if chunk_size is not None else self.chunk_size
        delay_in_ms = delay_in_ms if delay_in_ms is not None else self.delay_in_ms

        for chunk in break_into_chunks(text, chunk_size):
            await self._desktop.run(f"xdotool type --delay {delay_in_ms} -- {shlex.quote(chunk)}")

    async def press(self, key: Union[str, Sequence[str]]) -> None:
        """Press a key, or a chord given as an ordered list of keys."""
        await self._desktop.run(f"xdotool key {build_key_sequence(key)}")

    async def focus_window(self, window_id: str) -> None:
        await self._desktop.run(f"xdotool windowactivate --sync {check_window_id(window_id)}")

    async def wait(self, ms: int) -> None:
        await self._desktop.run(f"sleep {ms / 1000}")

    async def launch(self, application: str, uri: Optional[str] = None) -> None:
        """Launch a desktop application; it outlives this call."""
        command = f"gtk-launch {shlex.quote(application)}"
        if uri:
            command += f" {shlex.quote(uri)}"
        await self._desktop.run_background(command)
        logger.info(f"Launched {application} in sandbox {self._desktop.id}")

    async def open(self, file_or_url: str) -> None:
        """Open a file or URL with the default handler; it outlives this call."""
        await self._desktop.run_background(f"xdg-open {shlex.quote(file_or_url)}")

    async def _move_if_requested(self, x: Optional[int], y: Optional[int]) -> None:
        if x is not None and y is not None:
            await self.move_mouse(x, y)

"""Remote desktop bootstrap (Xvfb + XFCE) and desktop introspection.

Turns a bare isolated environment into a usable desktop: starts the virtual
framebuffer, waits for it to answer, and keeps exactly one window manager
session alive.
"""

import logging
import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING

from deskbox.application.services.desktop.utils import WINDOW_ID_PATTERN, check_window_id
from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    OutputParseError,
    SandboxStartupTimeoutError,
)

if TYPE_CHECKING:
    from deskbox.application.services.desktop.sandbox_handle import SandboxHandle

logger = logging.getLogger(__name__)

WINDOW_MANAGER_COMMAND = "startxfce4"

_CURSOR_PATTERN = re.compile(r"x:(\d+)\s+y:(\d+)")
_SCREEN_SIZE_PATTERN = re.compile(r"(\d+)x(\d+)")


@dataclass(frozen=True)
class CursorPosition:
    x: int
    y: int


@dataclass(frozen=True)
class ScreenSize:
    width: int
    height: int


class RemoteDesktopBootstrap:
    """
    Starts and inspects the virtual display of one sandbox.

    Usage:
        bootstrap = RemoteDesktopBootstrap(handle)
        await bootstrap.start(":0", (1024, 768), 96)
        size = await bootstrap.get_screen_size()
    """

    def __init__(self, desktop: "SandboxHandle") -> None:
        self._desktop = desktop

    async def start(
        self,
        display: str,
        resolution: tuple[int, int] = (1024, 768),
        dpi: int = 96,
    ) -> None:
        """
        Start Xvfb on ``display`` and make sure the window manager runs.

        Args:
            display: X11 display identifier (e.g., ":0")
            resolution: (width, height) of the framebuffer
            dpi: Framebuffer DPI

        Raises:
            SandboxStartupTimeoutError: If the display never answers
        """
        self._desktop.display = display
        width, height = resolution

        logger.info(
            f"Starting desktop for sandbox {self._desktop.id}: "
            f"display={display}, resolution={width}x{height}, dpi={dpi}"
        )
        await self._desktop.run_background(
            f"Xvfb {display} -ac -screen 0 {width}x{height}x24 "
            f"-retro -dpi {dpi} -nolisten tcp -nolisten unix"
        )

        has_started = await self._desktop.wait_and_verify(
            f"xdpyinfo -display {display}",
            lambda result: result.exit_code == 0,
        )
        if not has_started:
            raise SandboxStartupTimeoutError(
                "Could not start Xvfb",
                sandbox_id=self._desktop.id,
                operation="start_display",
                timeout_seconds=self._desktop.readiness_timeout,
            )

        await self.ensure_window_manager()
        logger.info(f"Desktop ready for sandbox {self._desktop.id} on {display}")

    async def ensure_window_manager(self) -> bool:
        """
        Launch the window manager unless the recorded one is still alive.

        Returns:
            True if a new window manager process was launched
        """
        pid = self._desktop.last_window_manager_pid
        if pid is not None and await self.is_process_alive(pid):
            logger.debug(f"Window manager {pid} still alive, not relaunching")
            return False

        handle = await self._desktop.run_background(WINDOW_MANAGER_COMMAND)
        self._desktop.last_window_manager_pid = handle.pid
        logger.debug(f"Window manager started with PID {handle.pid}")
        return True

    async def is_process_alive(self, pid: int) -> bool:
        """Check that ``pid`` exists and is not a zombie (state ``Z``)."""
        try:
            result = await self._desktop.run(f"ps -o stat= -p {pid}")
        except CommandExitError:
            return False
        state = result.stdout.strip()
        return bool(state) and not state.startswith("Z")

    async def get_cursor_position(self) -> CursorPosition:
        result = await self._desktop.run("xdotool getmouselocation")
        match = _CURSOR_PATTERN.search(result.stdout)
        if not match:
            raise OutputParseError(
                f"Failed to parse cursor position from output: {result.stdout}",
                output=result.stdout,
                operation="get_cursor_position",
            )
        return CursorPosition(x=int(match.group(1)), y=int(match.group(2)))

    async def get_screen_size(self) -> ScreenSize:
        result = await self._desktop.run("xrandr")
        match = _SCREEN_SIZE_PATTERN.search(result.stdout)
        if not match:
            raise OutputParseError(
                f"Failed to parse screen size from output: {result.stdout}",
                output=result.stdout,
                operation="get_screen_size",
            )
        return ScreenSize(width=int(match.group(1)), height=int(match.group(2)))

    async def get_current_window_id(self) -> str:
        result = await self._desktop.run("xdotool getwindowfocus")
        window_id = result.stdout.strip()
        if not WINDOW_ID_PATTERN.match(window_id):
            raise OutputParseError(
                f"Failed to parse window id from output: {result.stdout}",
                output=result.stdout,
                operation="get_current_window_id",
            )
        return window_id

    async def get_application_windows(self, application: str) -> list[str]:
        """Visible window ids belonging to an application class."""
        result = await self._desktop.run(
            f"xdotool search --onlyvisible --class {shlex.quote(application)}"
        )
        window_ids = [line.strip() for line in result.stdout.strip().splitlines()]
        for window_id in window_ids:
            if not WINDOW_ID_PATTERN.match(window_id):
                raise OutputParseError(
                    f"Failed to parse window ids from output: {result.stdout}",
                    output=result.stdout,
                    operation="get_application_windows",
                )
        return window_ids

    async def get_window_title(self, window_id: str) -> str:
        check_window_id(window_id)
        result = await self._desktop.run(f"xdotool getwindowname {window_id}")
        return result.stdout.strip()

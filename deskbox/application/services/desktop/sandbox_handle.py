"""Sandbox handle - one addressable desktop bound to an isolated environment.

The handle owns the display identifier, the last window manager PID, and the
desktop components, which all reach the environment through the handle.
"""

import logging
from typing import Callable, Optional

from deskbox.application.services.desktop.bootstrap import RemoteDesktopBootstrap
from deskbox.application.services.desktop.input_dispatcher import InputDispatcher
from deskbox.application.services.desktop.utils import generate_random_string
from deskbox.application.services.desktop.vnc_stream import VNCStreamManager
from deskbox.application.services.readiness import (
    DEFAULT_INTERVAL,
    DEFAULT_TIMEOUT,
    wait_until,
)
from deskbox.configuration.config import Settings
from deskbox.domain.ports.services.environment_port import (
    CommandHandle,
    CommandResult,
    IsolatedEnvironment,
)

logger = logging.getLogger(__name__)


class SandboxHandle:
    """
    Desktop instance composed of bootstrap, stream and input components.

    Usage:
        handle = SandboxHandle(environment)
        await handle.bootstrap()
        await handle.input.left_click(100, 200)
        await handle.stream.start(require_auth=True)
        png = await handle.screenshot()
    """

    def __init__(
        self,
        environment: IsolatedEnvironment,
        display: str = ":0",
        resolution: tuple[int, int] = (1024, 768),
        dpi: int = 96,
        readiness_timeout: float = DEFAULT_TIMEOUT,
        readiness_interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self.environment = environment
        self.display = display
        self.resolution = resolution
        self.dpi = dpi
        self.readiness_timeout = readiness_timeout
        self.readiness_interval = readiness_interval
        self.last_window_manager_pid: Optional[int] = None

        self.desktop = RemoteDesktopBootstrap(self)
        self.stream = VNCStreamManager(self)
        self.input = InputDispatcher(self)

    @classmethod
    def from_settings(
        cls,
        environment: IsolatedEnvironment,
        settings: Settings,
        stream_port: Optional[int] = None,
    ) -> "SandboxHandle":
        """Build a handle configured from application settings."""
        handle = cls(
            environment,
            display=settings.desktop_display,
            resolution=settings.resolution,
            dpi=settings.desktop_dpi,
            readiness_timeout=settings.readiness_timeout,
            readiness_interval=settings.readiness_interval,
        )
        handle.stream = VNCStreamManager(
            handle,
            vnc_port=settings.vnc_server_port,
            port=stream_port or 6080,
            novnc_path=settings.novnc_path,
            url_scheme=settings.stream_url_scheme,
        )
        handle.input = InputDispatcher(
            handle,
            chunk_size=settings.type_chunk_size,
            delay_in_ms=settings.type_delay_ms,
        )
        return handle

    @property
    def id(self) -> str:
        return self.environment.id

    async def bootstrap(self) -> None:
        """Bring the desktop up; must finish before any input or stream call."""
        await self.desktop.start(self.display, self.resolution, self.dpi)

    async def run(self, command: str, timeout_ms: Optional[int] = None) -> CommandResult:
        logger.debug(f"[{self.id}] run: {command}")
        return await self.environment.run(command, timeout_ms=timeout_ms)

    async def run_background(self, command: str) -> CommandHandle:
        logger.debug(f"[{self.id}] run in background: {command}")
        return await self.environment.run_background(command)

    async def wait_and_verify(
        self,
        command: str,
        on_result: Callable[[CommandResult], bool],
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """Poll ``command`` until ``on_result`` accepts its result."""
        return await wait_until(
            lambda: self.run(command),
            on_result,
            timeout=timeout if timeout is not None else self.readiness_timeout,
            interval=interval if interval is not None else self.readiness_interval,
        )

    def get_host(self, port: int) -> str:
        return self.environment.get_host(port)

    async def screenshot(self) -> bytes:
        """Capture the display (with pointer) as PNG bytes."""
        path = f"/tmp/screenshot-{generate_random_string()}.png"
        await self.run(f"scrot --pointer {path}")
        try:
            data = await self.environment.read_file(path, format="bytes")
        finally:
            await self.environment.remove_file(path)
        return data

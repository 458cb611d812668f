"""Screen-share stream (x11vnc + noVNC) for one sandbox desktop.

State machine: STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED.
Whether the screen-share server runs is always probed in the environment,
never cached.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Literal, Optional
from urllib.parse import urlencode

from deskbox.application.services.desktop.utils import check_window_id, generate_random_string
from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    SandboxError,
    SandboxStartupTimeoutError,
    StreamAlreadyRunningError,
    StreamStateError,
)
from deskbox.domain.ports.services.environment_port import CommandHandle

if TYPE_CHECKING:
    from deskbox.application.services.desktop.sandbox_handle import SandboxHandle

logger = logging.getLogger(__name__)

ResizePolicy = Literal["off", "scale", "remote"]
_RESIZE_POLICIES = ("off", "scale", "remote")


class StreamState(Enum):
    """Lifecycle state of the stream."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class VNCStreamManager:
    """
    Manages the x11vnc server and the noVNC web relay in front of it.

    Usage:
        stream = VNCStreamManager(handle)
        await stream.start(require_auth=True)
        url = stream.get_url(auth_key=stream.get_auth_key())
        await stream.stop()
    """

    def __init__(
        self,
        desktop: "SandboxHandle",
        vnc_port: int = 5900,
        port: int = 6080,
        novnc_path: str = "/opt/noVNC",
        url_scheme: str = "http",
    ) -> None:
        """
        Initialize the stream manager.

        Args:
            desktop: Sandbox handle the stream belongs to
            vnc_port: RFB port of x11vnc inside the environment
            port: Port the noVNC relay listens on
            novnc_path: noVNC installation directory
            url_scheme: Scheme of generated connection URLs
        """
        self._desktop = desktop
        self.vnc_port = vnc_port
        self.port = port
        self.novnc_path = novnc_path
        self.url_scheme = url_scheme

        self.state = StreamState.STOPPED
        self._auth_enabled = False
        self._password: Optional[str] = None
        self._url: Optional[str] = None
        self._relay_handle: Optional[CommandHandle] = None

    async def is_running(self) -> bool:
        """Probe the environment for a running screen-share server."""
        try:
            result = await self._desktop.run("pgrep -x x11vnc")
        except CommandExitError:
            return False
        return result.stdout.strip() != ""

    async def start(
        self,
        vnc_port: Optional[int] = None,
        port: Optional[int] = None,
        require_auth: bool = False,
        window_id: Optional[str] = None,
    ) -> None:
        """
        Start x11vnc and the noVNC relay.

        Args:
            vnc_port: Override the RFB port
            port: Override the relay port
            require_auth: Protect the stream with a generated password
            window_id: Share only this window instead of the whole display

        Raises:
            StreamAlreadyRunningError: If x11vnc already runs
            SandboxStartupTimeoutError: If the relay port never opens
            ValueError: If window_id is not a numeric X11 window id
        """
        if window_id is not None:
            check_window_id(window_id)
        if await self.is_running():
            raise StreamAlreadyRunningError(sandbox_id=self._desktop.id)

        self.state = StreamState.STARTING
        self.vnc_port = vnc_port or self.vnc_port
        self.port = port or self.port
        self._auth_enabled = require_auth
        self._password = generate_random_string() if require_auth else None
        self._url = f"{self.url_scheme}://{self._desktop.get_host(self.port)}/vnc.html"

        try:
            await self._desktop.run(await self._build_vnc_command(window_id))
            self._relay_handle = await self._desktop.run_background(self._build_novnc_command())
            if not await self._wait_for_port(self.port):
                raise SandboxStartupTimeoutError(
                    "Could not start noVNC server",
                    sandbox_id=self._desktop.id,
                    operation="stream_start",
                    timeout_seconds=self._desktop.readiness_timeout,
                )
        except SandboxError:
            await self._abort_start()
            raise

        self.state = StreamState.RUNNING
        logger.info(
            f"Stream started for sandbox {self._desktop.id}: "
            f"vnc_port={self.vnc_port}, port={self.port}, auth={require_auth}"
        )

    async def stop(self) -> None:
        """
        Stop the stream. Safe to call when nothing runs.

        Stream state is cleared even if killing a process fails.
        """
        self.state = StreamState.STOPPING
        try:
            if await self.is_running():
                await self._desktop.run("pkill x11vnc")
        finally:
            try:
                if self._relay_handle is not None:
                    await self._relay_handle.kill()
            finally:
                self._reset()
        logger.info(f"Stream stopped for sandbox {self._desktop.id}")

    def get_auth_key(self) -> str:
        if not self._password:
            raise StreamStateError(
                "Unable to retrieve stream auth key, check if require_auth is enabled",
                sandbox_id=self._desktop.id,
            )
        return self._password

    def get_url(
        self,
        auto_connect: bool = True,
        view_only: bool = False,
        resize: Optional[ResizePolicy] = "scale",
        auth_key: Optional[str] = None,
    ) -> str:
        """
        Build the noVNC connection URL.

        Args:
            auto_connect: Connect as soon as the page loads
            view_only: Disable input from the viewer
            resize: Client-side resize policy ("off", "scale", "remote")
            auth_key: Password to embed in the URL

        Raises:
            StreamStateError: If the stream was never started
        """
        if self._url is None:
            raise StreamStateError("Server is not running", sandbox_id=self._desktop.id)
        if resize and resize not in _RESIZE_POLICIES:
            raise ValueError(f"Invalid resize policy: {resize}")

        params: dict[str, str] = {}
        if auto_connect:
            params["autoconnect"] = "true"
        if view_only:
            params["view_only"] = "true"
        if resize:
            params["resize"] = resize
        if auth_key:
            params["password"] = auth_key

        if not params:
            return self._url
        return f"{self._url}?{urlencode(params)}"

    @property
    def auth_enabled(self) -> bool:
        return self._auth_enabled

    async def _build_vnc_command(self, window_id: Optional[str]) -> str:
        pwd_flag = "-nopw"
        if self._auth_enabled:
            await self._desktop.run("mkdir -p ~/.vnc")
            await self._desktop.run(f"x11vnc -storepasswd {self._password} ~/.vnc/passwd")
            pwd_flag = "-usepw"

        window_flag = f" -id {window_id}" if window_id else ""
        return (
            f"x11vnc -bg -display {self._desktop.display} -forever -wait 50 -shared "
            f"-rfbport {self.vnc_port} {pwd_flag}{window_flag} 2>/tmp/x11vnc_stderr.log"
        )

    def _build_novnc_command(self) -> str:
        return (
            f"cd {self.novnc_path}/utils && ./novnc_proxy --vnc localhost:{self.vnc_port} "
            f"--listen {self.port} --web {self.novnc_path} > /tmp/novnc.log 2>&1"
        )

    async def _wait_for_port(self, port: int) -> bool:
        return await self._desktop.wait_and_verify(
            f'netstat -tuln | grep ":{port} "',
            lambda result: result.stdout.strip() != "",
        )

    async def _abort_start(self) -> None:
        """Kill whatever part of the stream came up during a failed start."""
        try:
            await self.stop()
        except SandboxError as e:
            logger.warning(f"Error cleaning up failed stream start for {self._desktop.id}: {e}")

    def _reset(self) -> None:
        self._relay_handle = None
        self._url = None
        self._password = None
        self._auth_enabled = False
        self.state = StreamState.STOPPED

"""Session Multiplexer - session-keyed facade over SandboxHandle operations.

Every desktop operation resolves a session id to its SandboxHandle first and
fails with SandboxNotFoundError, without touching the registry, when the
session is unknown or not ready.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from deskbox.application.services.desktop.bootstrap import CursorPosition, ScreenSize
from deskbox.application.services.desktop.sandbox_handle import SandboxHandle
from deskbox.application.services.session_orchestrator import SessionOrchestrator
from deskbox.domain.model.desktop.actions import (
    ActionType,
    InputAction,
    MouseButton,
    ScrollDirection,
)
from deskbox.domain.model.sandbox.exceptions import SandboxNotFoundError
from deskbox.domain.model.session.session import (
    ContainerInfo,
    Message,
    MessageRole,
    Session,
)

logger = logging.getLogger(__name__)

# Actions that only read desktop state and leave a READY session READY
_PASSIVE_ACTIONS = frozenset(
    {
        ActionType.GET_CURSOR_POSITION,
        ActionType.GET_SCREEN_SIZE,
        ActionType.GET_CURRENT_WINDOW,
        ActionType.GET_APPLICATION_WINDOWS,
        ActionType.GET_WINDOW_TITLE,
        ActionType.WAIT,
    }
)


@dataclass
class StreamInfo:
    """Connection details of a started stream."""

    url: str
    auth_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {"url": self.url, "auth_key": self.auth_key}


class SessionMultiplexer:
    """
    Maps session ids to SandboxHandle instances.

    Usage:
        multiplexer = SessionMultiplexer(orchestrator)
        session = await multiplexer.create_session()
        await multiplexer.mouse_click(session.id, 100, 200)
        info = await multiplexer.start_stream(session.id, require_auth=True)
    """

    def __init__(self, orchestrator: SessionOrchestrator) -> None:
        self._orchestrator = orchestrator

    # Session registry

    async def create_session(self) -> Session:
        return await self._orchestrator.create_session()

    def get_session(self, session_id: str) -> Session:
        session = self._orchestrator.get_session(session_id)
        if session is None:
            raise SandboxNotFoundError(
                f"Session {session_id} not found", sandbox_id=session_id
            )
        return session

    def list_sessions(self) -> list[Session]:
        return self._orchestrator.get_all_sessions()

    def add_message(self, session_id: str, role: Union[MessageRole, str], content: str) -> Message:
        return self._orchestrator.add_message(session_id, role, content)

    async def get_container_info(self, session_id: str) -> ContainerInfo:
        self.get_session(session_id)
        info = await self._orchestrator.get_container_info(session_id)
        if info is None:
            raise SandboxNotFoundError(
                f"Container for session {session_id} not found",
                sandbox_id=session_id,
                operation="container_info",
            )
        return info

    async def terminate_session(self, session_id: str) -> None:
        await self._orchestrator.terminate_session(session_id)

    # Applications and screen

    async def launch_application(
        self, session_id: str, application: str, uri: Optional[str] = None
    ) -> None:
        await self.dispatch_action(
            session_id, InputAction(type=ActionType.LAUNCH, application=application, uri=uri)
        )

    async def open_file(self, session_id: str, file_or_url: str) -> None:
        await self.dispatch_action(
            session_id, InputAction(type=ActionType.OPEN, target=file_or_url)
        )

    async def screenshot(self, session_id: str) -> bytes:
        return await self._resolve(session_id).screenshot()

    async def get_cursor_position(self, session_id: str) -> CursorPosition:
        return await self.dispatch_action(
            session_id, InputAction(type=ActionType.GET_CURSOR_POSITION)
        )

    async def get_screen_size(self, session_id: str) -> ScreenSize:
        return await self.dispatch_action(session_id, InputAction(type=ActionType.GET_SCREEN_SIZE))

    async def get_current_window_id(self, session_id: str) -> str:
        return await self.dispatch_action(
            session_id, InputAction(type=ActionType.GET_CURRENT_WINDOW)
        )

    async def get_application_windows(self, session_id: str, application: str) -> list[str]:
        return await self.dispatch_action(
            session_id,
            InputAction(type=ActionType.GET_APPLICATION_WINDOWS, application=application),
        )

    async def get_window_title(self, session_id: str, window_id: str) -> str:
        return await self.dispatch_action(
            session_id, InputAction(type=ActionType.GET_WINDOW_TITLE, window_id=window_id)
        )

    # Stream

    async def start_stream(
        self,
        session_id: str,
        window_id: Optional[str] = None,
        require_auth: bool = False,
    ) -> StreamInfo:
        """
        Start the screen-share stream of a session.

        Returns:
            StreamInfo whose URL carries the password when auth is required
        """
        handle = self._resolve(session_id)
        await handle.stream.start(require_auth=require_auth, window_id=window_id)
        self._orchestrator.mark_active(session_id)

        auth_key = handle.stream.get_auth_key() if require_auth else None
        url = handle.stream.get_url(auth_key=auth_key)
        logger.info(f"Stream started for session {session_id}")
        return StreamInfo(url=url, auth_key=auth_key)

    async def stop_stream(self, session_id: str) -> None:
        await self._resolve(session_id).stream.stop()

    def get_stream_url(self, session_id: str, require_auth: bool = False) -> str:
        stream = self._resolve(session_id).stream
        auth_key = stream.get_auth_key() if require_auth else None
        return stream.get_url(auth_key=auth_key)

    def get_auth_key(self, session_id: str) -> str:
        return self._resolve(session_id).stream.get_auth_key()

    # Input

    async def dispatch_action(self, session_id: str, action: InputAction) -> Any:
        """
        Route one discriminated input request to the desktop.

        Returns:
            The query result for the get_* actions, otherwise None

        Raises:
            ValueError: If a field the action needs is missing or invalid
        """
        handle = self._resolve(session_id)
        dispatcher = handle.input
        desktop = handle.desktop
        action_type = action.type
        result: Any = None

        if action_type is ActionType.LEFT_CLICK:
            await dispatcher.left_click(action.x, action.y)
        elif action_type is ActionType.RIGHT_CLICK:
            await dispatcher.right_click(action.x, action.y)
        elif action_type is ActionType.MIDDLE_CLICK:
            await dispatcher.middle_click(action.x, action.y)
        elif action_type is ActionType.DOUBLE_CLICK:
            await dispatcher.double_click(action.x, action.y)
        elif action_type is ActionType.SCROLL:
            await dispatcher.scroll(action.direction, action.amount, action.x, action.y)
        elif action_type is ActionType.MOVE_MOUSE:
            await dispatcher.move_mouse(self._require(action.x, "x"), self._require(action.y, "y"))
        elif action_type is ActionType.MOUSE_PRESS:
            await dispatcher.mouse_press(action.button, action.x, action.y)
        elif action_type is ActionType.MOUSE_RELEASE:
            await dispatcher.mouse_release(action.button, action.x, action.y)
        elif action_type is ActionType.WRITE:
            await dispatcher.write(
                self._require(action.text, "text"), action.chunk_size, action.delay_in_ms
            )
        elif action_type is ActionType.PRESS:
            if not action.keys:
                raise ValueError("press requires at least one key")
            await dispatcher.press(action.keys if len(action.keys) > 1 else action.keys[0])
        elif action_type is ActionType.DRAG:
            await dispatcher.drag(
                (self._require(action.x, "x"), self._require(action.y, "y")),
                (self._require(action.end_x, "end_x"), self._require(action.end_y, "end_y")),
            )
        elif action_type is ActionType.GET_CURSOR_POSITION:
            result = await desktop.get_cursor_position()
        elif action_type is ActionType.GET_SCREEN_SIZE:
            result = await desktop.get_screen_size()
        elif action_type is ActionType.GET_CURRENT_WINDOW:
            result = await desktop.get_current_window_id()
        elif action_type is ActionType.GET_APPLICATION_WINDOWS:
            result = await desktop.get_application_windows(
                self._require(action.application, "application")
            )
        elif action_type is ActionType.GET_WINDOW_TITLE:
            result = await desktop.get_window_title(self._require(action.window_id, "window_id"))
        elif action_type is ActionType.FOCUS_WINDOW:
            await dispatcher.focus_window(self._require(action.window_id, "window_id"))
        elif action_type is ActionType.LAUNCH:
            await dispatcher.launch(self._require(action.application, "application"), action.uri)
        elif action_type is ActionType.WAIT:
            await dispatcher.wait(self._require(action.ms, "ms"))
        elif action_type is ActionType.OPEN:
            await dispatcher.open(self._require(action.target, "target"))
        else:
            raise ValueError(f"Unsupported input action: {action_type}")

        if action_type not in _PASSIVE_ACTIONS:
            self._orchestrator.mark_active(session_id)
        return result

    async def mouse_click(
        self,
        session_id: str,
        x: Optional[int] = None,
        y: Optional[int] = None,
        button: Union[MouseButton, str] = MouseButton.LEFT,
    ) -> None:
        if isinstance(button, str):
            button = MouseButton.from_name(button)
        handle = self._resolve(session_id)
        await handle.input.click(button, x, y)
        self._orchestrator.mark_active(session_id)

    async def double_click(
        self, session_id: str, x: Optional[int] = None, y: Optional[int] = None
    ) -> None:
        await self.dispatch_action(
            session_id, InputAction(type=ActionType.DOUBLE_CLICK, x=x, y=y)
        )

    async def scroll(
        self,
        session_id: str,
        direction: Union[ScrollDirection, str] = ScrollDirection.DOWN,
        amount: int = 1,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> None:
        if isinstance(direction, str):
            direction = ScrollDirection[direction.upper()]
        await self.dispatch_action(
            session_id,
            InputAction(type=ActionType.SCROLL, x=x, y=y, direction=direction, amount=amount),
        )

    async def move_mouse(self, session_id: str, x: int, y: int) -> None:
        await self.dispatch_action(session_id, InputAction(type=ActionType.MOVE_MOUSE, x=x, y=y))

    async def drag(self, session_id: str, start: Sequence[int], end: Sequence[int]) -> None:
        (start_x, start_y), (end_x, end_y) = start, end
        await self.dispatch_action(
            session_id,
            InputAction(type=ActionType.DRAG, x=start_x, y=start_y, end_x=end_x, end_y=end_y),
        )

    async def write_text(
        self,
        session_id: str,
        text: str,
        chunk_size: Optional[int] = None,
        delay_in_ms: Optional[int] = None,
    ) -> None:
        await self.dispatch_action(
            session_id,
            InputAction(
                type=ActionType.WRITE, text=text, chunk_size=chunk_size, delay_in_ms=delay_in_ms
            ),
        )

    async def press_key(self, session_id: str, key: Union[str, Sequence[str]]) -> None:
        keys = [key] if isinstance(key, str) else list(key)
        await self.dispatch_action(session_id, InputAction(type=ActionType.PRESS, keys=keys))

    async def focus_window(self, session_id: str, window_id: str) -> None:
        await self.dispatch_action(
            session_id, InputAction(type=ActionType.FOCUS_WINDOW, window_id=window_id)
        )

    async def wait(self, session_id: str, ms: int) -> None:
        await self.dispatch_action(session_id, InputAction(type=ActionType.WAIT, ms=ms))

    # Commands and files

    async def run_command(
        self, session_id: str, command: str, timeout_ms: Optional[int] = None
    ) -> str:
        """
        Run a shell command in the session's environment.

        Returns:
            Captured stdout, or stderr when stdout is empty

        Raises:
            CommandExitError: If the command exits non-zero
        """
        handle = self._resolve(session_id)
        result = await handle.run(command, timeout_ms=timeout_ms)
        self._orchestrator.mark_active(session_id)
        return result.stdout or result.stderr

    async def write_file(self, session_id: str, path: str, content: Union[str, bytes]) -> None:
        await self._resolve(session_id).environment.write_file(path, content)

    def _resolve(self, session_id: str) -> SandboxHandle:
        session = self._orchestrator.get_session(session_id)
        handle = self._orchestrator.get_handle(session_id)
        if session is None or handle is None or not session.is_ready:
            raise SandboxNotFoundError(
                "Session not found or not ready", sandbox_id=session_id, operation="resolve"
            )
        return handle

    @staticmethod
    def _require(value, name: str):
        if value is None:
            raise ValueError(f"Missing required field: {name}")
        return value

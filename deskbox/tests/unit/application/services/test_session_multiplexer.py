"""Unit tests for SessionMultiplexer."""

import time

import pytest

from deskbox.application.services.desktop.bootstrap import CursorPosition, ScreenSize
from deskbox.application.services.session_multiplexer import SessionMultiplexer, StreamInfo
from deskbox.application.services.session_orchestrator import SessionOrchestrator
from deskbox.configuration.config import Settings
from deskbox.domain.model.desktop.actions import (
    ActionType,
    InputAction,
    MouseButton,
    ScrollDirection,
)
from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    SandboxNotFoundError,
    StreamStateError,
)
from deskbox.domain.model.session.session import SessionStatus
from deskbox.domain.ports.services.environment_port import CommandResult


@pytest.fixture
async def session(multiplexer):
    """Provide a ready session."""
    return await multiplexer.create_session()


@pytest.fixture
def environment(fake_runtime, session):
    """Provide the fake environment backing the ready session."""
    return fake_runtime.environments[0]


# (method name, extra args) for every session-keyed operation that resolves a handle
RESOLVING_OPERATIONS = [
    ("launch_application", ("firefox",)),
    ("open_file", ("/tmp/a.txt",)),
    ("screenshot", ()),
    ("get_cursor_position", ()),
    ("get_screen_size", ()),
    ("get_current_window_id", ()),
    ("get_application_windows", ("firefox",)),
    ("get_window_title", ("1",)),
    ("start_stream", ()),
    ("stop_stream", ()),
    ("dispatch_action", (InputAction(type=ActionType.LEFT_CLICK),)),
    ("mouse_click", (1, 2)),
    ("double_click", ()),
    ("scroll", ()),
    ("move_mouse", (1, 2)),
    ("drag", ((0, 0), (1, 1))),
    ("write_text", ("hi",)),
    ("press_key", ("enter",)),
    ("focus_window", ("1",)),
    ("wait", (10,)),
    ("run_command", ("ls",)),
    ("write_file", ("/tmp/a.txt", "data")),
]


@pytest.mark.unit
class TestUnknownSession:
    """Test suite for operations on unknown sessions."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,args", RESOLVING_OPERATIONS)
    async def test_unknown_session_is_not_found(
        self, multiplexer, orchestrator, session, method, args
    ):
        """Test that every operation fails with not-found and leaves the registry alone."""
        registry_before = list(orchestrator.get_all_sessions())

        with pytest.raises(SandboxNotFoundError, match="Session not found or not ready"):
            await getattr(multiplexer, method)("missing", *args)

        assert orchestrator.get_all_sessions() == registry_before
        assert session.status == SessionStatus.READY

    @pytest.mark.parametrize(
        "method,args",
        [
            ("get_session", ()),
            ("get_stream_url", ()),
            ("get_auth_key", ()),
            ("add_message", ("user", "hi")),
        ],
    )
    def test_unknown_session_sync_operations(self, multiplexer, orchestrator, method, args):
        with pytest.raises(SandboxNotFoundError):
            getattr(multiplexer, method)("missing", *args)

        assert orchestrator.get_all_sessions() == []

    @pytest.mark.asyncio
    async def test_unknown_session_container_info(self, multiplexer):
        with pytest.raises(SandboxNotFoundError):
            await multiplexer.get_container_info("missing")

    @pytest.mark.asyncio
    async def test_unknown_session_terminate(self, multiplexer):
        with pytest.raises(SandboxNotFoundError):
            await multiplexer.terminate_session("missing")

    @pytest.mark.asyncio
    async def test_session_not_ready(self, multiplexer, session, environment):
        """Test that a session outside ready/active is refused."""
        session.status = SessionStatus.INITIALIZING
        commands_before = list(environment.commands)

        with pytest.raises(SandboxNotFoundError, match="not ready"):
            await multiplexer.mouse_click(session.id)

        assert environment.commands == commands_before


@pytest.mark.unit
class TestSessionRegistry:
    """Test suite for registry passthrough operations."""

    @pytest.mark.asyncio
    async def test_list_and_get_sessions(self, multiplexer, session):
        assert multiplexer.list_sessions() == [session]
        assert multiplexer.get_session(session.id) is session

    @pytest.mark.asyncio
    async def test_add_message(self, multiplexer, session):
        message = multiplexer.add_message(session.id, "user", "open the browser")

        assert session.messages == [message]

    @pytest.mark.asyncio
    async def test_get_container_info(self, multiplexer, session, environment):
        info = await multiplexer.get_container_info(session.id)

        assert info.id == environment.id
        assert info.status == "running"


@pytest.mark.unit
class TestDesktopOperations:
    """Test suite for forwarded desktop operations."""

    @pytest.mark.asyncio
    async def test_launch_marks_session_active(self, multiplexer, session, environment):
        await multiplexer.launch_application(session.id, "firefox")

        assert environment.background_commands[-1] == "gtk-launch firefox"
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_screenshot(self, multiplexer, session):
        data = await multiplexer.screenshot(session.id)

        assert data.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_window_queries(self, multiplexer, session, environment):
        environment.script("xdotool getwindowfocus", "77\n")
        environment.script("xdotool getwindowname 77", "Terminal\n")

        window_id = await multiplexer.get_current_window_id(session.id)

        assert await multiplexer.get_window_title(session.id, window_id) == "Terminal"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action,expected",
        [
            (InputAction(type=ActionType.LEFT_CLICK, x=1, y=2), "xdotool click 1"),
            (InputAction(type=ActionType.RIGHT_CLICK), "xdotool click 3"),
            (InputAction(type=ActionType.MIDDLE_CLICK), "xdotool click 2"),
            (InputAction(type=ActionType.DOUBLE_CLICK), "xdotool click --repeat 2 1"),
            (
                InputAction(type=ActionType.SCROLL, direction=ScrollDirection.UP, amount=2),
                "xdotool click --repeat 2 4",
            ),
            (InputAction(type=ActionType.MOVE_MOUSE, x=5, y=6), "xdotool mousemove --sync 5 6"),
            (
                InputAction(type=ActionType.MOUSE_PRESS, button=MouseButton.RIGHT),
                "xdotool mousedown 3",
            ),
            (InputAction(type=ActionType.MOUSE_RELEASE), "xdotool mouseup 1"),
            (
                InputAction(type=ActionType.WRITE, text="hi", delay_in_ms=10),
                "xdotool type --delay 10 -- hi",
            ),
            (InputAction(type=ActionType.PRESS, keys=["ctrl", "c"]), "xdotool key Control_L+c"),
            (InputAction(type=ActionType.PRESS, keys=["esc"]), "xdotool key Escape"),
        ],
    )
    async def test_dispatch_action(self, multiplexer, session, environment, action, expected):
        """Test that each action type reaches the matching command."""
        await multiplexer.dispatch_action(session.id, action)

        assert environment.commands[-1] == expected
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action",
        [
            InputAction(type=ActionType.WRITE),
            InputAction(type=ActionType.PRESS),
            InputAction(type=ActionType.MOVE_MOUSE),
            InputAction(type=ActionType.DRAG, x=1, y=2),
            InputAction(type=ActionType.FOCUS_WINDOW),
            InputAction(type=ActionType.LAUNCH),
            InputAction(type=ActionType.OPEN),
            InputAction(type=ActionType.WAIT),
            InputAction(type=ActionType.GET_APPLICATION_WINDOWS),
            InputAction(type=ActionType.GET_WINDOW_TITLE),
        ],
    )
    async def test_dispatch_action_missing_fields(self, multiplexer, session, environment, action):
        commands_before = list(environment.commands)
        background_before = list(environment.background_commands)

        with pytest.raises(ValueError):
            await multiplexer.dispatch_action(session.id, action)

        assert environment.commands == commands_before
        assert environment.background_commands == background_before
        assert session.status == SessionStatus.READY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action_type", list(ActionType))
    async def test_every_action_type_is_routed(
        self, multiplexer, session, environment, action_type
    ):
        """Test that no member of the action vocabulary is rejected."""
        environment.script("xdotool getmouselocation", "x:1 y:2 screen:0 window:3\n")
        environment.script("xrandr", "1024x768\n")
        environment.script("xdotool getwindowfocus", "77\n")
        environment.script("xdotool search", "77\n")
        environment.script("xdotool getwindowname", "Terminal\n")
        action = InputAction(
            type=action_type,
            x=1,
            y=2,
            end_x=3,
            end_y=4,
            text="hi",
            keys=["enter"],
            window_id="77",
            application="firefox",
            target="/tmp/a.txt",
            ms=1,
        )
        issued_before = len(environment.commands) + len(environment.background)

        await multiplexer.dispatch_action(session.id, action)

        assert len(environment.commands) + len(environment.background) > issued_before

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action,expected",
        [
            (InputAction(type=ActionType.GET_CURSOR_POSITION), CursorPosition(x=10, y=20)),
            (InputAction(type=ActionType.GET_SCREEN_SIZE), ScreenSize(width=1280, height=800)),
            (InputAction(type=ActionType.GET_CURRENT_WINDOW), "77"),
            (
                InputAction(type=ActionType.GET_APPLICATION_WINDOWS, application="xterm"),
                ["77", "78"],
            ),
            (InputAction(type=ActionType.GET_WINDOW_TITLE, window_id="77"), "Terminal"),
        ],
    )
    async def test_dispatch_query_returns_result(
        self, multiplexer, session, environment, action, expected
    ):
        """Test that queries return their result and leave the session ready."""
        environment.script("xdotool getmouselocation", "x:10 y:20 screen:0 window:77\n")
        environment.script("xrandr", "Screen 0: minimum 8 x 8\nDP-1 connected 1280x800+0+0\n")
        environment.script("xdotool getwindowfocus", "77\n")
        environment.script("xdotool search", "77\n78\n")
        environment.script("xdotool getwindowname 77", "Terminal\n")

        assert await multiplexer.dispatch_action(session.id, action) == expected
        assert session.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_dispatch_wait_leaves_session_ready(self, multiplexer, session, environment):
        result = await multiplexer.dispatch_action(
            session.id, InputAction(type=ActionType.WAIT, ms=250)
        )

        assert result is None
        assert environment.commands[-1] == "sleep 0.25"
        assert session.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_dispatch_launch_and_open(self, multiplexer, session, environment):
        await multiplexer.dispatch_action(
            session.id,
            InputAction(type=ActionType.LAUNCH, application="firefox", uri="https://example.com"),
        )
        await multiplexer.dispatch_action(
            session.id, InputAction(type=ActionType.OPEN, target="/tmp/report.pdf")
        )

        assert environment.background_commands[-2:] == [
            "gtk-launch firefox https://example.com",
            "xdg-open /tmp/report.pdf",
        ]
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_drag_and_focus_convenience_methods(self, multiplexer, session, environment):
        await multiplexer.drag(session.id, (10, 20), (30, 40))
        await multiplexer.focus_window(session.id, "77")

        assert environment.commands[-5:] == [
            "xdotool mousemove --sync 10 20",
            "xdotool mousedown 1",
            "xdotool mousemove --sync 30 40",
            "xdotool mouseup 1",
            "xdotool windowactivate --sync 77",
        ]
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_convenience_input_methods(self, multiplexer, session, environment):
        await multiplexer.mouse_click(session.id, 3, 4, button="right")
        await multiplexer.scroll(session.id, "up", 1)
        await multiplexer.press_key(session.id, ["ctrl", "alt", "delete"])
        await multiplexer.write_text(session.id, "Hello, World!", chunk_size=5, delay_in_ms=0)

        assert environment.commands[-7:] == [
            "xdotool mousemove --sync 3 4",
            "xdotool click 3",
            "xdotool click --repeat 1 4",
            "xdotool key Control_L+Alt_L+Delete",
            "xdotool type --delay 0 -- Hello",
            "xdotool type --delay 0 -- ', Wor'",
            "xdotool type --delay 0 -- 'ld!'",
        ]

    @pytest.mark.asyncio
    async def test_run_command_returns_output(self, multiplexer, session, environment):
        environment.script("echo hi", "hi\n")
        environment.script("ls /nope", CommandResult(stdout="", stderr="warning\n", exit_code=0))

        assert await multiplexer.run_command(session.id, "echo hi") == "hi\n"
        assert await multiplexer.run_command(session.id, "ls /nope") == "warning\n"
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_run_command_failure_surfaces_stderr(self, multiplexer, session, environment):
        environment.script("false", CommandExitError("false", 1, stderr="boom"))

        with pytest.raises(CommandExitError, match="boom"):
            await multiplexer.run_command(session.id, "false")

        assert session.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_write_file(self, multiplexer, session, environment):
        await multiplexer.write_file(session.id, "/tmp/notes.txt", "hello")

        assert environment.files["/tmp/notes.txt"] == b"hello"


@pytest.mark.unit
class TestStreamOperations:
    """Test suite for session-keyed stream control."""

    @pytest.mark.asyncio
    async def test_start_stream_without_auth(self, multiplexer, session):
        info = await multiplexer.start_stream(session.id)

        assert isinstance(info, StreamInfo)
        assert info.auth_key is None
        assert info.url == (
            f"http://localhost:{session.ports.vnc_port}/vnc.html?autoconnect=true&resize=scale"
        )
        assert session.status == SessionStatus.ACTIVE
        with pytest.raises(StreamStateError):
            multiplexer.get_auth_key(session.id)

    @pytest.mark.asyncio
    async def test_stream_url_with_auth(self, multiplexer, session):
        info = await multiplexer.start_stream(session.id, require_auth=True)

        assert info.auth_key == multiplexer.get_auth_key(session.id)
        assert multiplexer.get_stream_url(session.id, require_auth=True) == info.url
        assert "password=" not in multiplexer.get_stream_url(session.id)


@pytest.mark.unit
class TestEndToEnd:
    """Full session scenario."""

    @pytest.mark.asyncio
    async def test_session_scenario(self, fake_runtime, port_allocator):
        """Test create, stream with auth, stop, terminate."""
        settings = Settings(_env_file=None, readiness_timeout=5.0, readiness_interval=0.5)

        script_ready_desktop = fake_runtime.configure

        def configure(environment):
            script_ready_desktop(environment)
            environment.script(
                "xdpyinfo",
                CommandExitError("xdpyinfo -display :0", 1),
                CommandExitError("xdpyinfo -display :0", 1),
                "name of display: :0",
            )

        fake_runtime.configure = configure
        orchestrator = SessionOrchestrator(
            fake_runtime, settings=settings, port_allocator=port_allocator
        )
        multiplexer = SessionMultiplexer(orchestrator)

        started = time.monotonic()
        session = await multiplexer.create_session()
        assert time.monotonic() - started >= 0.9
        assert session.status == SessionStatus.READY
        environment = fake_runtime.environments[0]
        assert len(environment.commands_starting_with("xdpyinfo")) == 3

        info = await multiplexer.start_stream(session.id, require_auth=True)
        key = multiplexer.get_auth_key(session.id)
        assert key
        assert f"autoconnect=true&resize=scale&password={key}" in info.url

        await multiplexer.stop_stream(session.id)
        with pytest.raises(StreamStateError):
            multiplexer.get_auth_key(session.id)

        await multiplexer.terminate_session(session.id)
        assert session.status == SessionStatus.TERMINATED
        assert environment.removed is True
        with pytest.raises(SandboxNotFoundError):
            multiplexer.get_session(session.id)

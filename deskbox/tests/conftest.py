"""Pytest configuration and shared fixtures for testing.

The fake environment records every command it is asked to run and answers
from per-prefix scripts, so desktop components can be exercised without a
Docker daemon.
"""

import random
from collections import deque
from typing import Callable, Literal, Optional, Union

import pytest

from deskbox.application.services.desktop.sandbox_handle import SandboxHandle
from deskbox.application.services.session_multiplexer import SessionMultiplexer
from deskbox.application.services.session_orchestrator import SessionOrchestrator
from deskbox.configuration.config import Settings
from deskbox.domain.model.sandbox.exceptions import SandboxNotFoundError
from deskbox.domain.ports.services.environment_port import (
    CommandHandle,
    CommandResult,
    EnvironmentRuntimePort,
    EnvironmentState,
    IsolatedEnvironment,
)
from deskbox.infrastructure.adapters.secondary.sandbox.port_allocator import PortAllocator

Outcome = Union[str, CommandResult, Exception]

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-image"


class FakeCommandHandle(CommandHandle):
    def __init__(self, pid: int, command: str, environment: "FakeEnvironment") -> None:
        super().__init__(pid)
        self.command = command
        self.killed = False
        self._environment = environment

    async def kill(self) -> bool:
        self.killed = True
        self._environment.killed_pids.append(self.pid)
        return True


class FakeEnvironment(IsolatedEnvironment):
    """Scripted in-memory isolated environment."""

    def __init__(self, environment_id: str = "env-123", public_host: str = "localhost") -> None:
        self._id = environment_id
        self._public_host = public_host
        self._scripts: list[tuple[str, deque]] = []
        self._next_pid = 1000

        self.commands: list[str] = []
        self.background: list[FakeCommandHandle] = []
        self.killed_pids: list[int] = []
        self.files: dict[str, bytes] = {}
        self.removed_files: list[str] = []

        self.running = False
        self.started = False
        self.stopped = False
        self.removed = False
        self.created_at = None
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.remove_error: Optional[Exception] = None
        self.inspect_error: Optional[Exception] = None

    @property
    def id(self) -> str:
        return self._id

    def script(self, prefix: str, *outcomes: Outcome) -> None:
        """
        Answer commands starting with ``prefix`` with ``outcomes`` in order.

        A string is returned as stdout with exit code 0, an exception is
        raised, and the last outcome repeats once the others are used up.
        Later scripts take precedence over earlier ones.
        """
        self._scripts.insert(0, (prefix, deque(outcomes)))

    def commands_starting_with(self, prefix: str) -> list[str]:
        return [c for c in self.commands if c.startswith(prefix)]

    @property
    def background_commands(self) -> list[str]:
        return [h.command for h in self.background]

    async def start(self) -> None:
        if self.start_error:
            raise self.start_error
        self.started = True
        self.running = True

    async def inspect(self) -> EnvironmentState:
        if self.inspect_error:
            raise self.inspect_error
        return EnvironmentState(running=self.running, created_at=self.created_at)

    async def stop(self) -> None:
        if self.stop_error:
            raise self.stop_error
        self.stopped = True
        self.running = False

    async def remove(self) -> None:
        if self.remove_error:
            raise self.remove_error
        self.removed = True

    async def run(self, command: str, timeout_ms: Optional[int] = None) -> CommandResult:
        self.commands.append(command)
        if command.startswith("scrot "):
            self.files[command.split()[-1]] = FAKE_PNG

        outcome = self._next_outcome(command)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, CommandResult):
            return outcome
        return CommandResult(stdout=outcome, stderr="", exit_code=0)

    async def run_background(self, command: str) -> FakeCommandHandle:
        self._next_pid += 1
        handle = FakeCommandHandle(self._next_pid, command, self)
        self.background.append(handle)
        return handle

    async def read_file(
        self, path: str, format: Literal["bytes", "text"] = "bytes"
    ) -> bytes | str:
        if path not in self.files:
            raise SandboxNotFoundError(f"No such file: {path}", sandbox_id=self.id)
        data = self.files[path]
        return data.decode("utf-8") if format == "text" else data

    async def write_file(self, path: str, data: bytes | str) -> None:
        self.files[path] = data.encode("utf-8") if isinstance(data, str) else data

    async def remove_file(self, path: str) -> None:
        self.removed_files.append(path)
        self.files.pop(path, None)

    def get_host(self, port: int) -> str:
        return f"{self._public_host}:{port}"

    def _next_outcome(self, command: str) -> Outcome:
        for prefix, outcomes in self._scripts:
            if command.startswith(prefix):
                return outcomes.popleft() if len(outcomes) > 1 else outcomes[0]
        return ""


def script_ready_desktop(environment: FakeEnvironment) -> FakeEnvironment:
    """Script a desktop whose display answers and whose relay port opens at once."""
    environment.script("xdpyinfo", "name of display: :0")
    environment.script("netstat", "tcp  0  0 0.0.0.0:6080  0.0.0.0:*  LISTEN")
    return environment


class FakeRuntime(EnvironmentRuntimePort):
    """Creates FakeEnvironments and records every create call."""

    def __init__(self, configure: Callable[[FakeEnvironment], object] = script_ready_desktop):
        self.configure = configure
        self.create_calls: list[dict] = []
        self.environments: list[FakeEnvironment] = []
        self.create_error: Optional[Exception] = None

    async def create(
        self,
        image: str,
        environment: dict[str, str],
        port_bindings: dict[int, int],
    ) -> FakeEnvironment:
        self.create_calls.append(
            {"image": image, "environment": environment, "port_bindings": port_bindings}
        )
        if self.create_error:
            raise self.create_error
        fake = FakeEnvironment(environment_id=f"env-{len(self.environments) + 1:012d}")
        self.configure(fake)
        self.environments.append(fake)
        return fake


# --- Fixtures ---


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast readiness polling and no .env lookup."""
    return Settings(
        _env_file=None,
        readiness_timeout=0.3,
        readiness_interval=0.01,
        type_delay_ms=0,
    )


@pytest.fixture
def fake_environment() -> FakeEnvironment:
    return script_ready_desktop(FakeEnvironment())


@pytest.fixture
def sandbox_handle(fake_environment) -> SandboxHandle:
    """A handle over the fake environment with fast polling."""
    return SandboxHandle(fake_environment, readiness_timeout=0.3, readiness_interval=0.01)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def port_allocator() -> PortAllocator:
    return PortAllocator(rng=random.Random(42))


@pytest.fixture
def orchestrator(fake_runtime, test_settings, port_allocator) -> SessionOrchestrator:
    return SessionOrchestrator(fake_runtime, settings=test_settings, port_allocator=port_allocator)


@pytest.fixture
def multiplexer(orchestrator) -> SessionMultiplexer:
    return SessionMultiplexer(orchestrator)

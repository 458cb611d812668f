"""Environment Port - Abstract interface for isolated desktop environments.

An isolated environment (container or microVM) hosts one session's desktop.
The core talks to it only through the contracts below.

Error contract for command execution:
- CommandExitError: the command ran and exited non-zero
- SandboxTransportError: the command could not be run at all
- SandboxTimeoutError: a foreground command exceeded its timeout
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Literal


@dataclass
class CommandResult:
    """Result of a foreground remote command."""

    stdout: str
    stderr: str
    exit_code: int
    pid: int | None = None


@dataclass
class EnvironmentState:
    """Live-probed state of an isolated environment."""

    running: bool
    created_at: datetime | None = None


class CommandHandle(ABC):
    """Handle to a remote process launched in the background."""

    def __init__(self, pid: int) -> None:
        self.pid = pid

    @abstractmethod
    async def kill(self) -> bool:
        """
        Kill the background process.

        Returns:
            True if the process was signalled, False if it was already gone
        """


class IsolatedEnvironment(ABC):
    """
    One running isolated environment.

    Exposes lifecycle control, remote command execution, and file access.
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Runtime identifier of the environment."""

    @abstractmethod
    async def start(self) -> None:
        """Start the environment."""

    @abstractmethod
    async def inspect(self) -> EnvironmentState:
        """Probe the environment's current state."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the environment."""

    @abstractmethod
    async def remove(self) -> None:
        """Remove the environment and its filesystem."""

    @abstractmethod
    async def run(self, command: str, timeout_ms: int | None = None) -> CommandResult:
        """
        Run a shell command in the foreground.

        Args:
            command: Shell command line
            timeout_ms: Maximum run time; None or 0 means unbounded

        Returns:
            CommandResult with captured output

        Raises:
            CommandExitError: If the command exits non-zero
            SandboxTransportError: If the command cannot be run
            SandboxTimeoutError: If the timeout elapses
        """

    @abstractmethod
    async def run_background(self, command: str) -> CommandHandle:
        """
        Launch a shell command as a detached background process.

        The process has no timeout; it runs until killed or until the
        environment is destroyed.
        """

    @abstractmethod
    async def read_file(
        self, path: str, format: Literal["bytes", "text"] = "bytes"
    ) -> bytes | str:
        """Read a file from the environment's filesystem."""

    @abstractmethod
    async def write_file(self, path: str, data: bytes | str) -> None:
        """Write a file into the environment's filesystem."""

    @abstractmethod
    async def remove_file(self, path: str) -> None:
        """Remove a file from the environment's filesystem."""

    @abstractmethod
    def get_host(self, port: int) -> str:
        """Public ``host:port`` under which an environment port is reachable."""


class EnvironmentRuntimePort(ABC):
    """Creates isolated environments."""

    @abstractmethod
    async def create(
        self,
        image: str,
        environment: dict[str, str],
        port_bindings: dict[int, int],
    ) -> IsolatedEnvironment:
        """
        Create (but do not start) an isolated environment.

        Args:
            image: Environment image
            environment: Environment variables
            port_bindings: Container port -> host port

        Returns:
            The created environment

        Raises:
            SandboxProvisioningError: If the runtime rejects the request
        """

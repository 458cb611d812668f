"""Sandbox exception types with fine-grained error handling.

The hierarchy separates a remote command that ran and failed
(CommandExitError) from a remote channel that could not run the command at
all (SandboxTransportError). Readiness polling depends on that split.
"""

from typing import Any, Dict, Optional


class SandboxError(Exception):
    """Base exception for all sandbox-related errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.sandbox_id = sandbox_id
        self.operation = operation
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "sandbox_id": self.sandbox_id,
            "operation": self.operation,
            "details": self.details,
        }


class SandboxNotFoundError(SandboxError):
    """Raised when a session or sandbox handle is unknown."""

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, sandbox_id, operation or "lookup")


class StreamAlreadyRunningError(SandboxError):
    """Raised when a stream start finds a screen-share server already running."""

    def __init__(
        self, message: str = "Stream is already running", sandbox_id: Optional[str] = None
    ):
        super().__init__(message, sandbox_id, "stream_start")


class StreamStateError(SandboxError):
    """Raised when a stream query does not fit the stream's current state."""

    def __init__(self, message: str, sandbox_id: Optional[str] = None):
        super().__init__(message, sandbox_id, "stream")


class SandboxTimeoutError(SandboxError):
    """Raised when a sandbox operation times out."""

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(message, sandbox_id, operation)
        self.timeout_seconds = timeout_seconds
        self.retryable = True


class SandboxStartupTimeoutError(SandboxTimeoutError):
    """Raised when the display or the web relay does not become ready in time."""

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(message, sandbox_id, operation or "startup", timeout_seconds)
        self.retryable = False


class OutputParseError(SandboxError):
    """Raised when introspection output does not match the expected pattern."""

    def __init__(self, message: str, output: str = "", operation: Optional[str] = None):
        super().__init__(message, None, operation or "parse", {"output": output})
        self.output = output


class SandboxTransportError(SandboxError):
    """Raised when the remote execution channel itself fails."""

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, sandbox_id, operation or "transport")
        self.retryable = True


class SandboxProvisioningError(SandboxTransportError):
    """Raised when the environment runtime fails to create, start or inspect."""

    def __init__(
        self,
        message: str,
        sandbox_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, sandbox_id, operation or "provision")
        self.retryable = False


class CommandExitError(SandboxError):
    """Raised when a remote command ran but exited with a non-zero code."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        sandbox_id: Optional[str] = None,
    ):
        detail = stderr.strip() or stdout.strip() or f"exit code {exit_code}"
        super().__init__(
            f"Command failed: {detail}",
            sandbox_id,
            "run_command",
            {"command": command, "exit_code": exit_code},
        )
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable.

    Args:
        error: The exception to check

    Returns:
        True if the error should be retried, False otherwise
    """
    if isinstance(error, SandboxError):
        return getattr(error, "retryable", False)
    return False

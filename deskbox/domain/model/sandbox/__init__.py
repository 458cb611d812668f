"""Sandbox domain models.

This module provides the error hierarchy shared by every sandbox operation:
- SandboxError: Base class with API serialization and a retryable flag
- CommandExitError: A remote command ran and exited non-zero
- SandboxTransportError: The remote channel could not run the command
"""

from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    OutputParseError,
    SandboxError,
    SandboxNotFoundError,
    SandboxProvisioningError,
    SandboxStartupTimeoutError,
    SandboxTimeoutError,
    SandboxTransportError,
    StreamAlreadyRunningError,
    StreamStateError,
    is_retryable_error,
)

__all__ = [
    "CommandExitError",
    "OutputParseError",
    "SandboxError",
    "SandboxNotFoundError",
    "SandboxProvisioningError",
    "SandboxStartupTimeoutError",
    "SandboxTimeoutError",
    "SandboxTransportError",
    "StreamAlreadyRunningError",
    "StreamStateError",
    "is_retryable_error",
]

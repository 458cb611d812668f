"""Sandbox adapters for isolated desktop environments.

This module provides:
- DockerEnvironmentRuntime: Creates desktop containers
- DockerEnvironment: Command and file access inside one container
- PortAllocator: Random-offset host port selection
"""

from deskbox.infrastructure.adapters.secondary.sandbox.docker_environment import (
    DockerCommandHandle,
    DockerEnvironment,
    DockerEnvironmentRuntime,
)
from deskbox.infrastructure.adapters.secondary.sandbox.port_allocator import PortAllocator

__all__ = [
    "DockerCommandHandle",
    "DockerEnvironment",
    "DockerEnvironmentRuntime",
    "PortAllocator",
]

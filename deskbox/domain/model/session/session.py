"""Session domain model.

State Diagram:
    ┌──────────────┐    ┌───────┐    ┌────────┐    ┌────────────┐
    │ INITIALIZING │───▶│ READY │───▶│ ACTIVE │───▶│ TERMINATED │
    └──────────────┘    └───────┘    └────────┘    └────────────┘
           │                │                             ▲
           └────────────────┴─────────────────────────────┘
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(Enum):
    """Lifecycle status of a desktop session."""

    INITIALIZING = "initializing"
    READY = "ready"
    ACTIVE = "active"
    TERMINATED = "terminated"


class MessageRole(Enum):
    """Author of a session message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class InvalidStateTransitionError(Exception):
    """Raised when an invalid session status transition is attempted."""

    def __init__(
        self,
        from_status: SessionStatus,
        to_status: SessionStatus,
        session_id: str | None = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.session_id = session_id
        message = (
            f"Invalid state transition from {from_status.value} to {to_status.value}"
            f"{f' for session {session_id}' if session_id else ''}"
        )
        super().__init__(message)


VALID_TRANSITIONS: frozenset[tuple[SessionStatus, SessionStatus]] = frozenset(
    [
        (SessionStatus.INITIALIZING, SessionStatus.READY),
        (SessionStatus.INITIALIZING, SessionStatus.TERMINATED),  # Creation failed
        (SessionStatus.READY, SessionStatus.ACTIVE),
        (SessionStatus.READY, SessionStatus.TERMINATED),
        (SessionStatus.ACTIVE, SessionStatus.TERMINATED),
    ]
)


def can_transition(from_status: SessionStatus, to_status: SessionStatus) -> bool:
    """Check whether a status transition is allowed."""
    return (from_status, to_status) in VALID_TRANSITIONS


@dataclass
class Message:
    """A message exchanged within a session."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PortAllocation:
    """Host ports exclusively owned by one session."""

    api_port: int
    vnc_port: int
    cdp_port: int

    def as_list(self) -> list[int]:
        """Get all ports as list."""
        return [self.api_port, self.vnc_port, self.cdp_port]

    def to_dict(self) -> dict[str, int]:
        return {"api": self.api_port, "vnc": self.vnc_port, "cdp": self.cdp_port}


@dataclass
class Session:
    """A logical session bound to one isolated environment.

    Attributes:
        ports: Allocated host port triple, also mirrored in metadata["ports"]
        environment_id: Identifier of the backing isolated environment
        messages: Ordered log of exchanged messages
        metadata: Arbitrary metadata; always carries the port triple
    """

    ports: PortAllocation
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    environment_id: str | None = None
    status: SessionStatus = SessionStatus.INITIALIZING
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    messages: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.metadata.setdefault("ports", self.ports.to_dict())

    @property
    def is_ready(self) -> bool:
        """Whether desktop operations may be issued against this session."""
        return self.status in (SessionStatus.READY, SessionStatus.ACTIVE)

    def transition(self, to_status: SessionStatus) -> None:
        """Move to a new status, rejecting backward or skipping transitions."""
        if not can_transition(self.status, to_status):
            raise InvalidStateTransitionError(self.status, to_status, self.id)
        self.status = to_status
        self.updated_at = datetime.now()

    def add_message(self, role: MessageRole, content: str) -> Message:
        message = Message(role=role, content=content)
        self.messages.append(message)
        self.updated_at = datetime.now()
        return message

    def to_dict(self) -> dict[str, Any]:
        """Convert session to dictionary for API responses."""
        return {
            "id": self.id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "messages_count": len(self.messages),
            "metadata": self.metadata,
        }


@dataclass
class ContainerInfo:
    """Live-probed state of a session's isolated environment."""

    id: str
    status: str  # 'running' or 'stopped'
    ports: dict[str, int]
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "ports": self.ports,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

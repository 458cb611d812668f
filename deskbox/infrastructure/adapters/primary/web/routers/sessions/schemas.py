"""Pydantic schemas for the Sessions API.

Contains all request/response models for session and desktop operations.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel

from deskbox.domain.model.desktop.actions import (
    ActionType,
    InputAction,
    MouseButton,
    ScrollDirection,
)

# --- Session Schemas ---


class SessionResponse(BaseModel):
    """Session response."""

    id: str
    status: str
    created_at: str
    updated_at: str
    messages_count: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ListSessionsResponse(BaseModel):
    """List sessions response."""

    sessions: List[SessionResponse]
    total: int


class MessageRequest(BaseModel):
    """Append a user message to a session."""

    content: str = Field(..., min_length=1, description="Message text")


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    timestamp: str


class ContainerInfoResponse(BaseModel):
    """Live state of the session's environment."""

    id: str
    status: str = Field(..., description="running or stopped")
    ports: Dict[str, int]
    created_at: Optional[str] = None


class TerminateResponse(BaseModel):
    status: str = "terminated"
    session_id: str


# --- Desktop Schemas ---


class LaunchRequest(BaseModel):
    """Launch a desktop application."""

    application: str = Field(..., description="Desktop entry name, e.g. firefox")
    uri: Optional[str] = Field(default=None, description="Optional URI to open with it")


class StreamStartRequest(BaseModel):
    """Start the screen-share stream."""

    window_id: Optional[str] = Field(default=None, description="Share only this window")
    require_auth: bool = Field(default=False, description="Protect stream with a password")


class StreamResponse(BaseModel):
    url: str
    auth_key: Optional[str] = None


class StreamStopResponse(BaseModel):
    status: str = "stopped"


class AuthKeyResponse(BaseModel):
    auth_key: str


class CommandRequest(BaseModel):
    """Run a shell command inside the session's environment."""

    command: str = Field(..., min_length=1)
    timeout_ms: Optional[int] = Field(default=None, gt=0)


class CommandResponse(BaseModel):
    output: str


class ActionResponse(BaseModel):
    status: str = "ok"
    action: str


# --- Input Action Schemas ---


class ClickAction(BaseModel):
    action: Literal["click"]
    x: Optional[int] = None
    y: Optional[int] = None
    button: Literal["left", "right", "middle"] = "left"

    def to_input_action(self) -> InputAction:
        action_type = {
            "left": ActionType.LEFT_CLICK,
            "right": ActionType.RIGHT_CLICK,
            "middle": ActionType.MIDDLE_CLICK,
        }[self.button]
        return InputAction(
            type=action_type, x=self.x, y=self.y, button=MouseButton.from_name(self.button)
        )


class DoubleClickAction(BaseModel):
    action: Literal["double_click"]
    x: Optional[int] = None
    y: Optional[int] = None

    def to_input_action(self) -> InputAction:
        return InputAction(type=ActionType.DOUBLE_CLICK, x=self.x, y=self.y)


class ScrollAction(BaseModel):
    action: Literal["scroll"]
    direction: Literal["up", "down"] = "down"
    amount: int = Field(default=1, ge=1)
    x: Optional[int] = None
    y: Optional[int] = None

    def to_input_action(self) -> InputAction:
        return InputAction(
            type=ActionType.SCROLL,
            x=self.x,
            y=self.y,
            direction=ScrollDirection[self.direction.upper()],
            amount=self.amount,
        )


class MoveAction(BaseModel):
    action: Literal["move"]
    x: int
    y: int

    def to_input_action(self) -> InputAction:
        return InputAction(type=ActionType.MOVE_MOUSE, x=self.x, y=self.y)


class WriteAction(BaseModel):
    action: Literal["write"]
    text: str
    chunk_size: Optional[int] = Field(default=None, ge=1)
    delay_in_ms: Optional[int] = Field(default=None, ge=0)

    def to_input_action(self) -> InputAction:
        return InputAction(
            type=ActionType.WRITE,
            text=self.text,
            chunk_size=self.chunk_size,
            delay_in_ms=self.delay_in_ms,
        )


class PressAction(BaseModel):
    action: Literal["press"]
    keys: Union[str, List[str]] = Field(..., description="A key or an ordered chord")

    def to_input_action(self) -> InputAction:
        keys = [self.keys] if isinstance(self.keys, str) else list(self.keys)
        return InputAction(type=ActionType.PRESS, keys=keys)


ActionPayload = Annotated[
    Union[ClickAction, DoubleClickAction, ScrollAction, MoveAction, WriteAction, PressAction],
    Field(discriminator="action"),
]


class ActionRequest(RootModel[ActionPayload]):
    """One input action, discriminated by its ``action`` field."""

    def to_input_action(self) -> InputAction:
        return self.root.to_input_action()

    @property
    def action(self) -> str:
        return self.root.action

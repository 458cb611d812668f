"""Session lifecycle endpoints.

Provides CRUD operations for sessions:
- create_session: Provision a sandbox and boot its desktop
- list_sessions: List all sessions
- get_session: Get one session
- add_message: Append a user message
- get_container_info: Live container state and ports
- terminate_session: Tear the sandbox down
"""

import logging

from fastapi import APIRouter, Depends

from deskbox.application.services.session_multiplexer import SessionMultiplexer
from deskbox.domain.model.session.session import MessageRole

from .schemas import (
    ContainerInfoResponse,
    ListSessionsResponse,
    MessageRequest,
    MessageResponse,
    SessionResponse,
    TerminateResponse,
)
from .utils import get_session_multiplexer, session_to_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create", response_model=SessionResponse)
async def create_session(
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """
    Create a new desktop session.

    Provisions an isolated environment and waits until its display is up.
    No session is registered when this fails.
    """
    session = await multiplexer.create_session()
    return session_to_response(session)


@router.get("/", response_model=ListSessionsResponse)
async def list_sessions(
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """List all sessions."""
    sessions = [session_to_response(s) for s in multiplexer.list_sessions()]
    return ListSessionsResponse(sessions=sessions, total=len(sessions))


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Get session status and information."""
    return session_to_response(multiplexer.get_session(session_id))


@router.post("/{session_id}/message", response_model=MessageResponse)
async def add_message(
    session_id: str,
    request: MessageRequest,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Append a user message to the session log."""
    message = multiplexer.add_message(session_id, MessageRole.USER, request.content)
    return MessageResponse(**message.to_dict())


@router.get("/{session_id}/container", response_model=ContainerInfoResponse)
async def get_container_info(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Get live container status and port allocation."""
    info = await multiplexer.get_container_info(session_id)
    return ContainerInfoResponse(**info.to_dict())


@router.delete("/{session_id}", response_model=TerminateResponse)
async def terminate_session(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Terminate a session and remove its environment."""
    await multiplexer.terminate_session(session_id)
    return TerminateResponse(session_id=session_id)

"""Desktop control endpoints.

Launch applications, capture the screen, drive the screen-share stream,
dispatch input actions and run shell commands inside a session's sandbox.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from deskbox.application.services.session_multiplexer import SessionMultiplexer

from .schemas import (
    ActionRequest,
    ActionResponse,
    AuthKeyResponse,
    CommandRequest,
    CommandResponse,
    LaunchRequest,
    StreamResponse,
    StreamStartRequest,
    StreamStopResponse,
)
from .utils import get_session_multiplexer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{session_id}/launch", response_model=ActionResponse)
async def launch_application(
    session_id: str,
    request: LaunchRequest,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Launch a desktop application in the background."""
    await multiplexer.launch_application(session_id, request.application, request.uri)
    return ActionResponse(action="launch")


@router.get(
    "/{session_id}/screenshot",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def take_screenshot(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Capture the desktop as a PNG image."""
    image = await multiplexer.screenshot(session_id)
    return Response(content=image, media_type="image/png")


@router.post("/{session_id}/stream/start", response_model=StreamResponse)
async def start_stream(
    session_id: str,
    request: Optional[StreamStartRequest] = None,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """
    Start the screen-share stream.

    With require_auth the returned URL already carries the password.
    """
    request = request or StreamStartRequest()
    info = await multiplexer.start_stream(
        session_id, window_id=request.window_id, require_auth=request.require_auth
    )
    return StreamResponse(**info.to_dict())


@router.post("/{session_id}/stream/stop", response_model=StreamStopResponse)
async def stop_stream(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Stop the screen-share stream; stopping twice is harmless."""
    await multiplexer.stop_stream(session_id)
    return StreamStopResponse()


@router.get("/{session_id}/stream/url", response_model=StreamResponse)
async def get_stream_url(
    session_id: str,
    require_auth: bool = Query(False, description="Embed the stream password"),
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Get the stream connection URL."""
    url = multiplexer.get_stream_url(session_id, require_auth=require_auth)
    auth_key = multiplexer.get_auth_key(session_id) if require_auth else None
    return StreamResponse(url=url, auth_key=auth_key)


@router.get("/{session_id}/stream/auth-key", response_model=AuthKeyResponse)
async def get_stream_auth_key(
    session_id: str,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Get the stream password; fails unless the stream was started with auth."""
    return AuthKeyResponse(auth_key=multiplexer.get_auth_key(session_id))


@router.post("/{session_id}/action", response_model=ActionResponse)
async def dispatch_action(
    session_id: str,
    request: ActionRequest,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Dispatch one input action (click, double_click, scroll, move, write, press)."""
    await multiplexer.dispatch_action(session_id, request.to_input_action())
    return ActionResponse(action=request.action)


@router.post("/{session_id}/command", response_model=CommandResponse)
async def run_command(
    session_id: str,
    request: CommandRequest,
    multiplexer: SessionMultiplexer = Depends(get_session_multiplexer),
):
    """Run a shell command and return its captured output."""
    output = await multiplexer.run_command(
        session_id, request.command, timeout_ms=request.timeout_ms
    )
    return CommandResponse(output=output)

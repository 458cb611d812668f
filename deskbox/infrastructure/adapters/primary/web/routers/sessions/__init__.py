"""Sessions API router module.

This module aggregates all session-related endpoints from sub-modules.
"""

from fastapi import APIRouter

from . import desktop, lifecycle
from .utils import get_session_multiplexer, get_session_orchestrator, shutdown_sessions

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

router.include_router(lifecycle.router)
router.include_router(desktop.router)

__all__ = [
    "router",
    "get_session_multiplexer",
    "get_session_orchestrator",
    "shutdown_sessions",
]

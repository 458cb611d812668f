"""Shared utilities for the Sessions API.

Contains singleton management for the environment runtime, the session
orchestrator and the multiplexer. Tests replace them through
``app.dependency_overrides``.
"""

import logging
import threading

from deskbox.application.services.session_multiplexer import SessionMultiplexer
from deskbox.application.services.session_orchestrator import SessionOrchestrator
from deskbox.configuration.config import get_settings
from deskbox.domain.model.session.session import Session
from deskbox.infrastructure.adapters.secondary.sandbox.docker_environment import (
    DockerEnvironmentRuntime,
)

from .schemas import SessionResponse

logger = logging.getLogger(__name__)

# Thread-safe singleton management with lock
_singleton_lock = threading.Lock()
_orchestrator: SessionOrchestrator | None = None
_multiplexer: SessionMultiplexer | None = None


def get_session_orchestrator() -> SessionOrchestrator:
    """Get or create the session orchestrator singleton."""
    global _orchestrator

    with _singleton_lock:
        if _orchestrator is None:
            settings = get_settings()
            runtime = DockerEnvironmentRuntime(
                public_host=settings.stream_public_host,
                stop_timeout=settings.sandbox_stop_timeout,
            )
            _orchestrator = SessionOrchestrator(runtime, settings=settings)
            logger.info("Initialized session orchestrator")
        return _orchestrator


def get_session_multiplexer() -> SessionMultiplexer:
    """Get or create the session multiplexer singleton."""
    global _multiplexer

    orchestrator = get_session_orchestrator()
    with _singleton_lock:
        if _multiplexer is None:
            _multiplexer = SessionMultiplexer(orchestrator)
        return _multiplexer


async def shutdown_sessions() -> None:
    """Terminate all sessions if the orchestrator was ever created."""
    global _orchestrator, _multiplexer

    with _singleton_lock:
        orchestrator = _orchestrator
        _orchestrator = None
        _multiplexer = None

    if orchestrator is not None:
        count = await orchestrator.terminate_all()
        logger.info(f"Terminated {count} session(s) on shutdown")


def session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(**session.to_dict())

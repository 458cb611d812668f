"""Session Orchestrator - registry of desktop sessions and their environments.

Creates one isolated environment and one SandboxHandle per session, tracks
session status, and tears everything down on termination. All state lives in
process memory; a restart loses every session.
"""

import asyncio
import logging
from typing import Optional

from deskbox.application.services.desktop.sandbox_handle import SandboxHandle
from deskbox.configuration.config import Settings, get_settings
from deskbox.domain.model.sandbox.exceptions import SandboxNotFoundError
from deskbox.domain.model.session.session import (
    ContainerInfo,
    Message,
    MessageRole,
    PortAllocation,
    Session,
    SessionStatus,
)
from deskbox.domain.ports.services.environment_port import (
    EnvironmentRuntimePort,
    IsolatedEnvironment,
)
from deskbox.infrastructure.adapters.secondary.sandbox.port_allocator import PortAllocator

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """
    Session registry.

    Inserts and deletes are serialized by an asyncio lock; lookups read the
    dict directly. Sessions never share any other mutable state, so their
    operations run concurrently.

    Usage:
        orchestrator = SessionOrchestrator(runtime)
        session = await orchestrator.create_session()
        orchestrator.add_message(session.id, "user", "hello")
        await orchestrator.terminate_session(session.id)
    """

    def __init__(
        self,
        runtime: EnvironmentRuntimePort,
        settings: Optional[Settings] = None,
        port_allocator: Optional[PortAllocator] = None,
        bootstrap_desktop: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            runtime: Isolated environment runtime
            settings: Application settings (defaults to get_settings())
            port_allocator: Port allocator (defaults to one built from settings)
            bootstrap_desktop: Bring up the desktop during session creation
        """
        self._runtime = runtime
        self._settings = settings or get_settings()
        self._port_allocator = port_allocator or PortAllocator.from_settings(self._settings)
        self._bootstrap_desktop = bootstrap_desktop

        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}
        self._environments: dict[str, IsolatedEnvironment] = {}
        self._handles: dict[str, SandboxHandle] = {}

    async def create_session(self) -> Session:
        """
        Provision an environment, boot its desktop and register the session.

        Returns:
            The new session in status READY

        Raises:
            SandboxError: If provisioning or bootstrap fails; nothing is registered
        """
        session = Session(ports=PortAllocation(0, 0, 0))
        ports = self._port_allocator.allocate_ports(session.id)
        session.ports = ports
        session.metadata["ports"] = ports.to_dict()

        environment: Optional[IsolatedEnvironment] = None
        try:
            environment = await self._runtime.create(
                image=self._settings.sandbox_image,
                environment={
                    "SANDBOX_API_PORT": str(ports.api_port),
                    "SANDBOX_VNC_PORT": str(ports.vnc_port),
                    "SANDBOX_CDP_PORT": str(ports.cdp_port),
                    "DISPLAY": self._settings.desktop_display,
                },
                port_bindings={port: port for port in ports.as_list()},
            )
            session.environment_id = environment.id
            await environment.start()

            handle = SandboxHandle.from_settings(
                environment, self._settings, stream_port=ports.vnc_port
            )
            if self._bootstrap_desktop:
                await handle.bootstrap()
        except Exception as e:
            logger.error(f"Failed to create session {session.id}: {e}")
            session.transition(SessionStatus.TERMINATED)
            if environment is not None:
                await self._discard_environment(session.id, environment)
            raise

        session.transition(SessionStatus.READY)
        async with self._lock:
            self._sessions[session.id] = session
            self._environments[session.id] = environment
            self._handles[session.id] = handle

        logger.info(
            f"Session created: {session.id} "
            f"(environment={environment.id[:12]}, ports={ports.to_dict()})"
        )
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_all_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get_handle(self, session_id: str) -> Optional[SandboxHandle]:
        return self._handles.get(session_id)

    def add_message(self, session_id: str, role: MessageRole | str, content: str) -> Message:
        """
        Append a message to a session's log.

        Raises:
            SandboxNotFoundError: If the session is unknown
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SandboxNotFoundError(
                f"Session {session_id} not found", sandbox_id=session_id, operation="add_message"
            )
        return session.add_message(MessageRole(role), content)

    def mark_active(self, session_id: str) -> None:
        """Move a READY session to ACTIVE; later calls are no-ops."""
        session = self._sessions.get(session_id)
        if session is not None and session.status is SessionStatus.READY:
            session.transition(SessionStatus.ACTIVE)
            logger.debug(f"Session {session_id} is now active")

    async def terminate_session(self, session_id: str) -> None:
        """
        Stop and remove the environment, then forget the session.

        Environment failures are logged and absorbed; the session always ends
        up TERMINATED and out of the registry.

        Raises:
            SandboxNotFoundError: If the session is unknown
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            environment = self._environments.pop(session_id, None)
            handle = self._handles.pop(session_id, None)

        if session is None:
            raise SandboxNotFoundError(
                f"Session {session_id} not found", sandbox_id=session_id, operation="terminate"
            )

        if handle is not None:
            try:
                await handle.stream.stop()
            except Exception as e:
                logger.warning(f"Error stopping stream of session {session_id}: {e}")

        if environment is not None:
            await self._discard_environment(session_id, environment)

        session.transition(SessionStatus.TERMINATED)
        logger.info(f"Session terminated: {session_id}")

    async def get_container_info(self, session_id: str) -> Optional[ContainerInfo]:
        """Live-probe the session's environment; None if the session is unknown."""
        session = self._sessions.get(session_id)
        environment = self._environments.get(session_id)
        if session is None or environment is None:
            return None

        try:
            state = await environment.inspect()
        except Exception as e:
            logger.error(f"Error getting container info for {session_id}: {e}")
            return None

        return ContainerInfo(
            id=environment.id,
            status="running" if state.running else "stopped",
            ports=session.metadata.get("ports", session.ports.to_dict()),
            created_at=state.created_at,
        )

    async def terminate_all(self) -> int:
        """Terminate every registered session (application shutdown)."""
        session_ids = list(self._sessions)
        for session_id in session_ids:
            try:
                await self.terminate_session(session_id)
            except SandboxNotFoundError:
                pass  # Terminated concurrently
        return len(session_ids)

    async def _discard_environment(
        self, session_id: str, environment: IsolatedEnvironment
    ) -> None:
        try:
            await environment.stop()
        except Exception as e:
            logger.warning(f"Error stopping environment of session {session_id}: {e}")
        try:
            await environment.remove()
        except Exception as e:
            logger.warning(f"Error removing environment of session {session_id}: {e}")

"""Docker Environment Adapter - isolated desktop environments as Docker containers.

Implements EnvironmentRuntimePort and IsolatedEnvironment on top of the
Docker SDK. Every SDK call is blocking and runs in the default executor.
"""

import asyncio
import io
import logging
import posixpath
import re
import shlex
import tarfile
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container
from requests.exceptions import RequestException

from deskbox.domain.model.sandbox.exceptions import (
    CommandExitError,
    OutputParseError,
    SandboxNotFoundError,
    SandboxProvisioningError,
    SandboxTimeoutError,
    SandboxTransportError,
)
from deskbox.domain.ports.services.environment_port import (
    CommandHandle,
    CommandResult,
    EnvironmentRuntimePort,
    EnvironmentState,
    IsolatedEnvironment,
)

logger = logging.getLogger(__name__)

_DOCKER_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(\.\d+)?")


def _parse_docker_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse Docker's RFC 3339 timestamps (nanosecond precision, UTC)."""
    if not value:
        return None
    match = _DOCKER_TIMESTAMP.match(value)
    if not match:
        return None
    fraction = (match.group(2) or ".0")[1:7].ljust(6, "0")
    parsed = datetime.strptime(f"{match.group(1)}.{fraction}", "%Y-%m-%dT%H:%M:%S.%f")
    return parsed.replace(tzinfo=timezone.utc)


class DockerCommandHandle(CommandHandle):
    """Background process inside a container, addressed by its process group."""

    def __init__(self, pid: int, environment: "DockerEnvironment") -> None:
        super().__init__(pid)
        self._environment = environment

    async def kill(self) -> bool:
        try:
            await self._environment.run(f"kill -TERM -- -{self.pid}")
        except CommandExitError:
            logger.debug(f"Background process {self.pid} already gone")
            return False
        return True


class DockerEnvironment(IsolatedEnvironment):
    """A single Docker container hosting one desktop."""

    def __init__(
        self,
        container: Container,
        public_host: str = "localhost",
        stop_timeout: int = 5,
    ) -> None:
        self._container = container
        self._public_host = public_host
        self._stop_timeout = stop_timeout

    @property
    def id(self) -> str:
        return self._container.id

    async def _call(self, operation: str, func: Callable[[], Any]) -> Any:
        """Run a blocking SDK call in the executor and map Docker errors."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func)
        except NotFound as e:
            raise SandboxNotFoundError(
                message=f"Container not found: {self.id}",
                sandbox_id=self.id,
                operation=operation,
            ) from e
        except (APIError, DockerException, RequestException) as e:
            raise SandboxTransportError(
                message=f"Docker {operation} failed: {e}",
                sandbox_id=self.id,
                operation=operation,
            ) from e

    async def start(self) -> None:
        try:
            await self._call("start", self._container.start)
        except SandboxTransportError as e:
            raise SandboxProvisioningError(e.message, self.id, "start") from e
        logger.info(f"Started container {self.id[:12]}")

    async def inspect(self) -> EnvironmentState:
        try:
            await self._call("inspect", self._container.reload)
        except SandboxNotFoundError:
            return EnvironmentState(running=False)

        attrs = self._container.attrs or {}
        return EnvironmentState(
            running=bool(attrs.get("State", {}).get("Running")),
            created_at=_parse_docker_timestamp(attrs.get("Created")),
        )

    async def stop(self) -> None:
        await self._call("stop", lambda: self._container.stop(timeout=self._stop_timeout))

    async def remove(self) -> None:
        await self._call("remove", lambda: self._container.remove(force=True))
        logger.info(f"Removed container {self.id[:12]}")

    async def run(self, command: str, timeout_ms: Optional[int] = None) -> CommandResult:
        exec_call = self._call(
            "exec",
            lambda: self._container.exec_run(["/bin/bash", "-c", command], demux=True),
        )
        try:
            if timeout_ms:
                exec_result = await asyncio.wait_for(exec_call, timeout=timeout_ms / 1000)
            else:
                exec_result = await exec_call
        except asyncio.TimeoutError:
            raise SandboxTimeoutError(
                message=f"Command timed out after {timeout_ms}ms: {command}",
                sandbox_id=self.id,
                operation="exec",
                timeout_seconds=timeout_ms / 1000,
            )

        stdout_bytes, stderr_bytes = exec_result.output or (None, None)
        stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
        stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
        exit_code = exec_result.exit_code or 0

        if exit_code != 0:
            raise CommandExitError(command, exit_code, stdout, stderr, sandbox_id=self.id)
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def run_background(self, command: str) -> DockerCommandHandle:
        # setsid makes the process a group leader so kill can take its children too
        wrapped = (
            f"setsid nohup /bin/bash -c {shlex.quote(command)} "
            f"> /dev/null 2>&1 < /dev/null & echo $!"
        )
        result = await self.run(wrapped)
        pid_text = result.stdout.strip()
        if not pid_text.isdigit():
            raise OutputParseError(
                f"Failed to parse background PID from output: {result.stdout}",
                output=result.stdout,
                operation="run_background",
            )
        return DockerCommandHandle(int(pid_text), self)

    async def read_file(
        self, path: str, format: Literal["bytes", "text"] = "bytes"
    ) -> bytes | str:
        archive_data, _ = await self._call("read_file", lambda: self._container.get_archive(path))
        tar_bytes = b"".join(archive_data)

        with tarfile.open(fileobj=io.BytesIO(tar_bytes)) as tar:
            for member in tar.getmembers():
                if member.isfile():
                    f = tar.extractfile(member)
                    if f:
                        data = f.read()
                        return data.decode("utf-8") if format == "text" else data

        raise SandboxNotFoundError(
            message=f"Not a regular file: {path}",
            sandbox_id=self.id,
            operation="read_file",
        )

    async def write_file(self, path: str, data: bytes | str) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else data
        directory, name = posixpath.split(path)

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo(name=name)
            info.size = len(payload)
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(payload))

        await self.run(f"mkdir -p {shlex.quote(directory or '/')}")
        await self._call(
            "write_file",
            lambda: self._container.put_archive(directory or "/", buffer.getvalue()),
        )

    async def remove_file(self, path: str) -> None:
        await self.run(f"rm -f {shlex.quote(path)}")

    def get_host(self, port: int) -> str:
        return f"{self._public_host}:{port}"


class DockerEnvironmentRuntime(EnvironmentRuntimePort):
    """
    Creates desktop containers.

    Each container port in ``port_bindings`` is published on the given host
    port of all interfaces.
    """

    def __init__(
        self,
        docker_client: Optional[docker.DockerClient] = None,
        public_host: str = "localhost",
        stop_timeout: int = 5,
        container_name_prefix: str = "deskbox-sandbox",
    ) -> None:
        """
        Initialize the runtime.

        Args:
            docker_client: Docker client; created from the environment if None
            public_host: Host under which published ports are reachable
            stop_timeout: Seconds a container gets to stop before SIGKILL
            container_name_prefix: Prefix for container names
        """
        self._public_host = public_host
        self._stop_timeout = stop_timeout
        self._container_name_prefix = container_name_prefix

        if docker_client is not None:
            self._docker = docker_client
        else:
            try:
                self._docker = docker.from_env()
                logger.info("DockerEnvironmentRuntime initialized successfully")
            except DockerException as e:
                logger.error(f"Failed to initialize Docker client: {e}")
                raise SandboxProvisioningError(
                    message=f"Failed to connect to Docker: {e}",
                    operation="init",
                ) from e

    async def create(
        self,
        image: str,
        environment: dict[str, str],
        port_bindings: dict[int, int],
    ) -> DockerEnvironment:
        name = f"{self._container_name_prefix}-{uuid.uuid4().hex[:12]}"
        container_config = {
            "image": image,
            "name": name,
            "detach": True,
            "tty": True,
            "environment": environment,
            "ports": {
                f"{container_port}/tcp": ("0.0.0.0", host_port)
                for container_port, host_port in port_bindings.items()
            },
            "labels": {"deskbox.managed": "true"},
        }

        loop = asyncio.get_event_loop()
        try:
            container = await loop.run_in_executor(
                None,
                lambda: self._docker.containers.create(**container_config),
            )
        except ImageNotFound as e:
            logger.error(f"Sandbox image not found: {image}")
            raise SandboxProvisioningError(
                message=f"Docker image not found: {image}. Run: docker pull {image}",
                operation="create",
            ) from e
        except (APIError, DockerException, RequestException) as e:
            logger.error(f"Failed to create sandbox container: {e}")
            raise SandboxProvisioningError(
                message=f"Failed to create sandbox container: {e}",
                operation="create",
            ) from e

        logger.info(f"Created container {name} with image {image}")
        return DockerEnvironment(
            container,
            public_host=self._public_host,
            stop_timeout=self._stop_timeout,
        )

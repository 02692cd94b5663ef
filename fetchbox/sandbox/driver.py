"""
Container engine drivers.

The lifecycle manager only talks to the ``ContainerDriver`` protocol.
``DockerContainerDriver`` implements it on top of the Docker SDK; the SDK
is blocking, so every call is pushed to the default thread pool. Exec output
is read on a separate pool so long-running commands cannot starve the
lifecycle calls."""

from __future__ import annotations

import asyncio
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import socket as docker_socket

from fetchbox import telemetry
from fetchbox.exceptions import DriverUnavailableError
from fetchbox.sandbox.models import ContainerHandle, ContainerSpec, ExecHandle

logger = logging.getLogger(__name__)

_READ_SIZE = 4096
_EXEC_READERS = 32


@dataclass
class ExecSession:
    """A started command: its handle plus the raw multiplexed output."""

    handle: ExecHandle
    chunks: AsyncIterator[bytes]
    # Stops the output stream early, e.g. after a timeout
    abort: Optional[Callable[[], Awaitable[None]]] = None


class ContainerDriver(Protocol):
    """Operations the sandbox manager needs from a container engine."""

    async def ping(self) -> None:
        ...

    async def ensure_image(self, image: str, pull: bool = True) -> None:
        ...

    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        ...

    async def start(self, handle: ContainerHandle) -> None:
        ...

    async def stop(self, handle: ContainerHandle, grace_seconds: int) -> None:
        ...

    async def remove(self, handle: ContainerHandle, force: bool = True) -> None:
        ...

    async def pause(self, handle: ContainerHandle) -> None:
        ...

    async def unpause(self, handle: ContainerHandle) -> None:
        ...

    async def exec(
        self, handle: ContainerHandle, argv: List[str], work_dir: Optional[str] = None
    ) -> ExecSession:
        ...

    async def inspect_exit_code(self, exec_handle: ExecHandle) -> int:
        ...

    async def stats(self, handle: ContainerHandle) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class DockerContainerDriver:
    """
    ``ContainerDriver`` backed by the Docker Engine API.

    Containers run ``/bin/sh`` with stdin held open and no TTY, so exec
    output always arrives as the multiplexed frame stream.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client
        self._readers: Optional[ThreadPoolExecutor] = None

    @property
    def readers(self) -> ThreadPoolExecutor:
        if self._readers is None:
            self._readers = ThreadPoolExecutor(
                max_workers=_EXEC_READERS, thread_name_prefix="fetchbox-exec"
            )
        return self._readers

    @property
    def client(self) -> docker.DockerClient:
        """Lazily connect using the DOCKER_HOST / socket environment."""
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as exc:
                raise DriverUnavailableError(
                    f"Cannot connect to the Docker daemon: {exc}",
                    code="DriverUnavailable",
                ) from exc
        return self._client

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def ping(self) -> None:
        try:
            await self._run(self.client.ping)
        except (APIError, DockerException) as exc:
            raise DriverUnavailableError(
                f"Docker daemon did not answer ping: {exc}",
                code="DriverUnavailable",
            ) from exc

    async def ensure_image(self, image: str, pull: bool = True) -> None:
        try:
            await self._run(self.client.images.get, image)
            logger.debug("Image %s already present", image)
            return
        except ImageNotFound:
            if not pull:
                raise
        logger.info("Pulling image %s", image)
        with telemetry.span("docker.pull", image=image):
            await self._run(self.client.images.pull, image)
        logger.info("Pulled image %s", image)

    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        api = self.client.api
        host_config = api.create_host_config(
            mem_limit=spec.memory_bytes,
            nano_cpus=spec.nano_cpus,
            auto_remove=spec.auto_remove,
            network_mode=spec.network_mode,
        )
        with telemetry.span("docker.create", image=spec.image, name=spec.name):
            response = await self._run(
                api.create_container,
                image=spec.image,
                command=["/bin/sh"],
                name=spec.name,
                environment=[f"{key}={value}" for key, value in spec.env.items()],
                working_dir=spec.work_dir,
                host_config=host_config,
                labels=spec.labels,
                tty=False,
                stdin_open=True,
            )
        container_id = response["Id"]
        logger.debug("Created container %s for %s", container_id[:12], spec.name)
        return ContainerHandle(container_id)

    async def start(self, handle: ContainerHandle) -> None:
        await self._run(self.client.api.start, handle.container_id)

    async def stop(self, handle: ContainerHandle, grace_seconds: int) -> None:
        await self._run(self.client.api.stop, handle.container_id, timeout=grace_seconds)

    async def remove(self, handle: ContainerHandle, force: bool = True) -> None:
        try:
            await self._run(self.client.api.remove_container, handle.container_id, force=force)
        except NotFound:
            # Already gone (auto-remove raced us)
            logger.debug("Container %s already removed", handle.container_id[:12])

    async def pause(self, handle: ContainerHandle) -> None:
        await self._run(self.client.api.pause, handle.container_id)

    async def unpause(self, handle: ContainerHandle) -> None:
        await self._run(self.client.api.unpause, handle.container_id)

    async def exec(
        self, handle: ContainerHandle, argv: List[str], work_dir: Optional[str] = None
    ) -> ExecSession:
        api = self.client.api
        with telemetry.span("docker.exec", container=handle.container_id[:12]):
            created = await self._run(
                api.exec_create,
                handle.container_id,
                argv,
                stdout=True,
                stderr=True,
                stdin=False,
                tty=False,
                workdir=work_dir,
            )
            exec_handle = ExecHandle(created["Id"])
            sock = await self._run(api.exec_start, exec_handle.exec_id, socket=True)
        async def abort() -> None:
            _shutdown_socket(sock)

        return ExecSession(handle=exec_handle, chunks=self._read_chunks(sock), abort=abort)

    async def _read_chunks(self, sock: Any) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        try:
            while True:
                chunk = await loop.run_in_executor(
                    self.readers, docker_socket.read, sock, _READ_SIZE
                )
                if not chunk:
                    break
                yield chunk
        finally:
            # Also runs on cancellation; shutdown wakes a reader blocked in recv
            _shutdown_socket(sock)

    async def inspect_exit_code(self, exec_handle: ExecHandle) -> int:
        info = await self._run(self.client.api.exec_inspect, exec_handle.exec_id)
        exit_code = info.get("ExitCode")
        return -1 if exit_code is None else int(exit_code)

    async def stats(self, handle: ContainerHandle) -> Dict[str, Any]:
        with telemetry.span("docker.stats", container=handle.container_id[:12]):
            return await self._run(self.client.api.stats, handle.container_id, stream=False)

    async def close(self) -> None:
        if self._readers is not None:
            self._readers.shutdown(wait=False)
            self._readers = None
        if self._client is not None:
            await self._run(self._client.close)
            self._client = None


def _shutdown_socket(sock: Any) -> None:
    """Shut down and close an exec socket. Safe to call more than once."""
    # exec_start(socket=True) hands back a SocketIO wrapper on Unix sockets
    raw = getattr(sock, "_sock", sock)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except (OSError, AttributeError, ValueError) as exc:
        # Already shut down or closed
        logger.debug("Exec socket shutdown skipped: %s", exc)
    try:
        sock.close()
    except OSError as exc:
        logger.debug("Closing exec socket failed: %s", exc)

"""
SandboxManager: lifecycle of container sandboxes.

Manages sandbox lifecycle:
- Create: allocate a registry entry, ask the driver for a container, start it
- Execute: run a command and decode its multiplexed output
- Pause/Resume: freeze and thaw the container
- Cleanup: stop, remove and forget the sandbox
- Auto-cleanup: per-sandbox timeout timer plus a periodic sweep

Usage:
    from fetchbox.sandbox import DockerContainerDriver, SandboxManager

    manager = SandboxManager(DockerContainerDriver())
    await manager.initialize()

    sandbox = await manager.create("build", {"image": "python:3.12-alpine"})
    result = await manager.execute_command(sandbox.id, ["python", "-V"])

    await manager.cleanup(sandbox.id)
    await manager.shutdown()

Operations on one sandbox id are serialized through that sandbox's lock.
After acquiring the lock the entry is looked up again, so an operation that
lost a race against cleanup reports the sandbox as not found instead of
touching a container that is being torn down.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from fetchbox import events as ev
from fetchbox.config import Settings, get_settings
from fetchbox.events import LifecycleEvents
from fetchbox.exceptions import (
    DemuxError,
    DriverAllocationError,
    ExecutionError,
    ExecutionTimeoutError,
    FetchboxError,
    InvalidTransitionError,
    SandboxConfigError,
    SandboxNotFoundError,
    SandboxNotRunningError,
    StatsError,
)
from fetchbox.registry import Registry
from fetchbox.sandbox.demux import OutputDemultiplexer
from fetchbox.sandbox.driver import ContainerDriver, ExecSession
from fetchbox.sandbox.models import (
    ContainerSpec,
    ExecuteResult,
    Sandbox,
    SandboxConfig,
    SandboxStats,
    SandboxStatus,
    generate_sandbox_id,
)
from fetchbox.sandbox.stats import nano_cpus, normalize_stats, parse_memory_limit
from fetchbox.scheduler import CleanupScheduler

logger = logging.getLogger(__name__)

ConfigInput = Union[SandboxConfig, Mapping[str, Any], None]

_CONFIG_FIELDS = {f.name for f in dataclasses.fields(SandboxConfig)}


class SandboxManager:
    """
    Owns the sandbox registry and drives containers through their lifecycle.

    Each manager has its own registry, timers and scheduler, so several
    managers can run side by side (one per test, for instance).
    """

    def __init__(
        self,
        driver: ContainerDriver,
        settings: Optional[Settings] = None,
        events: Optional[LifecycleEvents] = None,
        *,
        sweep_interval: Optional[float] = None,
    ) -> None:
        self._driver = driver
        self._settings = settings or get_settings()
        self.events = events or LifecycleEvents()
        self._registry: Registry[Sandbox] = Registry(SandboxNotFoundError)
        self._timers: Dict[str, asyncio.Task] = {}
        self._scheduler = CleanupScheduler(
            sweep_interval or self._settings.sandbox_sweep_interval,
            self.sweep_stale,
            name="sandbox",
        )
        self._initialized = False

    @property
    def driver(self) -> ContainerDriver:
        return self._driver

    @property
    def scheduler(self) -> CleanupScheduler:
        return self._scheduler

    # -------------------------------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Check the engine is reachable, make sure the default image exists, start sweeping."""
        if self._initialized:
            return
        await self._driver.ping()
        if self._settings.pull_image_on_start:
            await self._driver.ensure_image(self._settings.sandbox_image, pull=True)
        await self._scheduler.start()
        self._initialized = True
        logger.info("Sandbox manager initialized (default image %s)", self._settings.sandbox_image)

    async def shutdown(self) -> None:
        """Stop sweeping and clean up every sandbox, best effort."""
        await self._scheduler.stop()

        sandbox_ids = self._registry.ids()
        if sandbox_ids:
            logger.info("Cleaning up %d sandbox(es) on shutdown", len(sandbox_ids))
        results = await asyncio.gather(
            *(self.cleanup(sandbox_id) for sandbox_id in sandbox_ids),
            return_exceptions=True,
        )
        for sandbox_id, result in zip(sandbox_ids, results):
            if isinstance(result, SandboxNotFoundError):
                continue
            if isinstance(result, BaseException):
                logger.error("Failed to clean up sandbox %s on shutdown: %s", sandbox_id, result)

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._initialized = False
        self.events.emit(ev.SHUTDOWN, "sandbox-manager")

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def default_config(self) -> SandboxConfig:
        s = self._settings
        return SandboxConfig(
            image=s.sandbox_image,
            memory_limit=s.sandbox_memory_limit,
            cpu_limit=s.sandbox_cpu_limit,
            timeout_ms=s.sandbox_timeout_ms,
            work_dir=s.sandbox_work_dir,
            auto_remove=s.sandbox_auto_remove,
        )

    def resolve_config(self, config: ConfigInput = None) -> SandboxConfig:
        """Merge caller overrides over the defaults. ``None`` values keep the default."""
        if isinstance(config, SandboxConfig):
            return config
        overrides = {k: v for k, v in (config or {}).items() if v is not None}
        unknown = set(overrides) - _CONFIG_FIELDS
        if unknown:
            raise SandboxConfigError(
                f"Unknown sandbox config field(s): {', '.join(sorted(unknown))}",
                code="unknown_config_field",
                details={"fields": sorted(unknown)},
            )
        if "env" in overrides:
            overrides["env"] = {str(k): str(v) for k, v in overrides["env"].items()}
        return dataclasses.replace(self.default_config(), **overrides)

    # -------------------------------------------------------------------------
    # Lookups (no suspension)
    # -------------------------------------------------------------------------

    def get_sandbox(self, sandbox_id: str) -> Optional[Sandbox]:
        return self._registry.get(sandbox_id)

    def list_sandboxes(self) -> List[Sandbox]:
        return self._registry.list()

    def __len__(self) -> int:
        return len(self._registry)

    # -------------------------------------------------------------------------
    # Lifecycle operations
    # -------------------------------------------------------------------------

    async def create(self, name: str, config: ConfigInput = None) -> Sandbox:
        """
        Create and start a sandbox.

        Args:
            name: Human-readable label.
            config: A SandboxConfig, or a mapping of fields overriding the defaults.

        Returns:
            The sandbox, in ``running`` status.

        Raises:
            SandboxConfigError: If the resource limits cannot be parsed.
            DriverAllocationError: If the engine rejects the container. The
                entry stays registered in ``error`` status.
        """
        resolved = self.resolve_config(config)
        # Validated before anything is registered
        memory_bytes = parse_memory_limit(resolved.memory_limit)
        cpus = nano_cpus(resolved.cpu_limit)

        sandbox = Sandbox(id=generate_sandbox_id(), name=name, config=resolved)
        self._registry.insert(sandbox.id, sandbox)
        logger.info("Creating sandbox %s (%s) from %s", sandbox.id, name, resolved.image)

        spec = ContainerSpec(
            name=f"sandbox-{sandbox.id}",
            image=resolved.image,
            memory_bytes=memory_bytes,
            nano_cpus=cpus,
            env=dict(resolved.env),
            work_dir=resolved.work_dir,
            auto_remove=resolved.auto_remove,
            network_mode=self._settings.sandbox_network_mode,
            labels={"fetchbox.sandbox_id": sandbox.id, "fetchbox.name": name},
        )

        async with sandbox.lock:
            try:
                handle = await self._driver.create(spec)
                sandbox.attach(handle)
                await self._driver.start(handle)
            except Exception as exc:
                sandbox.status = SandboxStatus.ERROR
                sandbox.error = str(exc)
                logger.error("Failed to create sandbox %s: %s", sandbox.id, exc)
                self.events.emit(ev.SANDBOX_ERROR, sandbox.id, error=str(exc))
                raise DriverAllocationError(
                    f"Failed to create sandbox: {exc}",
                    sandbox_id=sandbox.id,
                    details={"image": resolved.image},
                ) from exc

            sandbox.status = SandboxStatus.RUNNING
            self._schedule_timeout(sandbox)

        logger.info("Sandbox %s running", sandbox.id)
        self.events.emit(ev.SANDBOX_CREATED, sandbox.id, name=name, image=resolved.image)
        return sandbox

    async def execute_command(
        self,
        sandbox_id: str,
        command: Sequence[str],
        timeout_ms: Optional[int] = None,
    ) -> ExecuteResult:
        """
        Run ``command`` (an argv list) inside a running sandbox.

        A non-zero exit code is returned as part of the result, not raised.

        Raises:
            SandboxNotFoundError: Unknown id.
            SandboxNotRunningError: Sandbox is not ``running``.
            ExecutionTimeoutError: The command outlived ``timeout_ms``.
            ExecutionError: The command could not be run or its output read.
        """
        argv = [str(part) for part in command]
        if not argv:
            raise SandboxConfigError("Command must not be empty", code="empty_command")

        sandbox = self._registry.require(sandbox_id)
        async with sandbox.lock:
            sandbox = self._registry.require(sandbox_id)
            if sandbox.status is not SandboxStatus.RUNNING or sandbox.handle is None:
                raise SandboxNotRunningError(sandbox_id, sandbox.status.value)

            logger.debug("Executing in %s: %s", sandbox_id, argv)
            session: Optional[ExecSession] = None
            try:
                session = await self._driver.exec(sandbox.handle, argv, sandbox.config.work_dir)
                collect = self._collect(session)
                if timeout_ms:
                    result = await asyncio.wait_for(collect, timeout_ms / 1000)
                else:
                    result = await collect
            except asyncio.TimeoutError:
                logger.warning("Command in %s timed out after %dms", sandbox_id, timeout_ms)
                await self._abort_exec(sandbox_id, session)
                raise ExecutionTimeoutError(sandbox_id, timeout_ms) from None
            except DemuxError as exc:
                raise ExecutionError(
                    f"Malformed output stream from sandbox {sandbox_id}: {exc}",
                    sandbox_id=sandbox_id,
                    details=exc.details,
                ) from exc
            except FetchboxError:
                raise
            except Exception as exc:
                logger.error("Command execution failed in %s: %s", sandbox_id, exc)
                raise ExecutionError(
                    f"Command execution failed: {exc}",
                    sandbox_id=sandbox_id,
                    details={"command": argv},
                ) from exc

        logger.debug("Command in %s exited with %d", sandbox_id, result.exit_code)
        return result

    async def _collect(self, session: ExecSession) -> ExecuteResult:
        demux = OutputDemultiplexer()
        async for chunk in session.chunks:
            demux.feed(chunk)
        stdout, stderr = demux.close()
        exit_code = await self._driver.inspect_exit_code(session.handle)
        return ExecuteResult(
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
            exit_code=exit_code,
        )

    async def _abort_exec(self, sandbox_id: str, session: Optional[ExecSession]) -> None:
        if session is None or session.abort is None:
            return
        try:
            await session.abort()
        except Exception as exc:
            logger.warning("Could not abort timed-out command in %s: %s", sandbox_id, exc)

    async def pause(self, sandbox_id: str) -> Sandbox:
        """Freeze a running sandbox."""
        return await self._transition(
            sandbox_id,
            operation="pause",
            required=SandboxStatus.RUNNING,
            target=SandboxStatus.PAUSED,
        )

    async def resume(self, sandbox_id: str) -> Sandbox:
        """Thaw a paused sandbox."""
        return await self._transition(
            sandbox_id,
            operation="resume",
            required=SandboxStatus.PAUSED,
            target=SandboxStatus.RUNNING,
        )

    async def _transition(
        self,
        sandbox_id: str,
        *,
        operation: str,
        required: SandboxStatus,
        target: SandboxStatus,
    ) -> Sandbox:
        sandbox = self._registry.require(sandbox_id)
        async with sandbox.lock:
            sandbox = self._registry.require(sandbox_id)
            if sandbox.status is not required or sandbox.handle is None:
                raise InvalidTransitionError(
                    f"Cannot {operation} sandbox {sandbox_id} in status {sandbox.status.value}",
                    sandbox_id=sandbox_id,
                    status=sandbox.status.value,
                    operation=operation,
                )
            if target is SandboxStatus.PAUSED:
                await self._driver.pause(sandbox.handle)
                kind = ev.SANDBOX_PAUSED
            else:
                await self._driver.unpause(sandbox.handle)
                kind = ev.SANDBOX_RESUMED
            sandbox.status = target

        logger.info("Sandbox %s %s", sandbox_id, target.value)
        self.events.emit(kind, sandbox_id)
        return sandbox

    async def cleanup(self, sandbox_id: str) -> None:
        """
        Stop and remove a sandbox, then forget it.

        Engine-side stop/remove failures are logged and ignored: the
        container may already be gone.

        Raises:
            SandboxNotFoundError: The id is not (or no longer) registered.
        """
        sandbox = self._registry.require(sandbox_id)
        async with sandbox.lock:
            sandbox = self._registry.require(sandbox_id)
            self._cancel_timer(sandbox_id)
            await self._teardown(sandbox)
            sandbox.status = SandboxStatus.STOPPED
            self._registry.remove(sandbox_id)

        logger.info("Sandbox %s cleaned up", sandbox_id)
        self.events.emit(ev.SANDBOX_CLEANED, sandbox_id)

    async def _teardown(self, sandbox: Sandbox) -> None:
        handle = sandbox.handle
        if handle is None:
            return
        if sandbox.status is SandboxStatus.PAUSED:
            # A frozen container ignores the stop signal until thawed
            try:
                await self._driver.unpause(handle)
            except Exception as exc:
                logger.debug("Unpause before stop failed for %s: %s", sandbox.id, exc)
        try:
            await self._driver.stop(handle, self._settings.sandbox_stop_grace_seconds)
        except Exception as exc:
            logger.warning("Stop failed for sandbox %s (ignored): %s", sandbox.id, exc)
        # The engine only auto-removes containers that ran, so one that
        # never started is removed here too
        if not sandbox.config.auto_remove or sandbox.status is SandboxStatus.ERROR:
            try:
                await self._driver.remove(handle, force=True)
            except Exception as exc:
                logger.warning("Remove failed for sandbox %s (ignored): %s", sandbox.id, exc)

    async def stats(self, sandbox_id: str) -> SandboxStats:
        """
        Point-in-time resource usage.

        Raises:
            SandboxNotFoundError: Unknown id.
            InvalidTransitionError: Sandbox has no live container (paused, error).
            StatsError: The engine could not report usage.
        """
        sandbox = self._registry.require(sandbox_id)
        async with sandbox.lock:
            sandbox = self._registry.require(sandbox_id)
            if sandbox.handle is None or sandbox.status is not SandboxStatus.RUNNING:
                raise InvalidTransitionError(
                    f"Cannot read stats of sandbox {sandbox_id} in status {sandbox.status.value}",
                    sandbox_id=sandbox_id,
                    status=sandbox.status.value,
                    operation="stats",
                )
            try:
                raw = await self._driver.stats(sandbox.handle)
            except Exception as exc:
                raise StatsError(
                    f"Failed to read stats: {exc}",
                    sandbox_id=sandbox_id,
                    code="StatsFailed",
                ) from exc
        return normalize_stats(raw)

    # -------------------------------------------------------------------------
    # Automatic reclamation
    # -------------------------------------------------------------------------

    def _schedule_timeout(self, sandbox: Sandbox) -> None:
        timeout_ms = sandbox.config.timeout_ms
        if not timeout_ms:
            return
        self._timers[sandbox.id] = asyncio.create_task(
            self._expire_after(sandbox.id, timeout_ms / 1000),
            name=f"sandbox-timeout-{sandbox.id}",
        )

    def _cancel_timer(self, sandbox_id: str) -> None:
        timer = self._timers.pop(sandbox_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire_after(self, sandbox_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.info("Sandbox %s reached its timeout, cleaning up", sandbox_id)
        try:
            await self.cleanup(sandbox_id)
        except SandboxNotFoundError:
            # Explicit cleanup got there first
            pass
        except Exception:
            logger.exception("Auto-cleanup of sandbox %s failed", sandbox_id)

    async def sweep_stale(self) -> List[str]:
        """
        Clean up every sandbox older than its timeout.

        Failures for one sandbox never stop the others from being swept.

        Returns:
            Ids that were cleaned up in this pass.
        """
        stale = [sandbox.id for sandbox in self._registry.list() if sandbox.is_expired()]
        if not stale:
            return []

        logger.info("Sweeping %d stale sandbox(es)", len(stale))
        results = await asyncio.gather(
            *(self.cleanup(sandbox_id) for sandbox_id in stale),
            return_exceptions=True,
        )
        cleaned = []
        for sandbox_id, result in zip(stale, results):
            if isinstance(result, SandboxNotFoundError):
                continue
            if isinstance(result, BaseException):
                logger.error("Sweep failed to clean up %s: %s", sandbox_id, result)
                continue
            cleaned.append(sandbox_id)
            self.events.emit(ev.CLEANUP_STALE, sandbox_id)
        return cleaned

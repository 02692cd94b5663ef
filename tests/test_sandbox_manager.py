"""
SandboxManager against the in-memory container engine.

Covers the state machine (create/execute/pause/resume/cleanup), output
decoding through the demultiplexer, timeout reclamation, the stale sweep
and races between operations on the same sandbox.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fetchbox import events as ev
from fetchbox.config import Settings
from fetchbox.events import LifecycleEvents
from fetchbox.exceptions import (
    DriverAllocationError,
    DriverUnavailableError,
    ExecutionError,
    ExecutionTimeoutError,
    InvalidTransitionError,
    SandboxConfigError,
    SandboxNotFoundError,
    SandboxNotRunningError,
    StatsError,
)
from fetchbox.sandbox import SandboxConfig, SandboxManager, SandboxStatus
from tests.drivers.fake_container import FakeContainerDriver

STDOUT_AND_STDERR = ["sh", "-c", "echo STDOUT; echo STDERR >&2"]


@pytest.fixture
def driver() -> FakeContainerDriver:
    return FakeContainerDriver()


@pytest.fixture
def bus() -> LifecycleEvents:
    return LifecycleEvents()


@pytest.fixture
def seen(bus: LifecycleEvents) -> list:
    received: list = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
async def manager(driver: FakeContainerDriver, bus: LifecycleEvents):
    mgr = SandboxManager(driver, Settings(), bus, sweep_interval=60)
    await mgr.initialize()
    yield mgr
    await mgr.shutdown()


def _kinds(events: list) -> list:
    return [event.kind for event in events]


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_registers_running_sandbox(
        self, manager: SandboxManager, driver: FakeContainerDriver, seen: list
    ) -> None:
        sandbox = await manager.create("scratch", {"memory_limit": "256m", "env": {"A": 1}})

        assert sandbox.status is SandboxStatus.RUNNING
        assert sandbox.id.startswith("sb_")
        assert sandbox.handle is not None
        assert manager.get_sandbox(sandbox.id) is sandbox
        assert [s.id for s in manager.list_sandboxes()] == [sandbox.id]

        spec = driver.specs[sandbox.handle.container_id]
        assert spec.name == f"sandbox-{sandbox.id}"
        assert spec.memory_bytes == 256 * 1024 * 1024
        assert spec.nano_cpus == 1_000_000_000
        assert spec.env == {"A": "1"}
        assert spec.labels["fetchbox.sandbox_id"] == sandbox.id
        assert driver.containers[sandbox.handle.container_id] == "running"
        assert _kinds(seen) == [ev.SANDBOX_CREATED]

    @pytest.mark.asyncio
    async def test_defaults_come_from_settings(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("defaults")
        assert sandbox.config == SandboxConfig(
            image="node:20-alpine",
            memory_limit="512m",
            cpu_limit=1.0,
            timeout_ms=300_000,
            work_dir="/workspace",
            auto_remove=True,
        )

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, manager: SandboxManager) -> None:
        created = await asyncio.gather(*(manager.create(f"s{i}") for i in range(10)))
        assert len({sandbox.id for sandbox in created}) == 10
        assert len(manager) == 10

    @pytest.mark.asyncio
    async def test_invalid_memory_limit_registers_nothing(
        self, manager: SandboxManager, driver: FakeContainerDriver
    ) -> None:
        with pytest.raises(SandboxConfigError):
            await manager.create("bad", {"memory_limit": "lots"})
        assert len(manager) == 0
        assert "create" not in driver.call_names()

    @pytest.mark.asyncio
    async def test_unknown_config_field_is_rejected(self, manager: SandboxManager) -> None:
        with pytest.raises(SandboxConfigError) as exc_info:
            await manager.create("bad", {"gpu": True})
        assert exc_info.value.details["fields"] == ["gpu"]

    @pytest.mark.asyncio
    async def test_allocation_failure_leaves_error_entry(self, bus: LifecycleEvents, seen: list) -> None:
        driver = FakeContainerDriver(fail_start=RuntimeError("image has no shell"))
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)

        with pytest.raises(DriverAllocationError) as exc_info:
            await manager.create("broken")

        sandbox_id = exc_info.value.sandbox_id
        sandbox = manager.get_sandbox(sandbox_id)
        assert sandbox is not None
        assert sandbox.status is SandboxStatus.ERROR
        assert "image has no shell" in sandbox.error
        assert exc_info.value.code == "DriverAllocationFailed"
        assert _kinds(seen) == [ev.SANDBOX_ERROR]

        with pytest.raises(SandboxNotRunningError):
            await manager.execute_command(sandbox_id, ["true"])

        await manager.cleanup(sandbox_id)
        assert manager.get_sandbox(sandbox_id) is None
        # Never started, so the engine will not auto-remove it
        assert sandbox.config.auto_remove
        assert "remove" in driver.call_names()
        assert sandbox.handle.container_id not in driver.containers


class TestExecute:
    @pytest.mark.asyncio
    async def test_stdout_and_stderr_are_separated(
        self, manager: SandboxManager, driver: FakeContainerDriver
    ) -> None:
        sandbox = await manager.create("exec")
        result = await manager.execute_command(sandbox.id, STDOUT_AND_STDERR)

        assert result.stdout == "STDOUT"
        assert result.stderr == "STDERR"
        assert result.exit_code == 0
        assert ("exec", sandbox.handle.container_id, *STDOUT_AND_STDERR) in driver.calls

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_a_result(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("exec")
        result = await manager.execute_command(sandbox.id, ["sh", "-c", "exit 3"])
        assert result.exit_code == 3
        assert result.stderr == "failed"
        assert result.to_dict() == {"stdout": "", "stderr": "failed", "exit_code": 3}

    @pytest.mark.asyncio
    async def test_unknown_sandbox(self, manager: SandboxManager) -> None:
        with pytest.raises(SandboxNotFoundError):
            await manager.execute_command("sb_missing", ["true"])

    @pytest.mark.asyncio
    async def test_empty_command_is_rejected(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("exec")
        with pytest.raises(SandboxConfigError):
            await manager.execute_command(sandbox.id, [])

    @pytest.mark.asyncio
    async def test_timeout_raises_and_sandbox_stays_usable(self, bus: LifecycleEvents) -> None:
        driver = FakeContainerDriver(exec_delay=0.5)
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        sandbox = await manager.create("slow")

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await manager.execute_command(sandbox.id, ["sleep", "10"], timeout_ms=50)
        assert exc_info.value.code == "ExecutionTimeout"
        assert exc_info.value.details["timeout_ms"] == 50
        assert manager.get_sandbox(sandbox.id).status is SandboxStatus.RUNNING
        # The stream of the abandoned command is shut down, not left reading
        assert len(driver.aborted) == 1
        assert driver.call_names()[-1] == "abort"

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_truncated_stream_is_execution_error(self, bus: LifecycleEvents) -> None:
        driver = FakeContainerDriver(truncate_output=True)
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        sandbox = await manager.create("truncated")

        with pytest.raises(ExecutionError) as exc_info:
            await manager.execute_command(sandbox.id, STDOUT_AND_STDERR)
        assert exc_info.value.code == "ExecutionFailed"
        assert exc_info.value.details["pending_bytes"] > 0

        await manager.shutdown()


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_pause_blocks_execute_and_stats(
        self, manager: SandboxManager, driver: FakeContainerDriver, seen: list
    ) -> None:
        sandbox = await manager.create("pausable")

        paused = await manager.pause(sandbox.id)
        assert paused.status is SandboxStatus.PAUSED
        assert driver.containers[sandbox.handle.container_id] == "paused"

        with pytest.raises(SandboxNotRunningError) as exc_info:
            await manager.execute_command(sandbox.id, ["true"])
        assert exc_info.value.code == "NotRunning"

        with pytest.raises(InvalidTransitionError) as exc_info:
            await manager.stats(sandbox.id)
        assert exc_info.value.code == "InvalidTransition"

        with pytest.raises(InvalidTransitionError):
            await manager.pause(sandbox.id)

        resumed = await manager.resume(sandbox.id)
        assert resumed.status is SandboxStatus.RUNNING
        result = await manager.execute_command(sandbox.id, STDOUT_AND_STDERR)
        assert result.stdout == "STDOUT"

        assert _kinds(seen) == [ev.SANDBOX_CREATED, ev.SANDBOX_PAUSED, ev.SANDBOX_RESUMED]

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("running")
        with pytest.raises(InvalidTransitionError) as exc_info:
            await manager.resume(sandbox.id)
        assert exc_info.value.details["operation"] == "resume"
        assert exc_info.value.details["status"] == "running"


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_are_normalized(self, bus: LifecycleEvents) -> None:
        raw = {
            "cpu_stats": {
                "cpu_usage": {"total_usage": 300},
                "system_cpu_usage": 2000,
                "online_cpus": 4,
            },
            "precpu_stats": {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000},
            "memory_stats": {"usage": 1024, "limit": 4096},
            "networks": {"eth0": {"rx_bytes": 10, "tx_bytes": 20}},
        }
        manager = SandboxManager(FakeContainerDriver(stats_payload=raw), Settings(), bus, sweep_interval=60)
        sandbox = await manager.create("stats")

        stats = await manager.stats(sandbox.id)

        assert stats.cpu_usage == pytest.approx(80.0)
        assert stats.memory_usage == 1024
        assert stats.memory_limit == 4096
        assert (stats.network_rx, stats.network_tx) == (10, 20)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_engine_failure_is_stats_error(self, bus: LifecycleEvents) -> None:
        driver = FakeContainerDriver(fail_stats=RuntimeError("cgroup gone"))
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        sandbox = await manager.create("stats")

        with pytest.raises(StatsError):
            await manager.stats(sandbox.id)
        await manager.shutdown()


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_removes_and_second_cleanup_is_not_found(
        self, manager: SandboxManager, driver: FakeContainerDriver, seen: list
    ) -> None:
        sandbox = await manager.create("gone")
        await manager.cleanup(sandbox.id)

        assert manager.get_sandbox(sandbox.id) is None
        assert sandbox.status is SandboxStatus.STOPPED
        assert sandbox.handle.container_id not in driver.containers
        assert _kinds(seen)[-1] == ev.SANDBOX_CLEANED

        with pytest.raises(SandboxNotFoundError):
            await manager.cleanup(sandbox.id)

    @pytest.mark.asyncio
    async def test_cleanup_unpauses_before_stop(
        self, manager: SandboxManager, driver: FakeContainerDriver
    ) -> None:
        sandbox = await manager.create("frozen")
        await manager.pause(sandbox.id)
        await manager.cleanup(sandbox.id)

        names = driver.call_names()
        assert names.index("unpause") < names.index("stop")

    @pytest.mark.asyncio
    async def test_cleanup_removes_when_auto_remove_is_off(
        self, manager: SandboxManager, driver: FakeContainerDriver
    ) -> None:
        sandbox = await manager.create("keep", {"auto_remove": False})
        await manager.cleanup(sandbox.id)
        assert ("remove", sandbox.handle.container_id) in driver.calls

    @pytest.mark.asyncio
    async def test_stop_failure_is_ignored(self, bus: LifecycleEvents) -> None:
        driver = FakeContainerDriver(fail_stop=RuntimeError("no such container"))
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        sandbox = await manager.create("vanished")

        await manager.cleanup(sandbox.id)
        assert manager.get_sandbox(sandbox.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_cleanup_exactly_one_wins(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("race")
        results = await asyncio.gather(
            manager.cleanup(sandbox.id),
            manager.cleanup(sandbox.id),
            return_exceptions=True,
        )
        assert results.count(None) == 1
        assert sum(isinstance(r, SandboxNotFoundError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_execute_queued_behind_cleanup_sees_not_found(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("race")
        results = await asyncio.gather(
            manager.cleanup(sandbox.id),
            manager.execute_command(sandbox.id, STDOUT_AND_STDERR),
            return_exceptions=True,
        )
        assert results[0] is None
        assert isinstance(results[1], SandboxNotFoundError)


class TestReclamation:
    @pytest.mark.asyncio
    async def test_timeout_reclaims_sandbox(self, manager: SandboxManager, seen: list) -> None:
        sandbox = await manager.create("short", {"timeout_ms": 100})
        assert manager.get_sandbox(sandbox.id) is not None

        await asyncio.sleep(0.15)

        assert manager.get_sandbox(sandbox.id) is None
        assert ev.SANDBOX_CLEANED in _kinds(seen)

    @pytest.mark.asyncio
    async def test_explicit_cleanup_cancels_timer(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("short", {"timeout_ms": 100})
        await manager.cleanup(sandbox.id)
        # The timer must not fail or resurrect anything after the fact.
        await asyncio.sleep(0.15)
        assert manager.get_sandbox(sandbox.id) is None

    @pytest.mark.asyncio
    async def test_zero_timeout_disables_auto_cleanup(self, manager: SandboxManager) -> None:
        sandbox = await manager.create("forever", {"timeout_ms": 0})
        sandbox.created_at = datetime.now(timezone.utc) - timedelta(days=1)
        assert not sandbox.is_expired()
        assert await manager.sweep_stale() == []

    @pytest.mark.asyncio
    async def test_sweep_cleans_only_expired(self, manager: SandboxManager, seen: list) -> None:
        old = await manager.create("old", {"timeout_ms": 5_000})
        fresh = await manager.create("fresh", {"timeout_ms": 5_000})
        old.created_at = datetime.now(timezone.utc) - timedelta(seconds=10)

        cleaned = await manager.sweep_stale()

        assert cleaned == [old.id]
        assert manager.get_sandbox(old.id) is None
        assert manager.get_sandbox(fresh.id) is fresh
        assert ev.CLEANUP_STALE in _kinds(seen)


class TestStartupShutdown:
    @pytest.mark.asyncio
    async def test_initialize_pings_and_pulls_default_image(self, bus: LifecycleEvents) -> None:
        driver = FakeContainerDriver()
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        await manager.initialize()

        assert driver.call_names()[:2] == ["ping", "ensure_image"]
        assert driver.images == ["node:20-alpine"]
        assert manager.scheduler.running
        await manager.shutdown()
        assert not manager.scheduler.running

    @pytest.mark.asyncio
    async def test_initialize_skips_pull_when_disabled(
        self, bus: LifecycleEvents, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FETCHBOX_PULL_ON_START", "false")
        driver = FakeContainerDriver()
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        await manager.initialize()
        assert "ensure_image" not in driver.call_names()
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_initialize_propagates_unavailable_engine(self, bus: LifecycleEvents) -> None:
        manager = SandboxManager(FakeContainerDriver(unavailable=True), Settings(), bus, sweep_interval=60)
        with pytest.raises(DriverUnavailableError):
            await manager.initialize()
        assert not manager.scheduler.running

    @pytest.mark.asyncio
    async def test_shutdown_cleans_every_sandbox(
        self, driver: FakeContainerDriver, bus: LifecycleEvents, seen: list
    ) -> None:
        manager = SandboxManager(driver, Settings(), bus, sweep_interval=60)
        await manager.initialize()
        first = await manager.create("a")
        second = await manager.create("b")
        await manager.pause(second.id)

        await manager.shutdown()

        assert len(manager) == 0
        assert first.handle.container_id not in driver.containers
        assert second.handle.container_id not in driver.containers
        assert _kinds(seen)[-1] == ev.SHUTDOWN

"""
Data model for container sandboxes.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SandboxStatus(str, Enum):
    """Lifecycle states of a container sandbox.

    creating -> running <-> paused; creating -> error; any -> stopped.
    A stopped sandbox is removed from the registry straight away.
    """

    CREATING = "creating"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class ContainerHandle:
    """Opaque reference to a container owned by the engine."""

    container_id: str


@dataclass(frozen=True)
class ExecHandle:
    """Opaque reference to one command execution inside a container."""

    exec_id: str


@dataclass(frozen=True)
class SandboxConfig:
    """
    Resolved sandbox configuration.

    Fixed at creation time; later operations never change it.
    """

    image: str = "node:20-alpine"
    memory_limit: str = "512m"
    cpu_limit: float = 1.0
    # Auto-cleanup budget in milliseconds, None or 0 disables it
    timeout_ms: Optional[int] = 300_000
    env: Dict[str, str] = field(default_factory=dict)
    work_dir: str = "/workspace"
    auto_remove: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "memory_limit": self.memory_limit,
            "cpu_limit": self.cpu_limit,
            "timeout_ms": self.timeout_ms,
            "env": dict(self.env),
            "work_dir": self.work_dir,
            "auto_remove": self.auto_remove,
        }


@dataclass(frozen=True)
class ContainerSpec:
    """Everything the driver needs to allocate one container."""

    name: str
    image: str
    memory_bytes: int
    nano_cpus: int
    env: Dict[str, str]
    work_dir: str
    auto_remove: bool
    network_mode: str = "bridge"
    labels: Dict[str, str] = field(default_factory=dict)


def generate_sandbox_id() -> str:
    """Generate a unique, never-reused sandbox id."""
    return f"sb_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class Sandbox:
    """A registry entry for one container sandbox."""

    id: str
    name: str
    config: SandboxConfig
    status: SandboxStatus = SandboxStatus.CREATING
    handle: Optional[ContainerHandle] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None
    # Serializes operations on this sandbox
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def attach(self, handle: ContainerHandle) -> None:
        """Bind the engine handle. A sandbox gets at most one."""
        if self.handle is not None:
            raise RuntimeError(f"Sandbox {self.id} already has a container")
        self.handle = handle

    def age_ms(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.created_at).total_seconds() * 1000

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the sandbox has outlived its timeout budget."""
        if not self.config.timeout_ms:
            return False
        return self.age_ms(now) > self.config.timeout_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "container_id": self.handle.container_id if self.handle else None,
            "created_at": self.created_at.isoformat(),
            "config": self.config.to_dict(),
            "error": self.error,
        }


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a command. Non-zero exit codes are ordinary results."""

    stdout: str
    stderr: str
    exit_code: int

    def to_dict(self) -> Dict[str, Any]:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


@dataclass(frozen=True)
class SandboxStats:
    """Point-in-time resource usage of a running sandbox."""

    # Percent of one core (may exceed 100 on multi-core limits)
    cpu_usage: float
    memory_usage: int
    memory_limit: int
    network_rx: int
    network_tx: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_usage": self.cpu_usage,
            "memory_usage": self.memory_usage,
            "memory_limit": self.memory_limit,
            "network_rx": self.network_rx,
            "network_tx": self.network_tx,
        }

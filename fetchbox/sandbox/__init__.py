"""
Container sandboxes.

Usage:
    from fetchbox.sandbox import DockerContainerDriver, SandboxManager

    manager = SandboxManager(DockerContainerDriver())
    await manager.initialize()
    sandbox = await manager.create("scratch")
"""

from fetchbox.sandbox.demux import OutputDemultiplexer, demultiplex
from fetchbox.sandbox.driver import ContainerDriver, DockerContainerDriver, ExecSession
from fetchbox.sandbox.manager import SandboxManager
from fetchbox.sandbox.models import (
    ContainerHandle,
    ExecHandle,
    ExecuteResult,
    Sandbox,
    SandboxConfig,
    SandboxStats,
    SandboxStatus,
)
from fetchbox.sandbox.stats import normalize_stats, parse_memory_limit

__all__ = [
    "ContainerDriver",
    "ContainerHandle",
    "DockerContainerDriver",
    "ExecHandle",
    "ExecSession",
    "ExecuteResult",
    "OutputDemultiplexer",
    "Sandbox",
    "SandboxConfig",
    "SandboxManager",
    "SandboxStats",
    "SandboxStatus",
    "demultiplex",
    "normalize_stats",
    "parse_memory_limit",
]

"""
Resource-limit parsing and normalization of raw engine statistics.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from fetchbox.exceptions import SandboxConfigError
from fetchbox.sandbox.models import SandboxStats

_MEMORY_PATTERN = re.compile(r"^(\d+)([bkmg])$", re.IGNORECASE)
_MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024**2,
    "g": 1024**3,
}


def parse_memory_limit(limit: str) -> int:
    """
    Convert a memory limit such as ``512m`` or ``1g`` to bytes.

    Raises:
        SandboxConfigError: If the string is not ``<digits><b|k|m|g>``.
    """
    match = _MEMORY_PATTERN.match(limit.strip()) if isinstance(limit, str) else None
    if match is None:
        raise SandboxConfigError(
            f"Invalid memory limit format: {limit!r}",
            code="invalid_memory_limit",
            details={"memory_limit": limit},
        )
    value, unit = match.groups()
    return int(value) * _MEMORY_UNITS[unit.lower()]


def nano_cpus(cpu_limit: float) -> int:
    """Convert a core count to the engine's nano-CPU units."""
    if cpu_limit <= 0:
        raise SandboxConfigError(
            f"CPU limit must be positive, got {cpu_limit}",
            code="invalid_cpu_limit",
            details={"cpu_limit": cpu_limit},
        )
    return int(cpu_limit * 1e9)


def cpu_percent(raw: Mapping[str, Any]) -> float:
    """
    CPU usage between the two samples of a stats snapshot.

    Computed as ``cpu_delta / system_delta * online_cpus * 100``. Returns 0
    when either delta is not positive (first sample, idle host clock).
    """
    cpu = raw.get("cpu_stats") or {}
    precpu = raw.get("precpu_stats") or {}

    cpu_total = (cpu.get("cpu_usage") or {}).get("total_usage", 0) or 0
    precpu_total = (precpu.get("cpu_usage") or {}).get("total_usage", 0) or 0
    system = cpu.get("system_cpu_usage", 0) or 0
    presystem = precpu.get("system_cpu_usage", 0) or 0

    cpu_delta = cpu_total - precpu_total
    system_delta = system - presystem
    if cpu_delta <= 0 or system_delta <= 0:
        return 0.0

    online_cpus = cpu.get("online_cpus") or len(
        (cpu.get("cpu_usage") or {}).get("percpu_usage") or []
    ) or 1
    return (cpu_delta / system_delta) * online_cpus * 100.0


def normalize_stats(raw: Mapping[str, Any]) -> SandboxStats:
    """Reduce a raw engine snapshot to the fields fetchbox reports."""
    memory = raw.get("memory_stats") or {}
    networks = raw.get("networks") or {}

    rx = 0
    tx = 0
    for interface in networks.values():
        rx += interface.get("rx_bytes", 0) or 0
        tx += interface.get("tx_bytes", 0) or 0

    return SandboxStats(
        cpu_usage=cpu_percent(raw),
        memory_usage=int(memory.get("usage", 0) or 0),
        memory_limit=int(memory.get("limit", 0) or 0),
        network_rx=int(rx),
        network_tx=int(tx),
    )

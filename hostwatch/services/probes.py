"""
Probe-layer protocols consumed by the monitoring engine.

Why Protocol over ABC: structural typing, so tests hand in plain fakes and the
platform adapters in ``hostwatch.adapters`` need no common base class.

Metrics and configuration providers are synchronous and may block; callers run
them in worker threads. Network primitives are async and must honour their
own timeouts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol


@dataclass(slots=True, frozen=True)
class MemoryReading:
    """Physical memory counters in bytes."""

    total: int
    available: int
    percent: float


@dataclass(slots=True, frozen=True)
class DriveReading:
    """Capacity of a fixed drive in bytes."""

    name: str
    total_bytes: int
    free_bytes: int
    label: str = ""


@dataclass(slots=True, frozen=True)
class AdapterReading:
    """Active network adapter with throughput counters."""

    name: str
    speed_mbps: int
    is_up: bool
    is_loopback: bool
    bytes_sent: int
    bytes_received: int


@dataclass(slots=True, frozen=True)
class ProcessReading:
    """One running process."""

    name: str
    pid: int
    memory_bytes: int
    thread_count: int
    cpu_time_seconds: float = 0.0


@dataclass(slots=True, frozen=True)
class AdapterAddress:
    """IPv4 configuration of one network adapter."""

    name: str
    is_up: bool
    is_loopback: bool
    ipv4_address: str | None
    netmask: str | None = None
    hardware_address: str = ""
    gateways: list[str] = field(default_factory=list)
    dns_servers: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SecurityProductStatus:
    """State of one installed antivirus or security product."""

    name: str
    enabled: bool
    up_to_date: bool


@dataclass(slots=True, frozen=True)
class DiskStatus:
    """SMART-style health report of a physical disk."""

    device_id: str
    model: str
    status: str

    @property
    def healthy(self) -> bool:
        return self.status.strip().upper() == "OK"


class MetricsProvider(Protocol):
    """OS counters for CPU, memory, drives, adapters, processes and uptime."""

    def cpu_percent(self) -> float: ...

    def memory(self) -> MemoryReading: ...

    def fixed_drives(self) -> list[DriveReading]: ...

    def network_adapters(self) -> list[AdapterReading]: ...

    def processes(self) -> list[ProcessReading]: ...

    def uptime_seconds(self) -> float: ...


class NetworkPrimitives(Protocol):
    """Reachability, port, name and neighbor lookups."""

    async def ping(self, address: str, timeout: float) -> float | None:
        """Round-trip time in milliseconds, or None when the host did not answer."""
        ...

    async def is_port_open(self, address: str, port: int, timeout: float) -> bool: ...

    async def reverse_dns(self, address: str) -> str | None: ...

    async def hardware_address(self, address: str) -> str | None: ...

    def adapters(self) -> list[AdapterAddress]: ...


class ConfigurationProvider(Protocol):
    """Startup entries, security status, disk health and well-known folders."""

    def startup_entries(self) -> list[str]: ...

    def security_products(self) -> list[SecurityProductStatus] | None:
        """Installed products, or None when the platform cannot tell."""
        ...

    def disk_statuses(self) -> list[DiskStatus]: ...

    def last_update_installed(self) -> datetime | None: ...

    def downloads_directory(self) -> Path | None: ...

    def temp_directory(self) -> Path | None: ...

    def browser_cache_directories(self) -> list[Path]: ...

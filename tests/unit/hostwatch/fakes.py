"""Deterministic probe doubles shared by the unit tests."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from hostwatch.domain.models import HealthSnapshot
from hostwatch.services.probes import (
    AdapterAddress,
    AdapterReading,
    DiskStatus,
    DriveReading,
    MemoryReading,
    ProcessReading,
    SecurityProductStatus,
)

GB = 1024**3
MB = 1024**2


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMetrics:
    """MetricsProvider with settable readings and switchable failures."""

    def __init__(self) -> None:
        self.cpu = 10.0
        self.ram_percent = 40.0
        self.total_memory = 16 * GB
        self.drives = [DriveReading(name="C:", total_bytes=500 * GB, free_bytes=300 * GB)]
        self.adapters = [
            AdapterReading("eth0", 1000, True, False, 1_000, 2_000),
            AdapterReading("lo", 0, True, True, 10, 10),
        ]
        self.process_list = [
            ProcessReading("browser", 100, 900 * MB, 40, cpu_time_seconds=1200.0),
            ProcessReading("editor", 200, 300 * MB, 12, cpu_time_seconds=30.0),
            ProcessReading("daemon", 300, 50 * MB, 2, cpu_time_seconds=4000.0),
        ]
        self.uptime = 7200.0
        self.failing: set[str] = set()

    def _check(self, probe: str) -> None:
        if probe in self.failing:
            raise OSError(f"{probe} unavailable")

    def cpu_percent(self) -> float:
        self._check("cpu")
        return self.cpu

    def memory(self) -> MemoryReading:
        self._check("memory")
        available = int(self.total_memory * (100 - self.ram_percent) / 100)
        return MemoryReading(total=self.total_memory, available=available, percent=self.ram_percent)

    def fixed_drives(self) -> list[DriveReading]:
        self._check("drives")
        return list(self.drives)

    def network_adapters(self) -> list[AdapterReading]:
        self._check("network_adapters")
        return list(self.adapters)

    def processes(self) -> list[ProcessReading]:
        self._check("processes")
        return list(self.process_list)

    def uptime_seconds(self) -> float:
        self._check("uptime")
        return self.uptime


class FakeSystem:
    """ConfigurationProvider that reports a clean host unless told otherwise."""

    def __init__(self) -> None:
        self.startup: list[str] = []
        self.products: list[SecurityProductStatus] | None = None
        self.disks: list[DiskStatus] = []
        self.last_update: datetime | None = None
        self.downloads: Path | None = None
        self.temp: Path | None = None
        self.caches: list[Path] = []
        self.failing: set[str] = set()

    def _check(self, probe: str) -> None:
        if probe in self.failing:
            raise RuntimeError(f"{probe} unavailable")

    def startup_entries(self) -> list[str]:
        self._check("startup")
        return list(self.startup)

    def security_products(self) -> list[SecurityProductStatus] | None:
        self._check("security")
        return self.products

    def disk_statuses(self) -> list[DiskStatus]:
        self._check("disks")
        return list(self.disks)

    def last_update_installed(self) -> datetime | None:
        self._check("updates")
        return self.last_update

    def downloads_directory(self) -> Path | None:
        return self.downloads

    def temp_directory(self) -> Path | None:
        return self.temp

    def browser_cache_directories(self) -> list[Path]:
        return list(self.caches)


class StaticHealth:
    """HealthSource returning a fixed snapshot."""

    def __init__(self, snapshot: HealthSnapshot | None = None) -> None:
        self.current_health = snapshot


class FakeNetwork:
    """
    Simulated /24: only addresses listed in ``reachable`` answer the ping.

    ``gate`` holds every ping until set; ``on_ping`` runs at the start of each
    ping call.
    """

    def __init__(self, local_ip: str | None = "192.168.1.57") -> None:
        self.local_ip = local_ip
        self.reachable: dict[str, float] = {}
        self.ports: dict[str, set[int]] = {}
        self.hostnames: dict[str, str] = {}
        self.macs: dict[str, str] = {}
        self.broken: set[str] = set()
        self.ping_delay = 0.0
        self.gate: asyncio.Event | None = None
        self.on_ping: Callable[[str], None] | None = None
        self.ping_calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def ping(self, address: str, timeout: float) -> float | None:
        self.ping_calls.append(address)
        if self.on_ping is not None:
            self.on_ping(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.ping_delay)
            if address in self.broken:
                raise OSError("network stack exploded")
            return self.reachable.get(address)
        finally:
            self.in_flight -= 1

    async def is_port_open(self, address: str, port: int, timeout: float) -> bool:
        return port in self.ports.get(address, set())

    async def reverse_dns(self, address: str) -> str | None:
        if address not in self.hostnames:
            raise OSError("no PTR record")
        return self.hostnames[address]

    async def hardware_address(self, address: str) -> str | None:
        return self.macs.get(address)

    def adapters(self) -> list[AdapterAddress]:
        adapters = [AdapterAddress("lo", True, True, "127.0.0.1", "255.0.0.0")]
        if self.local_ip is not None:
            adapters.append(
                AdapterAddress(
                    name="eth0",
                    is_up=True,
                    is_loopback=False,
                    ipv4_address=self.local_ip,
                    netmask="255.255.255.0",
                    hardware_address="AA:BB:CC:00:11:22",
                    gateways=["192.168.1.1"],
                    dns_servers=["192.168.1.1", "1.1.1.1"],
                )
            )
        return adapters

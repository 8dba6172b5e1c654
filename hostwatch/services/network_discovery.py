"""
Local network discovery.

Sweeps the /24 around the active adapter's address with a bounded number of
concurrent probes. Each responsive host is named, looked up in the neighbor
cache, classified by a few identification ports and given an open-port
inventory. Any step after the reachability probe degrades to an empty field
instead of dropping the host.
"""

import asyncio
import ipaddress
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import TypeVar

import structlog

from hostwatch.config import ScannerConfig
from hostwatch.domain.models import DeviceType, NetworkDevice, NetworkInfo, utc_now
from hostwatch.errors import HostUnreachable, ScanFailure
from hostwatch.services.events import EventBus, EventType
from hostwatch.services.probes import NetworkPrimitives
from hostwatch.services.result import Result

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PRINTER_PORTS = frozenset({9100, 631})
RDP_PORT = 3389
SSH_PORT = 22
SMB_PORT = 445
WEB_PORTS = frozenset({80, 443})


def classify_device(open_ports: Iterable[int]) -> DeviceType:
    """Coarse device type from the identification ports that answered."""
    ports = set(open_ports)
    if ports & PRINTER_PORTS:
        return DeviceType.PRINTER
    if RDP_PORT in ports:
        return DeviceType.WINDOWS_PC
    if SSH_PORT in ports:
        return DeviceType.LINUX_SERVER
    if SMB_PORT in ports:
        return DeviceType.WINDOWS_PC
    if ports & WEB_PORTS:
        return DeviceType.NETWORK_DEVICE
    return DeviceType.UNKNOWN


def subnet_hosts(local_ip: str) -> list[str]:
    """The 254 host addresses of the /24 containing ``local_ip``."""
    network = ipaddress.ip_network(f"{local_ip}/24", strict=False)
    return [str(host) for host in network.hosts()]


def sort_devices(devices: Iterable[NetworkDevice]) -> list[NetworkDevice]:
    return sorted(devices, key=lambda device: device.numeric_ip)


class NetworkDiscoveryScanner:
    """
    On-demand sweep of the local subnet.

    Only one sweep runs at a time. ``cancel_scan`` stops new probes from being
    dispatched; probes already in flight finish or hit their own timeouts and
    their devices are still included in the result.
    """

    def __init__(
        self,
        network: NetworkPrimitives,
        config: ScannerConfig | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.network = network
        self.config = config or ScannerConfig()
        self.events = events or EventBus()
        self.clock = clock
        self.logger = logger.bind(component="network_discovery")

        self._devices: list[NetworkDevice] = []
        self._devices_lock = asyncio.Lock()
        self._scanning = False
        self._cancel = asyncio.Event()
        self._dispatched = 0
        self._completed = 0

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def discovered_devices(self) -> list[NetworkDevice]:
        return sort_devices(self._devices)

    @property
    def dispatched_probes(self) -> int:
        """Number of host probes started by the current or last sweep."""
        return self._dispatched

    def get_local_network_info(self) -> NetworkInfo:
        """First operational, non-loopback adapter that carries an IPv4 address."""
        try:
            adapters = self.network.adapters()
        except Exception as e:
            self.logger.warning("adapter_enumeration_failed", error=str(e))
            return NetworkInfo()

        for adapter in adapters:
            if not adapter.is_up or adapter.is_loopback or not adapter.ipv4_address:
                continue
            return NetworkInfo(
                local_ip=adapter.ipv4_address,
                subnet_mask=adapter.netmask or "255.255.255.0",
                gateway=adapter.gateways[0] if adapter.gateways else "",
                dns_server=adapter.dns_servers[0] if adapter.dns_servers else "",
                adapter_name=adapter.name,
                hardware_address=adapter.hardware_address,
            )
        return NetworkInfo()

    def cancel_scan(self) -> None:
        self._cancel.set()

    def _cancel_requested(self, cancel_event: asyncio.Event | None) -> bool:
        return self._cancel.is_set() or (cancel_event is not None and cancel_event.is_set())

    async def scan_network(self, cancel_event: asyncio.Event | None = None) -> list[NetworkDevice]:
        """
        Sweep the local /24 and return the responsive devices sorted by address.

        A call made while a sweep is running returns the devices found so far
        by that sweep without starting a second one.
        """
        if self._scanning:
            self.logger.info("scan_already_in_progress")
            return self.discovered_devices

        self._scanning = True
        self._cancel = asyncio.Event()
        self._devices = []
        self._dispatched = 0
        self._completed = 0

        try:
            info = await asyncio.to_thread(self.get_local_network_info)
            if not info.local_ip:
                self.logger.warning("no_network_connection")
                return []

            addresses = subnet_hosts(info.local_ip)
            total = len(addresses)
            semaphore = asyncio.Semaphore(self.config.max_concurrency)
            self.logger.info("scan_started", subnet=f"{info.local_ip}/24", addresses=total)

            async with asyncio.TaskGroup() as task_group:
                for address in addresses:
                    if self._cancel_requested(cancel_event):
                        break
                    await semaphore.acquire()
                    if self._cancel_requested(cancel_event):
                        semaphore.release()
                        break
                    self._dispatched += 1
                    task_group.create_task(self._probe_and_record(address, semaphore, total))

            devices = self.discovered_devices
            if self._cancel_requested(cancel_event):
                self.logger.info(
                    "scan_cancelled", dispatched=self._dispatched, devices=len(devices)
                )
            self.events.emit(EventType.SCAN_COMPLETE, list(devices))
            self.logger.info("scan_complete", devices=len(devices), probed=self._completed)
            return devices
        finally:
            self._scanning = False

    async def _probe_and_record(
        self, address: str, semaphore: asyncio.Semaphore, total: int
    ) -> None:
        try:
            result = await self._probe_host(address)
            if result.is_ok():
                device = result.unwrap()
                async with self._devices_lock:
                    self._devices.append(device)
                self.events.emit(EventType.DEVICE_DISCOVERED, device)
            elif not isinstance(result.unwrap_err(), HostUnreachable):
                self.logger.debug("host_probe_failed", error=str(result.unwrap_err()))
        finally:
            semaphore.release()
            self._completed += 1
            self.events.emit(EventType.SCAN_PROGRESS, self._completed, total)

    async def _probe_host(self, address: str) -> Result[NetworkDevice, ScanFailure]:
        try:
            response_ms = await self.network.ping(address, self.config.ping_timeout_seconds)
        except Exception as e:
            return Result.err(ScanFailure(address, f"reachability probe failed: {e}"))

        if response_ms is None:
            return Result.err(HostUnreachable(address))

        try:
            hostname = await self._lookup(self.network.reverse_dns(address), "reverse_dns", address)
            hardware = await self._lookup(
                self.network.hardware_address(address), "hardware_address", address
            )
            identify = await self._open_ports(
                address, self.config.identify_ports, self.config.identify_port_timeout_seconds
            )
            open_ports = await self._open_ports(
                address, self.config.common_ports, self.config.port_timeout_seconds
            )

            device = NetworkDevice(
                ip_address=address,
                hostname=hostname or "",
                hardware_address=(hardware or "").upper(),
                device_type=classify_device(identify),
                is_online=True,
                response_time_ms=max(0.0, response_ms),
                last_seen=self.clock(),
                open_ports=frozenset(open_ports),
            )
        except Exception as e:
            return Result.err(ScanFailure(address, str(e)))

        return Result.ok(device)

    async def _lookup(self, lookup: Awaitable[T], name: str, address: str) -> T | None:
        try:
            return await asyncio.wait_for(lookup, timeout=self.config.lookup_timeout_seconds)
        except Exception as e:
            self.logger.debug("lookup_failed", lookup=name, address=address, error=str(e))
            return None

    async def _open_ports(self, address: str, ports: list[int], timeout: float) -> set[int]:
        async with asyncio.TaskGroup() as task_group:
            tasks = {
                port: task_group.create_task(self._port_open(address, port, timeout))
                for port in ports
            }
        return {port for port, task in tasks.items() if task.result()}

    async def _port_open(self, address: str, port: int, timeout: float) -> bool:
        try:
            return await asyncio.wait_for(
                self.network.is_port_open(address, port, timeout), timeout=timeout * 2
            )
        except Exception:
            return False

    def get_discovery_summary(self) -> str:
        devices = self.discovered_devices
        if not devices:
            return "No devices discovered. Run a network scan first."

        by_type = Counter(device.device_type.value for device in devices)
        lines = [
            "Network Scan Results:",
            f"Found {len(devices)} devices",
            "",
            "By Type: " + ", ".join(f"{kind}: {count}" for kind, count in by_type.items()),
            "",
            "Devices:",
        ]
        lines.extend(
            f"  - {d.ip_address} - {d.hostname or 'Unknown'} ({d.device_type.value})"
            for d in devices
        )
        return "\n".join(lines)

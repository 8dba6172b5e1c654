"""
Local-host probe adapters.

- PsutilMetricsProvider: CPU, memory, drives, adapters, processes, uptime
- LocalNetworkPrimitives: ping, TCP connect, reverse DNS, neighbor cache
- LocalConfigurationProvider: startup entries, security products, disk
  health, last update and well-known folders

Linux, macOS and Windows are handled where the platform exposes the data;
anything a platform cannot answer comes back empty or None.
"""

import asyncio
import ipaddress
import json
import math
import os
import re
import socket
import subprocess
import sys
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path

import psutil
import structlog

from hostwatch.services.probes import (
    AdapterAddress,
    AdapterReading,
    DiskStatus,
    DriveReading,
    MemoryReading,
    ProcessReading,
    SecurityProductStatus,
)

logger = structlog.get_logger(__name__)

IS_WINDOWS = sys.platform == "win32"
IS_MACOS = sys.platform == "darwin"

_MAC_PATTERN = re.compile(r"(?:[0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}")
_EMPTY_MAC = "00:00:00:00:00:00"

_TCP_FALLBACK_PORTS = (80, 443, 22, 445)
ARP_TIMEOUT_SECONDS = 2.0


def _is_loopback(name: str, addresses: list) -> bool:
    if name == "lo" or name.lower().startswith("loopback"):
        return True
    return any(
        addr.family == socket.AF_INET and addr.address.startswith("127.") for addr in addresses
    )


class PsutilMetricsProvider:
    """OS counters via psutil."""

    def __init__(self) -> None:
        # First call always returns 0.0; prime the counter
        psutil.cpu_percent(interval=None)

    def cpu_percent(self) -> float:
        return psutil.cpu_percent(interval=None)

    def memory(self) -> MemoryReading:
        mem = psutil.virtual_memory()
        return MemoryReading(total=mem.total, available=mem.available, percent=mem.percent)

    def fixed_drives(self) -> list[DriveReading]:
        drives: list[DriveReading] = []
        seen: set[str] = set()

        for part in psutil.disk_partitions(all=False):
            if "cdrom" in part.opts or not part.fstype or part.device in seen:
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            seen.add(part.device)
            name = part.mountpoint.rstrip("\\") if IS_WINDOWS else part.mountpoint
            drives.append(
                DriveReading(
                    name=name, total_bytes=usage.total, free_bytes=usage.free, label=part.device
                )
            )
        return drives

    def network_adapters(self) -> list[AdapterReading]:
        stats = psutil.net_if_stats()
        counters = psutil.net_io_counters(pernic=True)
        addresses = psutil.net_if_addrs()

        adapters = []
        for name, stat in stats.items():
            io = counters.get(name)
            adapters.append(
                AdapterReading(
                    name=name,
                    speed_mbps=stat.speed,
                    is_up=stat.isup,
                    is_loopback=_is_loopback(name, addresses.get(name, [])),
                    bytes_sent=io.bytes_sent if io else 0,
                    bytes_received=io.bytes_recv if io else 0,
                )
            )
        return adapters

    def processes(self) -> list[ProcessReading]:
        readings = []
        attrs = ["pid", "name", "memory_info", "num_threads", "cpu_times"]

        for proc in psutil.process_iter(attrs=attrs):
            try:
                info = proc.info
                mem_info = info.get("memory_info")
                cpu_times = info.get("cpu_times")
                readings.append(
                    ProcessReading(
                        name=info.get("name") or "",
                        pid=info.get("pid", 0),
                        memory_bytes=mem_info.rss if mem_info else 0,
                        thread_count=info.get("num_threads") or 0,
                        cpu_time_seconds=(cpu_times.user + cpu_times.system) if cpu_times else 0.0,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return readings

    def uptime_seconds(self) -> float:
        return time.time() - psutil.boot_time()


def ping_command(address: str, timeout: float) -> list[str]:
    """Single-echo ping invocation for the current platform."""
    if IS_WINDOWS:
        return ["ping", "-n", "1", "-w", str(max(1, int(timeout * 1000))), address]
    if IS_MACOS:
        return ["ping", "-c", "1", "-W", str(max(1, int(timeout * 1000))), address]
    return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout))), address]


def parse_proc_arp(text: str, address: str) -> str | None:
    """Hardware address of ``address`` from /proc/net/arp content."""
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) >= 4 and parts[0] == address and parts[3] != _EMPTY_MAC:
            return parts[3].upper()
    return None


def parse_arp_output(text: str, address: str) -> str | None:
    """Hardware address of ``address`` from ``arp -a`` output on any platform."""
    for line in text.splitlines():
        if not re.search(rf"(?<![\d.]){re.escape(address)}(?![\d.])", line):
            continue
        match = _MAC_PATTERN.search(line)
        if match:
            return match.group(0).upper().replace("-", ":")
    return None


def parse_proc_route(text: str) -> dict[str, str]:
    """Default gateway per interface from /proc/net/route content."""
    gateways: dict[str, str] = {}
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 3 or parts[1] != "00000000":
            continue
        try:
            raw = int(parts[2], 16)
        except ValueError:
            continue
        gateways.setdefault(parts[0], socket.inet_ntoa(raw.to_bytes(4, "little")))
    return gateways


def parse_resolv_conf(text: str) -> list[str]:
    servers = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            servers.append(parts[1])
    return servers


def _read_text(path: str) -> str:
    try:
        return Path(path).read_text()
    except OSError:
        return ""


def _command_output(*argv: str) -> str:
    try:
        completed = subprocess.run(argv, capture_output=True, text=True, timeout=5, check=False)
    except (OSError, subprocess.SubprocessError):
        return ""
    return completed.stdout


def parse_route_print(text: str) -> dict[str, str]:
    """Default gateway per interface address from Windows ``route print -4`` output."""
    gateways: dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 5 and parts[:2] == ["0.0.0.0", "0.0.0.0"] and parts[2] != "On-link":
            gateways.setdefault(parts[3], parts[2])
    return gateways


def parse_ipconfig_dns(text: str) -> list[str]:
    """DNS servers listed by Windows ``ipconfig /all``, first occurrence order."""
    servers: list[str] = []
    collecting = False
    for line in text.splitlines():
        if "DNS Servers" in line and ":" in line:
            value = line.split(":", 1)[1].strip()
            collecting = True
        elif collecting and line.startswith(" "):
            value = line.strip()
        else:
            collecting = False
            continue

        try:
            ipaddress.ip_address(value.split("%")[0])
        except ValueError:
            collecting = False
            continue
        if value not in servers:
            servers.append(value)
    return servers


def parse_route_get(text: str) -> dict[str, str]:
    """Default gateway keyed by interface from macOS ``route -n get default``."""
    fields = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields[key.strip()] = value.strip()
    if fields.get("gateway") and fields.get("interface"):
        return {fields["interface"]: fields["gateway"]}
    return {}


def parse_scutil_dns(text: str) -> list[str]:
    """Resolver addresses from macOS ``scutil --dns``, duplicates removed."""
    servers: list[str] = []
    for match in re.finditer(r"nameserver\[\d+\]\s*:\s*(\S+)", text):
        if match.group(1) not in servers:
            servers.append(match.group(1))
    return servers


def default_routes() -> tuple[dict[str, str], list[str]]:
    """Default gateway per interface (name or IPv4 address) and the host's DNS servers."""
    if IS_WINDOWS:
        return (
            parse_route_print(_command_output("route", "print", "-4")),
            parse_ipconfig_dns(_command_output("ipconfig", "/all")),
        )
    if IS_MACOS:
        return (
            parse_route_get(_command_output("route", "-n", "get", "default")),
            parse_scutil_dns(_command_output("scutil", "--dns")),
        )
    return (
        parse_proc_route(_read_text("/proc/net/route")),
        parse_resolv_conf(_read_text("/etc/resolv.conf")),
    )


def _adapter_gateways(gateways: dict[str, str], name: str, ipv4: str | None) -> list[str]:
    gateway = gateways.get(name) or (gateways.get(ipv4) if ipv4 else None)
    return [gateway] if gateway else []


def ping_succeeded(returncode: int | None, output: str) -> bool:
    """
    Whether a single-echo ping got a reply.

    Windows ping exits 0 when the local host answers "Destination host
    unreachable", so there an echo reply line (``TTL=``) is required too.
    """
    if returncode != 0:
        return False
    return not IS_WINDOWS or "TTL=" in output.upper()


async def communicate_or_kill(proc: asyncio.subprocess.Process, timeout: float) -> str | None:
    """
    Decoded stdout of ``proc``, or None when it does not exit within ``timeout``.

    The child is killed and reaped on timeout and when the awaiting task is
    cancelled.
    """
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        return None
    finally:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
    return (stdout or b"").decode(errors="replace")


class LocalNetworkPrimitives:
    """Reachability and lookup primitives built on asyncio sockets and subprocesses."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="network_primitives")
        self._has_ping = True

    async def ping(self, address: str, timeout: float) -> float | None:
        if not self._has_ping:
            return await self._tcp_reachability(address, timeout)

        start = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *ping_command(address, timeout),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            self.logger.warning("ping_unavailable_using_tcp")
            self._has_ping = False
            return await self._tcp_reachability(address, timeout)

        output = await communicate_or_kill(proc, timeout + 1.0)
        if output is None or not ping_succeeded(proc.returncode, output):
            return None
        return (time.perf_counter() - start) * 1000

    async def _tcp_reachability(self, address: str, timeout: float) -> float | None:
        """A refused connection still proves the host is up."""
        for port in _TCP_FALLBACK_PORTS:
            start = time.perf_counter()
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(address, port), timeout=timeout
                )
                writer.close()
                return (time.perf_counter() - start) * 1000
            except ConnectionRefusedError:
                return (time.perf_counter() - start) * 1000
            except (OSError, TimeoutError):
                continue
        return None

    async def is_port_open(self, address: str, port: int, timeout: float) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(address, port), timeout=timeout
            )
        except (OSError, TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def reverse_dns(self, address: str) -> str | None:
        try:
            hostname, _, _ = await asyncio.to_thread(socket.gethostbyaddr, address)
        except (socket.herror, socket.gaierror, OSError):
            return None
        return hostname

    async def hardware_address(self, address: str) -> str | None:
        if sys.platform.startswith("linux"):
            found = parse_proc_arp(await asyncio.to_thread(_read_text, "/proc/net/arp"), address)
            if found:
                return found

        try:
            proc = await asyncio.create_subprocess_exec(
                "arp",
                "-a",
                address,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return None

        output = await communicate_or_kill(proc, ARP_TIMEOUT_SECONDS)
        if output is None:
            return None
        return parse_arp_output(output, address)

    def adapters(self) -> list[AdapterAddress]:
        stats = psutil.net_if_stats()
        gateways, dns_servers = default_routes()

        adapters = []
        for name, addresses in psutil.net_if_addrs().items():
            ipv4 = next((a for a in addresses if a.family == socket.AF_INET), None)
            hardware = next((a.address for a in addresses if a.family == psutil.AF_LINK), "")
            stat = stats.get(name)
            adapters.append(
                AdapterAddress(
                    name=name,
                    is_up=bool(stat and stat.isup),
                    is_loopback=_is_loopback(name, addresses),
                    ipv4_address=ipv4.address if ipv4 else None,
                    netmask=ipv4.netmask if ipv4 else None,
                    hardware_address=hardware.upper().replace("-", ":"),
                    gateways=_adapter_gateways(gateways, name, ipv4.address if ipv4 else None),
                    dns_servers=dns_servers,
                )
            )
        return adapters


def decode_product_state(state: int) -> tuple[bool, bool]:
    """(enabled, up_to_date) from a SecurityCenter2 productState value."""
    enabled = ((state >> 12) & 0xF) == 1
    up_to_date = ((state >> 4) & 0xF) == 0
    return enabled, up_to_date


def _powershell_json(command: str) -> list[dict]:
    completed = subprocess.run(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", f"{command} | ConvertTo-Json"],
        capture_output=True,
        text=True,
        timeout=15,
        check=True,
    )
    if not completed.stdout.strip():
        return []
    data = json.loads(completed.stdout)
    return data if isinstance(data, list) else [data]


class LocalConfigurationProvider:
    """Startup items, security status, disk health and folders of the local host."""

    def __init__(self, home: Path | None = None) -> None:
        self.home = home or Path.home()

    def startup_entries(self) -> list[str]:
        if IS_WINDOWS:
            return self._windows_startup_entries()

        if IS_MACOS:
            folders = [self.home / "Library" / "LaunchAgents", Path("/Library/LaunchAgents")]
            pattern = "*.plist"
        else:
            folders = [self.home / ".config" / "autostart", Path("/etc/xdg/autostart")]
            pattern = "*.desktop"

        entries = []
        for folder in folders:
            if folder.is_dir():
                entries.extend(str(path) for path in sorted(folder.glob(pattern)))
        return entries

    def _windows_startup_entries(self) -> list[str]:
        import winreg

        entries = []
        run_key = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Run"
        for hive in (winreg.HKEY_CURRENT_USER, winreg.HKEY_LOCAL_MACHINE):
            try:
                with winreg.OpenKey(hive, run_key) as key:
                    count = winreg.QueryInfoKey(key)[1]
                    entries.extend(winreg.EnumValue(key, i)[0] for i in range(count))
            except OSError:
                continue

        startup = (
            Path(os.environ.get("APPDATA", ""))
            / "Microsoft"
            / "Windows"
            / "Start Menu"
            / "Programs"
            / "Startup"
        )
        if startup.is_dir():
            entries.extend(str(path) for path in startup.glob("*.lnk"))
        return entries

    def security_products(self) -> list[SecurityProductStatus] | None:
        if not IS_WINDOWS:
            return None

        rows = _powershell_json(
            "Get-CimInstance -Namespace root/SecurityCenter2 -ClassName AntiVirusProduct"
            " | Select-Object displayName, productState"
        )
        products = []
        for row in rows:
            enabled, up_to_date = decode_product_state(int(row.get("productState") or 0))
            products.append(
                SecurityProductStatus(
                    name=row.get("displayName") or "Unknown",
                    enabled=enabled,
                    up_to_date=up_to_date,
                )
            )
        return products

    def disk_statuses(self) -> list[DiskStatus]:
        if IS_WINDOWS:
            rows = _powershell_json(
                "Get-CimInstance Win32_DiskDrive | Select-Object DeviceID, Model, Status"
            )
            return [
                DiskStatus(
                    device_id=row.get("DeviceID") or "",
                    model=(row.get("Model") or "").strip(),
                    status=row.get("Status") or "Unknown",
                )
                for row in rows
            ]

        block = Path("/sys/block")
        if not block.is_dir():
            return []

        statuses = []
        for device in sorted(block.iterdir()):
            state_file = device / "device" / "state"
            if device.name.startswith(("loop", "ram", "zram")) or not state_file.exists():
                continue
            state = _read_text(str(state_file)).strip()
            statuses.append(
                DiskStatus(
                    device_id=device.name,
                    model=_read_text(str(device / "device" / "model")).strip(),
                    status="OK" if state in ("running", "live") else state or "Unknown",
                )
            )
        return statuses

    def last_update_installed(self) -> datetime | None:
        if IS_WINDOWS:
            return self._windows_last_update()

        candidates = [
            Path("/var/log/apt/history.log"),
            Path("/var/log/dnf.log"),
            Path("/var/log/pacman.log"),
            Path("/Library/Receipts/InstallHistory.plist"),
        ]
        times = [path.stat().st_mtime for path in candidates if path.exists()]
        if not times:
            return None
        return datetime.fromtimestamp(max(times), UTC)

    def _windows_last_update(self) -> datetime | None:
        import winreg

        key_path = (
            r"SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\Results\Install"
        )
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path) as key:
                value, _ = winreg.QueryValueEx(key, "LastSuccessTime")
        except OSError:
            return None
        try:
            return datetime.strptime(str(value), "%Y-%m-%d %H:%M:%S").replace(tzinfo=UTC)
        except ValueError:
            return None

    def downloads_directory(self) -> Path | None:
        downloads = self.home / "Downloads"
        return downloads if downloads.is_dir() else None

    def temp_directory(self) -> Path | None:
        return Path(tempfile.gettempdir())

    def browser_cache_directories(self) -> list[Path]:
        if IS_WINDOWS:
            local = Path(os.environ.get("LOCALAPPDATA", self.home / "AppData" / "Local"))
            candidates = [
                local / "Google" / "Chrome" / "User Data" / "Default" / "Cache",
                local / "Microsoft" / "Edge" / "User Data" / "Default" / "Cache",
            ]
        elif IS_MACOS:
            caches = self.home / "Library" / "Caches"
            candidates = [caches / "Google" / "Chrome", caches / "Firefox"]
        else:
            cache = self.home / ".cache"
            candidates = [
                cache / "google-chrome" / "Default" / "Cache",
                cache / "chromium" / "Default" / "Cache",
                cache / "mozilla" / "firefox",
            ]
        return [path for path in candidates if path.is_dir()]

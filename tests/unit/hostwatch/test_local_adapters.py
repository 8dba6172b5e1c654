"""
Tests for the local host adapters.

Parsing helpers are exercised with captured command output; socket-level
checks run against a listener on the loopback interface.
"""

import asyncio
import os
import sys
from pathlib import Path

import psutil
import pytest

from hostwatch.adapters import local
from hostwatch.adapters.local import (
    LocalConfigurationProvider,
    LocalNetworkPrimitives,
    PsutilMetricsProvider,
    communicate_or_kill,
    decode_product_state,
    parse_arp_output,
    parse_ipconfig_dns,
    parse_proc_arp,
    parse_proc_route,
    parse_resolv_conf,
    parse_route_get,
    parse_route_print,
    parse_scutil_dns,
    ping_command,
    ping_succeeded,
)

PROC_ARP = """\
IP address       HW type     Flags       HW address            Mask     Device
192.168.1.1      0x1         0x2         aa:bb:cc:dd:ee:01     *        eth0
192.168.1.12     0x1         0x0         00:00:00:00:00:00     *        eth0
192.168.1.15     0x1         0x2         aa:bb:cc:dd:ee:0f     *        eth0
"""

WINDOWS_ARP = """\
Interface: 192.168.1.57 --- 0xb
  Internet Address      Physical Address      Type
  192.168.1.1           aa-bb-cc-dd-ee-01     dynamic
  192.168.1.10          aa-bb-cc-dd-ee-0a     dynamic
"""

MACOS_ARP = (
    "? (192.168.1.10) at aa:bb:cc:dd:ee:a on en0 ifscope [ethernet]\n"
    "router.lan (192.168.1.1) at aa:bb:cc:dd:ee:01 on en0 ifscope [ethernet]\n"
)

PROC_ROUTE = """\
Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT
eth0\t00000000\t0101A8C0\t0003\t0\t0\t100\t00000000\t0\t0\t0
eth0\t0001A8C0\t00000000\t0001\t0\t0\t100\t00FFFFFF\t0\t0\t0
wlan0\t00000000\t FE00000A\t0003\t0\t0\t600\t00000000\t0\t0\t0
"""


ROUTE_PRINT = """\
IPv4 Route Table
===========================================================================
Active Routes:
Network Destination        Netmask          Gateway       Interface  Metric
          0.0.0.0          0.0.0.0      192.168.1.1     192.168.1.57     25
        127.0.0.0        255.0.0.0         On-link         127.0.0.1    331
      192.168.1.0    255.255.255.0         On-link      192.168.1.57    281
===========================================================================
"""

IPCONFIG_ALL = """\
Ethernet adapter Ethernet:

   Connection-specific DNS Suffix  . : lan
   IPv4 Address. . . . . . . . . . . : 192.168.1.57(Preferred)
   Default Gateway . . . . . . . . . : 192.168.1.1
   DNS Servers . . . . . . . . . . . : 192.168.1.1
                                       8.8.8.8
   NetBIOS over Tcpip. . . . . . . . : Enabled

Wireless LAN adapter Wi-Fi:

   DNS Servers . . . . . . . . . . . : 192.168.1.1
"""

ROUTE_GET = """\
   route to: default
destination: default
       mask: default
    gateway: 192.168.1.1
  interface: en0
      flags: <UP,GATEWAY,DONE,STATIC,PRCLONING>
"""

SCUTIL_DNS = """\
DNS configuration

resolver #1
  search domain[0] : lan
  nameserver[0] : 192.168.1.1
  nameserver[1] : 1.1.1.1
  if_index : 6 (en0)

resolver #2
  domain   : local
  nameserver[0] : 192.168.1.1
"""


class TestParsers:
    def test_proc_arp_lookup(self) -> None:
        assert parse_proc_arp(PROC_ARP, "192.168.1.15") == "AA:BB:CC:DD:EE:0F"

    def test_proc_arp_ignores_incomplete_entries(self) -> None:
        assert parse_proc_arp(PROC_ARP, "192.168.1.12") is None
        assert parse_proc_arp(PROC_ARP, "192.168.1.99") is None

    def test_windows_arp_output(self) -> None:
        assert parse_arp_output(WINDOWS_ARP, "192.168.1.1") == "AA:BB:CC:DD:EE:01"
        assert parse_arp_output(WINDOWS_ARP, "192.168.1.10") == "AA:BB:CC:DD:EE:0A"

    def test_arp_output_matches_whole_address(self) -> None:
        assert parse_arp_output(MACOS_ARP, "192.168.1.1") == "AA:BB:CC:DD:EE:01"
        assert parse_arp_output(WINDOWS_ARP, "192.168.1.100") is None

    def test_default_gateway_from_route_table(self) -> None:
        assert parse_proc_route(PROC_ROUTE) == {"eth0": "192.168.1.1", "wlan0": "10.0.0.254"}

    def test_resolv_conf(self) -> None:
        text = "# generated\nsearch lan\nnameserver 192.168.1.1\nnameserver 1.1.1.1\nnameserver\n"
        assert parse_resolv_conf(text) == ["192.168.1.1", "1.1.1.1"]

    def test_windows_default_route_keyed_by_interface_address(self) -> None:
        assert parse_route_print(ROUTE_PRINT) == {"192.168.1.57": "192.168.1.1"}

    def test_windows_dns_servers_include_continuation_lines(self) -> None:
        assert parse_ipconfig_dns(IPCONFIG_ALL) == ["192.168.1.1", "8.8.8.8"]

    def test_macos_default_route(self) -> None:
        assert parse_route_get(ROUTE_GET) == {"en0": "192.168.1.1"}
        assert parse_route_get("route: writing to routing socket: not in table\n") == {}

    def test_macos_dns_servers(self) -> None:
        assert parse_scutil_dns(SCUTIL_DNS) == ["192.168.1.1", "1.1.1.1"]


class TestProductState:
    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            (0x061100, (True, True)),
            (0x061110, (True, False)),
            (0x060100, (False, True)),
            (0x060110, (False, False)),
        ],
    )
    def test_decode_product_state(self, state: int, expected: tuple[bool, bool]) -> None:
        assert decode_product_state(state) == expected


class TestPingCommand:
    def test_linux_timeout_rounds_up_to_seconds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(local, "IS_WINDOWS", False)
        monkeypatch.setattr(local, "IS_MACOS", False)
        assert ping_command("10.0.0.1", 0.5) == ["ping", "-c", "1", "-W", "1", "10.0.0.1"]

    def test_windows_timeout_in_milliseconds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(local, "IS_WINDOWS", True)
        assert ping_command("10.0.0.1", 0.5) == ["ping", "-n", "1", "-w", "500", "10.0.0.1"]


class TestPingReply:
    def test_non_zero_exit_is_unreachable(self) -> None:
        assert not ping_succeeded(1, "")

    def test_exit_code_is_enough_off_windows(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(local, "IS_WINDOWS", False)
        assert ping_succeeded(0, "")

    def test_windows_requires_echo_reply(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(local, "IS_WINDOWS", True)
        unreachable = "Reply from 192.168.1.57: Destination host unreachable.\r\n"
        reply = "Reply from 192.168.1.1: bytes=32 time<1ms TTL=64\r\n"

        assert not ping_succeeded(0, unreachable)
        assert ping_succeeded(0, reply)


def _sleeping_child() -> list[str]:
    return [sys.executable, "-c", "import time; time.sleep(30)"]


class TestChildProcesses:
    """Lookup subprocesses never outlive the call that started them."""

    async def test_timeout_kills_and_reaps(self) -> None:
        proc = await asyncio.create_subprocess_exec(
            *_sleeping_child(), stdout=asyncio.subprocess.PIPE
        )

        assert await communicate_or_kill(proc, 0.2) is None
        assert proc.returncode is not None

    async def test_cancellation_kills_and_reaps(self) -> None:
        proc = await asyncio.create_subprocess_exec(
            *_sleeping_child(), stdout=asyncio.subprocess.PIPE
        )
        task = asyncio.create_task(communicate_or_kill(proc, 30.0))
        await asyncio.sleep(0.2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert proc.returncode is not None

    async def test_finished_output_is_decoded(self) -> None:
        proc = await asyncio.create_subprocess_exec(
            sys.executable, "-c", "print('aa-bb')", stdout=asyncio.subprocess.PIPE
        )

        assert (await communicate_or_kill(proc, 10.0)).strip() == "aa-bb"

    @pytest.mark.skipif(sys.platform == "win32", reason="shell script stands in for arp")
    async def test_hanging_arp_leaves_no_children(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        arp = tmp_path / "arp"
        arp.write_text("#!/bin/sh\nexec sleep 30\n")
        arp.chmod(0o755)
        monkeypatch.setenv("PATH", f"{tmp_path}{os.pathsep}{os.environ.get('PATH', '')}")
        monkeypatch.setattr(local, "ARP_TIMEOUT_SECONDS", 0.2)

        assert await LocalNetworkPrimitives().hardware_address("10.254.254.254") is None
        assert [c for c in psutil.Process().children() if c.is_running()] == []


class TestLocalNetworkPrimitives:
    async def test_port_probe_against_loopback_listener(self) -> None:
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        primitives = LocalNetworkPrimitives()

        try:
            assert await primitives.is_port_open("127.0.0.1", port, 1.0)
        finally:
            server.close()
            await server.wait_closed()

        assert not await primitives.is_port_open("127.0.0.1", port, 1.0)

    async def test_tcp_fallback_counts_refusal_as_reachable(self) -> None:
        primitives = LocalNetworkPrimitives()
        primitives._has_ping = False

        # Loopback either accepts or refuses on the fallback ports
        assert await primitives.ping("127.0.0.1", 0.5) is not None

    def test_adapters_include_loopback(self) -> None:
        adapters = LocalNetworkPrimitives().adapters()
        assert any(a.is_loopback for a in adapters)

    def test_gateway_matched_by_interface_address(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            local, "default_routes", lambda: ({"127.0.0.1": "10.0.0.1"}, ["10.0.0.53"])
        )

        adapters = LocalNetworkPrimitives().adapters()

        (loopback,) = [a for a in adapters if a.ipv4_address == "127.0.0.1"]
        assert loopback.gateways == ["10.0.0.1"]
        assert all(a.dns_servers == ["10.0.0.53"] for a in adapters)


class TestPsutilMetricsProvider:
    def test_readings_are_sane(self) -> None:
        provider = PsutilMetricsProvider()

        memory = provider.memory()
        assert memory.total > 0
        assert 0.0 <= memory.percent <= 100.0
        assert 0.0 <= provider.cpu_percent() <= 100.0
        assert provider.uptime_seconds() > 0
        assert all(d.name and d.total_bytes >= 0 for d in provider.fixed_drives())
        assert all(p.pid >= 0 for p in provider.processes())


class TestLocalConfigurationProvider:
    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="XDG autostart layout")
    def test_autostart_entries(self, tmp_path: Path) -> None:
        autostart = tmp_path / ".config" / "autostart"
        autostart.mkdir(parents=True)
        (autostart / "chat.desktop").write_text("[Desktop Entry]\n")
        (autostart / "sync.desktop").write_text("[Desktop Entry]\n")
        (autostart / "notes.txt").write_text("ignored")

        entries = LocalConfigurationProvider(home=tmp_path).startup_entries()

        user_entries = [e for e in entries if e.startswith(str(tmp_path))]
        assert [Path(e).name for e in user_entries] == ["chat.desktop", "sync.desktop"]

    def test_downloads_directory(self, tmp_path: Path) -> None:
        provider = LocalConfigurationProvider(home=tmp_path)
        assert provider.downloads_directory() is None

        (tmp_path / "Downloads").mkdir()
        assert provider.downloads_directory() == tmp_path / "Downloads"

    def test_browser_caches_only_existing(self, tmp_path: Path) -> None:
        assert LocalConfigurationProvider(home=tmp_path).browser_cache_directories() == []

    @pytest.mark.skipif(sys.platform == "win32", reason="SecurityCenter2 is queried on Windows")
    def test_security_status_unknown_off_windows(self) -> None:
        assert LocalConfigurationProvider().security_products() is None

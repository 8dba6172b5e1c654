"""
Domain models for host health monitoring.

These models represent the core business concepts and are framework-agnostic.
Snapshots and device records are immutable once built; alerts and issues are
updated in place by their owning component while they stay active.
"""

import ipaddress
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


class AlertSeverity(str, Enum):
    """Severity of a resource threshold alert."""

    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class IssueSeverity(str, Enum):
    """Severity of a detected issue."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class IssueCategory(str, Enum):
    """Area of the system an issue belongs to."""

    PERFORMANCE = "performance"
    STORAGE = "storage"
    SECURITY = "security"
    NETWORK = "network"
    HARDWARE = "hardware"
    SOFTWARE = "software"


class DeviceType(str, Enum):
    """Coarse device category derived from responding ports."""

    UNKNOWN = "unknown"
    WINDOWS_PC = "windows_pc"
    MACOS = "macos"
    LINUX_SERVER = "linux_server"
    ROUTER = "router"
    PRINTER = "printer"
    NETWORK_DEVICE = "network_device"
    IOT_DEVICE = "iot_device"
    MOBILE_DEVICE = "mobile_device"
    SMART_TV = "smart_tv"
    GAME_CONSOLE = "game_console"


class DriveHealth(BaseModel):
    """Capacity of one fixed drive."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    total_gb: float = Field(ge=0.0)
    free_gb: float = Field(ge=0.0)
    used_gb: float = Field(ge=0.0)
    usage_percent: float = Field(ge=0.0, le=100.0)


class NetworkAdapterHealth(BaseModel):
    """Link state and throughput counters of one active adapter."""

    model_config = ConfigDict(frozen=True)

    name: str
    speed_mbps: int = Field(default=0, ge=0)
    connected: bool = False
    bytes_sent: int = Field(default=0, ge=0)
    bytes_received: int = Field(default=0, ge=0)


class TopProcess(BaseModel):
    """One of the largest processes by resident memory."""

    model_config = ConfigDict(frozen=True)

    name: str
    pid: int
    memory_mb: float = Field(ge=0.0)
    thread_count: int = Field(default=0, ge=0)


class HealthSnapshot(BaseModel):
    """Point-in-time read of host health metrics."""

    model_config = ConfigDict(frozen=True)  # Shared with listeners, never mutated

    timestamp: datetime = Field(default_factory=utc_now)
    cpu_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    ram_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    total_ram_mb: float = Field(default=0.0, ge=0.0)
    used_ram_mb: float = Field(default=0.0, ge=0.0)
    available_ram_mb: float = Field(default=0.0, ge=0.0)
    drives: list[DriveHealth] = Field(default_factory=list)
    network_adapters: list[NetworkAdapterHealth] = Field(default_factory=list)
    top_processes: list[TopProcess] = Field(default_factory=list)
    uptime_hours: float = Field(default=0.0, ge=0.0)


class HealthAlert(BaseModel):
    """
    Threshold alert for one monitored resource.

    The id is stable per resource ("CPU", "RAM", "Disk_C:"). Once ``cleared_at``
    is set the alert is terminal and no longer in the active set.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    severity: AlertSeverity
    message: str
    triggered_at: datetime = Field(default_factory=utc_now)
    cleared_at: datetime | None = None
    last_value: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.cleared_at is None


class DetectedIssue(BaseModel):
    """An actionable problem found by one of the diagnostic checks."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1, description="Stable signature of the underlying condition")
    title: str
    description: str
    severity: IssueSeverity
    category: IssueCategory
    detected_at: datetime = Field(default_factory=utc_now)
    resolved_at: datetime | None = None
    recommendations: list[str] = Field(default_factory=list)
    auto_fix_available: bool = False
    auto_fix_id: str | None = None

    @model_validator(mode="after")
    def auto_fix_needs_id(self) -> "DetectedIssue":
        """An auto-fixable issue must name the fix to run."""
        if self.auto_fix_available and not self.auto_fix_id:
            raise ValueError("auto_fix_id is required when auto_fix_available is set")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def duration(self) -> timedelta:
        return (self.resolved_at or utc_now()) - self.detected_at


PORT_SERVICES: dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    445: "SMB",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    8080: "HTTP-Alt",
    9100: "Printer",
}


class NetworkDevice(BaseModel):
    """A host that answered during one network sweep."""

    model_config = ConfigDict(frozen=True)

    ip_address: str
    hostname: str = ""
    hardware_address: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    is_online: bool = True
    response_time_ms: float = Field(default=0.0, ge=0.0)
    last_seen: datetime = Field(default_factory=utc_now)
    open_ports: frozenset[int] = Field(default_factory=frozenset)

    @property
    def numeric_ip(self) -> int:
        """32-bit value of the address, used to order scan results."""
        return int(ipaddress.IPv4Address(self.ip_address))

    def port_services(self) -> str:
        return ", ".join(PORT_SERVICES.get(port, str(port)) for port in sorted(self.open_ports))


class NetworkInfo(BaseModel):
    """Read-only view of the active network adapter."""

    model_config = ConfigDict(frozen=True)

    local_ip: str = ""
    subnet_mask: str = ""
    gateway: str = ""
    dns_server: str = ""
    adapter_name: str = ""
    hardware_address: str = ""

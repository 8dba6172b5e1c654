"""Test domain models with property-based testing."""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from hostwatch.domain.models import (
    AlertSeverity,
    DetectedIssue,
    DeviceType,
    DriveHealth,
    HealthAlert,
    HealthSnapshot,
    IssueCategory,
    IssueSeverity,
    NetworkDevice,
)


def _issue(**overrides) -> DetectedIssue:
    fields = {
        "id": "high_memory_usage",
        "title": "High Memory Usage Detected",
        "description": "Memory at 93%",
        "severity": IssueSeverity.WARNING,
        "category": IssueCategory.PERFORMANCE,
    }
    fields.update(overrides)
    return DetectedIssue(**fields)


class TestHealthSnapshot:
    @given(
        cpu=st.floats(min_value=0.0, max_value=100.0),
        ram=st.floats(min_value=0.0, max_value=100.0),
    )
    def test_any_valid_percentages_are_accepted(self, cpu: float, ram: float) -> None:
        snapshot = HealthSnapshot(cpu_percent=cpu, ram_percent=ram)

        assert snapshot.cpu_percent == cpu
        assert snapshot.timestamp.tzinfo == UTC

    @pytest.mark.parametrize("value", [-0.1, 100.1])
    def test_out_of_range_percent_is_rejected(self, value: float) -> None:
        with pytest.raises(ValueError):
            HealthSnapshot(cpu_percent=value)

    def test_snapshot_is_immutable(self) -> None:
        snapshot = HealthSnapshot(cpu_percent=10.0)
        with pytest.raises(ValueError, match="frozen"):
            snapshot.cpu_percent = 50.0  # type: ignore

    def test_drive_usage_is_bounded(self) -> None:
        with pytest.raises(ValueError):
            DriveHealth(name="C:", total_gb=1, free_gb=0, used_gb=1, usage_percent=120)


class TestHealthAlert:
    def test_active_until_cleared(self) -> None:
        alert = HealthAlert(id="CPU", severity=AlertSeverity.WARNING, message="CPU usage at 85%")
        assert alert.is_active

        alert.cleared_at = datetime.now(UTC)
        assert not alert.is_active

    def test_empty_id_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            HealthAlert(id="", severity=AlertSeverity.WARNING, message="x")


class TestDetectedIssue:
    def test_auto_fix_requires_fix_id(self) -> None:
        with pytest.raises(ValueError, match="auto_fix_id"):
            _issue(auto_fix_available=True)

        issue = _issue(auto_fix_available=True, auto_fix_id="cleanup_temp")
        assert issue.auto_fix_id == "cleanup_temp"

    def test_resolution_and_duration(self) -> None:
        detected = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
        issue = _issue(detected_at=detected)
        assert not issue.is_resolved

        issue.resolved_at = detected + timedelta(minutes=12)

        assert issue.is_resolved
        assert issue.duration == timedelta(minutes=12)
        assert issue.model_dump()["is_resolved"] is True


class TestNetworkDevice:
    def test_numeric_ip_orders_by_value(self) -> None:
        low = NetworkDevice(ip_address="192.168.1.9")
        high = NetworkDevice(ip_address="192.168.1.10")
        assert low.numeric_ip < high.numeric_ip

    def test_port_services(self) -> None:
        device = NetworkDevice(
            ip_address="192.168.1.4",
            device_type=DeviceType.LINUX_SERVER,
            open_ports=frozenset({443, 22, 5432, 12345}),
        )
        assert device.port_services() == "SSH, HTTPS, PostgreSQL, 12345"

    def test_device_is_immutable(self) -> None:
        device = NetworkDevice(ip_address="192.168.1.4")
        with pytest.raises(ValueError, match="frozen"):
            device.hostname = "changed"  # type: ignore

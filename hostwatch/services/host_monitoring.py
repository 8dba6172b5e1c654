"""
Coordinator that wires health sampling, issue detection and network discovery.

Components are constructed explicitly and share one EventBus. The coordinator
turns alerts and issues into user-facing notifications and renders a
plain-text system report.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime

import structlog

from hostwatch.config import AppConfig, get_config
from hostwatch.domain.models import DetectedIssue, HealthAlert, IssueSeverity, utc_now
from hostwatch.services.events import EventBus, EventType
from hostwatch.services.health_sampler import HealthSampler
from hostwatch.services.issue_detector import IssueDetector
from hostwatch.services.network_discovery import NetworkDiscoveryScanner
from hostwatch.services.probes import ConfigurationProvider, MetricsProvider, NetworkPrimitives
from hostwatch.services.result import Result

logger = structlog.get_logger(__name__)

_RULE = "=" * 47
_SECTION = "-" * 47

# Repair routine for an auto_fix_id. An Ok result carries a short outcome message
FixAction = Callable[[DetectedIssue], Awaitable[Result[str, Exception]]]


class HostWatchService:
    """
    Main service that orchestrates the monitoring engine.

    Combines:
    - HealthSampler (periodic snapshots and threshold alerts)
    - IssueDetector (periodic diagnostic battery)
    - NetworkDiscoveryScanner (on-demand subnet sweep)

    Fix routines are looked up by the ``auto_fix_id`` a detected issue
    carries. None are registered by default.
    """

    def __init__(
        self,
        metrics: MetricsProvider,
        network: NetworkPrimitives,
        system: ConfigurationProvider,
        config: AppConfig | None = None,
        events: EventBus | None = None,
        fixes: Mapping[str, FixAction] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.events = events or EventBus()
        self.fixes: dict[str, FixAction] = dict(fixes or {})
        self.logger = logger.bind(component="host_monitoring")

        self.health_sampler = HealthSampler(metrics, self.config.sampler, self.events)
        self.issue_detector = IssueDetector(
            metrics, system, self.health_sampler, self.config.detector, self.events
        )
        self.network_discovery = NetworkDiscoveryScanner(network, self.config.scanner, self.events)

        self.events.subscribe(EventType.ALERT_TRIGGERED, self._on_alert_triggered)
        self.events.subscribe(EventType.ISSUE_DETECTED, self._on_issue_detected)

    def _on_alert_triggered(self, alert: HealthAlert) -> None:
        self.events.emit(EventType.NOTIFICATION, f"Alert: {alert.message}")

    def _on_issue_detected(self, issue: DetectedIssue) -> None:
        if issue.severity is IssueSeverity.CRITICAL:
            self.events.emit(EventType.CRITICAL_ISSUE, issue)
            self.events.emit(EventType.NOTIFICATION, f"CRITICAL: {issue.title}")
        else:
            self.events.emit(EventType.NOTIFICATION, f"Issue detected: {issue.title}")

    def start_all_monitoring(self) -> None:
        self.health_sampler.start_monitoring(self.config.sampler.interval_seconds)
        self.issue_detector.start_analysis(self.config.detector.interval_seconds)
        self.logger.info("all_monitoring_started")

    def stop_all_monitoring(self) -> None:
        self.health_sampler.stop_monitoring()
        self.issue_detector.stop_analysis()
        self.network_discovery.cancel_scan()
        self.logger.info("all_monitoring_stopped")

    async def auto_fix_issue(self, issue_id: str) -> str:
        """
        Run the fix registered for an active issue and re-analyse afterwards.

        Returns a user-facing outcome message. A fix that raises counts as a
        failed fix.
        """
        issue = next((i for i in self.issue_detector.active_issues if i.id == issue_id), None)
        if issue is None:
            return f"Issue '{issue_id}' not found or already resolved."
        if not issue.auto_fix_available or not issue.auto_fix_id:
            return f"No automatic fix available for '{issue.title}'. Manual intervention required."

        fix = self.fixes.get(issue.auto_fix_id)
        if fix is None:
            self.logger.warning(
                "auto_fix_unregistered", issue_id=issue_id, fix_id=issue.auto_fix_id
            )
            return f"Fix failed: no fix registered for '{issue.auto_fix_id}'."

        self.events.emit(EventType.NOTIFICATION, f"Auto-fixing: {issue.title}")
        try:
            outcome = await fix(issue)
        except Exception as e:
            outcome = Result.err(e)

        if outcome.is_err():
            error = outcome.unwrap_err()
            self.logger.error(
                "auto_fix_failed", issue_id=issue_id, fix_id=issue.auto_fix_id, error=str(error)
            )
            return f"Fix failed: {error}"

        self.logger.info("auto_fix_applied", issue_id=issue_id, fix_id=issue.auto_fix_id)
        await self.issue_detector.run_full_analysis()
        return f"Fix applied: {outcome.unwrap()}"

    async def get_system_report(self, now: datetime | None = None) -> str:
        """Fresh snapshot plus a full analysis round, rendered as text."""
        health = await self.health_sampler.sample_once()
        await self.issue_detector.run_full_analysis()
        issues = self.issue_detector.active_issues
        alerts = self.health_sampler.active_alerts
        timestamp = (now or utc_now()).strftime("%Y-%m-%d %H:%M:%S UTC")

        lines = [
            _RULE,
            "HOST HEALTH REPORT",
            timestamp,
            _RULE,
            "",
            "SYSTEM OVERVIEW",
            _SECTION,
            f"CPU Usage:     {health.cpu_percent:.0f}%",
            f"RAM Usage:     {health.ram_percent:.0f}% "
            f"({health.used_ram_mb:,.0f} MB / {health.total_ram_mb:,.0f} MB)",
            f"System Uptime: {health.uptime_hours:.0f} hours",
            "",
            "STORAGE",
            _SECTION,
        ]
        lines.extend(
            f"Drive {d.name:<6} {d.usage_percent:3.0f}% used | "
            f"{d.free_gb:8.1f} GB free / {d.total_gb:8.1f} GB total"
            for d in health.drives
        )
        lines += ["", "NETWORK", _SECTION]
        lines.extend(
            f"{n.name}: {'Connected' if n.connected else 'Disconnected'} @ {n.speed_mbps} Mbps"
            for n in health.network_adapters
        )
        lines += ["", f"ACTIVE ALERTS ({len(alerts)})", _SECTION]
        lines.extend(f"[{a.severity.value}] {a.message}" for a in alerts)
        lines += ["", f"DETECTED ISSUES ({len(issues)})", _SECTION]
        for issue in issues:
            lines.append(f"[{issue.severity.value}] {issue.title}")
            lines.append(f"    {issue.description}")
            lines.extend(f"    - {rec}" for rec in issue.recommendations)
        return "\n".join(lines)


async def main() -> None:
    """Run one sampling and analysis round against the local host."""
    from rich.console import Console
    from rich.panel import Panel

    from hostwatch.adapters import (
        LocalConfigurationProvider,
        LocalNetworkPrimitives,
        PsutilMetricsProvider,
    )
    from hostwatch.observability import configure_logging

    config = get_config()
    configure_logging(config.logging)
    console = Console()

    service = HostWatchService(
        PsutilMetricsProvider(), LocalNetworkPrimitives(), LocalConfigurationProvider(), config
    )
    service.events.subscribe(
        EventType.NOTIFICATION, lambda message: console.print(f"[yellow]{message}[/yellow]")
    )

    # The first CPU reading after priming is meaningless
    await asyncio.sleep(1.0)
    report = await service.get_system_report()
    console.print(Panel(report, title="hostwatch"))
    console.print(service.health_sampler.get_health_summary())
    console.print(service.issue_detector.get_issues_summary())


if __name__ == "__main__":
    asyncio.run(main())

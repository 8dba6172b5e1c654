"""
Periodic host health sampling with hysteresis-based threshold alerts.

Each tick builds a HealthSnapshot from the metrics provider, appends it to a
bounded history and evaluates CPU, RAM and every fixed drive against its
warning/critical thresholds. Alert events fire only on state transitions.
"""

import asyncio
import threading
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TypeVar

import structlog

from hostwatch.config import AlertThresholds, HealthSamplerConfig, ResourceThreshold
from hostwatch.domain.models import (
    AlertSeverity,
    DriveHealth,
    HealthAlert,
    HealthSnapshot,
    NetworkAdapterHealth,
    TopProcess,
    utc_now,
)
from hostwatch.errors import ProbeFailure
from hostwatch.services.events import EventBus, EventType
from hostwatch.services.probes import (
    AdapterReading,
    DriveReading,
    MemoryReading,
    MetricsProvider,
    ProcessReading,
)
from hostwatch.services.result import Result

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_BYTES_PER_MB = 1024**2
_BYTES_PER_GB = 1024**3


def _clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


def target_severity(value: float, threshold: ResourceThreshold) -> AlertSeverity:
    """Map a reading onto the two rising threshold levels."""
    if value >= threshold.critical:
        return AlertSeverity.CRITICAL
    if value >= threshold.warning:
        return AlertSeverity.WARNING
    return AlertSeverity.NONE


class HealthSampler:
    """
    Samples host health on a fixed interval and keeps the active alert set.

    Design principles:
    - Every metric read is best-effort: a failing probe yields a zero/empty
      field, never an aborted snapshot or a stopped loop
    - ``collect_health_data`` is free of side effects, so callers may invoke it
      from any thread while the loop runs
    - Ticks never overlap: the loop awaits each tick before sleeping
    """

    def __init__(
        self,
        metrics: MetricsProvider,
        config: HealthSamplerConfig | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.metrics = metrics
        self.config = config or HealthSamplerConfig()
        self.events = events or EventBus()
        self.clock = clock
        self.logger = logger.bind(component="health_sampler")

        self._lock = threading.Lock()
        self._history: deque[HealthSnapshot] = deque(maxlen=self.config.history_capacity)
        self._active_alerts: dict[str, HealthAlert] = {}
        self._current_health: HealthSnapshot | None = None
        self._interval = self.config.interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def thresholds(self) -> AlertThresholds:
        return self.config.thresholds

    @thresholds.setter
    def thresholds(self, value: AlertThresholds) -> None:
        self.config.thresholds = value

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current_health(self) -> HealthSnapshot | None:
        return self._current_health

    @property
    def active_alerts(self) -> list[HealthAlert]:
        with self._lock:
            return list(self._active_alerts.values())

    @property
    def history(self) -> list[HealthSnapshot]:
        with self._lock:
            return list(self._history)

    def start_monitoring(self, interval_seconds: float | None = None) -> None:
        """Start the sampling loop on the running event loop. No-op if running."""
        if self.is_monitoring:
            return

        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self._interval = interval_seconds

        self._task = asyncio.get_running_loop().create_task(
            self._monitor_loop(), name="HealthSampler"
        )
        self.logger.info("monitoring_started", interval_seconds=self._interval)

    def stop_monitoring(self) -> None:
        """Stop the sampling loop. History and active alerts are kept."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self.logger.info("monitoring_stopped")

    async def _monitor_loop(self) -> None:
        while True:
            tick_start = time.perf_counter()

            try:
                await self.sample_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.exception("health_tick_failed", error=str(e))

            elapsed = time.perf_counter() - tick_start
            sleep_time = max(0.0, self._interval - elapsed)
            if sleep_time == 0.0:
                self.logger.warning(
                    "health_tick_slower_than_interval",
                    elapsed_seconds=round(elapsed, 3),
                    interval_seconds=self._interval,
                )
            await asyncio.sleep(sleep_time)

    async def sample_once(self) -> HealthSnapshot:
        """Collect a snapshot off the event loop and record it."""
        snapshot = await asyncio.to_thread(self.collect_health_data)
        self.record_snapshot(snapshot)
        return snapshot

    def _read(self, probe: str, read: Callable[[], T]) -> Result[T, ProbeFailure]:
        try:
            value = read()
        except Exception as e:
            self.logger.warning("metric_probe_failed", probe=probe, error=str(e))
            return Result.err(ProbeFailure(probe, e))
        if value is None:
            return Result.err(ProbeFailure(probe))
        return Result.ok(value)

    def collect_health_data(self) -> HealthSnapshot:
        """Build a point-in-time snapshot. Never raises for a failed probe."""
        cpu = self._read("cpu", self.metrics.cpu_percent).unwrap_or(0.0)
        memory = self._read("memory", self.metrics.memory)
        drives = self._read("drives", self.metrics.fixed_drives).unwrap_or([])
        adapters = self._read("network_adapters", self.metrics.network_adapters).unwrap_or([])
        processes = self._read("processes", self.metrics.processes).unwrap_or([])
        uptime = self._read("uptime", self.metrics.uptime_seconds).unwrap_or(0.0)

        ram = self._ram_fields(memory.unwrap()) if memory.is_ok() else {}

        return HealthSnapshot(
            timestamp=self.clock(),
            cpu_percent=_clamp_percent(cpu),
            drives=self._drive_health(drives),
            network_adapters=self._adapter_health(adapters),
            top_processes=self._top_processes(processes),
            uptime_hours=max(0.0, uptime / 3600),
            **ram,
        )

    def _ram_fields(self, memory: MemoryReading) -> dict[str, float]:
        total_mb = max(0, memory.total) / _BYTES_PER_MB
        available_mb = max(0, memory.available) / _BYTES_PER_MB
        percent = memory.percent
        if not percent and total_mb > 0:
            percent = (total_mb - available_mb) * 100 / total_mb
        return {
            "ram_percent": _clamp_percent(percent),
            "total_ram_mb": round(total_mb, 1),
            "used_ram_mb": round(max(0.0, total_mb - available_mb), 1),
            "available_ram_mb": round(available_mb, 1),
        }

    def _drive_health(self, drives: list[DriveReading]) -> list[DriveHealth]:
        result = []
        for drive in drives:
            if drive.total_bytes <= 0:
                continue
            free = min(max(0, drive.free_bytes), drive.total_bytes)
            result.append(
                DriveHealth(
                    name=drive.name,
                    label=drive.label,
                    total_gb=round(drive.total_bytes / _BYTES_PER_GB, 2),
                    free_gb=round(free / _BYTES_PER_GB, 2),
                    used_gb=round((drive.total_bytes - free) / _BYTES_PER_GB, 2),
                    usage_percent=_clamp_percent(100 - free * 100 / drive.total_bytes),
                )
            )
        return result

    def _adapter_health(self, adapters: list[AdapterReading]) -> list[NetworkAdapterHealth]:
        return [
            NetworkAdapterHealth(
                name=adapter.name,
                speed_mbps=max(0, adapter.speed_mbps),
                connected=adapter.is_up,
                bytes_sent=max(0, adapter.bytes_sent),
                bytes_received=max(0, adapter.bytes_received),
            )
            for adapter in adapters
            if adapter.is_up and not adapter.is_loopback
        ]

    def _top_processes(self, processes: list[ProcessReading]) -> list[TopProcess]:
        largest = sorted(processes, key=lambda p: p.memory_bytes, reverse=True)
        return [
            TopProcess(
                name=proc.name,
                pid=proc.pid,
                memory_mb=round(max(0, proc.memory_bytes) / _BYTES_PER_MB, 1),
                thread_count=max(0, proc.thread_count),
            )
            for proc in largest[: self.config.top_process_count]
            if proc.name
        ]

    def record_snapshot(self, snapshot: HealthSnapshot) -> None:
        """
        Append a snapshot to history, evaluate thresholds and publish events.

        Alert events carry a copy of the alert as it was at the transition.
        """
        with self._lock:
            self._current_health = snapshot
            self._history.append(snapshot)
            transitions = self._check_alerts(snapshot)

        for event, alert in transitions:
            self.events.emit(event, alert)
        self.events.emit(EventType.HEALTH_UPDATED, snapshot)

    def _check_alerts(self, health: HealthSnapshot) -> list[tuple[EventType, HealthAlert]]:
        thresholds = self.thresholds
        checks = [
            ("CPU", health.cpu_percent, thresholds.cpu, f"CPU usage at {health.cpu_percent:.0f}%"),
            (
                "RAM",
                health.ram_percent,
                thresholds.ram,
                f"RAM usage at {health.ram_percent:.0f}% "
                f"({health.used_ram_mb:.0f}MB / {health.total_ram_mb:.0f}MB)",
            ),
        ]
        checks.extend(
            (
                f"Disk_{drive.name}",
                drive.usage_percent,
                thresholds.for_drive(drive.name),
                f"Drive {drive.name} at {drive.usage_percent:.0f}% ({drive.free_gb:.1f}GB free)",
            )
            for drive in health.drives
        )

        transitions = []
        for alert_id, value, threshold, message in checks:
            transition = self._check_threshold(alert_id, value, threshold, message)
            if transition is not None:
                transitions.append(transition)

        # Drives that are no longer enumerated cannot stay in alert
        present = {f"Disk_{drive.name}" for drive in health.drives}
        for alert_id, alert in list(self._active_alerts.items()):
            if alert_id.startswith("Disk_") and alert_id not in present:
                transitions.append(self._clear_alert(alert, alert.last_value))
        return transitions

    def _check_threshold(
        self, alert_id: str, value: float, threshold: ResourceThreshold, message: str
    ) -> tuple[EventType, HealthAlert] | None:
        severity = target_severity(value, threshold)
        existing = self._active_alerts.get(alert_id)

        if severity is not AlertSeverity.NONE:
            if existing is None:
                alert = HealthAlert(
                    id=alert_id,
                    severity=severity,
                    message=message,
                    triggered_at=self.clock(),
                    last_value=value,
                )
                self._active_alerts[alert_id] = alert
                self.logger.warning(
                    "alert_triggered", alert_id=alert_id, severity=severity.value, value=value
                )
                return EventType.ALERT_TRIGGERED, alert.model_copy()

            changed = existing.severity is not severity
            existing.severity = severity
            existing.message = message
            existing.last_value = value
            if changed:
                self.logger.warning(
                    "alert_severity_changed",
                    alert_id=alert_id,
                    severity=severity.value,
                    value=value,
                )
                return EventType.ALERT_UPDATED, existing.model_copy()
            return None

        if existing is not None:
            return self._clear_alert(existing, value)

        return None

    def _clear_alert(self, alert: HealthAlert, value: float) -> tuple[EventType, HealthAlert]:
        del self._active_alerts[alert.id]
        alert.cleared_at = self.clock()
        alert.last_value = value
        self.logger.info("alert_cleared", alert_id=alert.id, value=value)
        return EventType.ALERT_CLEARED, alert.model_copy()

    def get_history(self, minutes: float | None = None) -> list[HealthSnapshot]:
        """Snapshots in tick order, optionally limited to the last ``minutes``."""
        with self._lock:
            snapshots = list(self._history)
        if minutes is None:
            return snapshots
        cutoff = self.clock() - timedelta(minutes=minutes)
        return [s for s in snapshots if s.timestamp >= cutoff]

    def get_health_summary(self) -> str:
        health = self.collect_health_data()
        alerts = self.active_alerts

        if any(a.severity is AlertSeverity.CRITICAL for a in alerts):
            status = "Critical"
        elif any(a.severity is AlertSeverity.WARNING for a in alerts):
            status = "Warning"
        else:
            status = "Healthy"

        drives = ", ".join(f"{d.name} {d.usage_percent:.0f}%" for d in health.drives) or "none"
        return "\n".join(
            [
                f"System Status: {status}",
                f"CPU: {health.cpu_percent:.0f}% | RAM: {health.ram_percent:.0f}% "
                f"({health.used_ram_mb:.0f}MB / {health.total_ram_mb:.0f}MB)",
                f"Drives: {drives}",
                f"Uptime: {health.uptime_hours:.0f} hours",
                f"Active Alerts: {len(alerts)}",
            ]
        )

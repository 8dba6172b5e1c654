"""
Proactive issue detection: finds problems before they become critical.

A fixed battery of independent checks runs concurrently each round. Results
are reconciled against the active-issue set and a per-id cooldown table:

- a newly found id is reported once (``issue_detected``)
- an id that is already active, or was reported inside the cooldown window,
  is suppressed
- an active id that a round no longer reproduces is resolved
  (``issue_resolved``)
"""

import asyncio
import os
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

import structlog

from hostwatch.config import IssueDetectorConfig
from hostwatch.domain.models import (
    DetectedIssue,
    HealthSnapshot,
    IssueCategory,
    IssueSeverity,
    utc_now,
)
from hostwatch.services.events import EventBus, EventType
from hostwatch.services.probes import ConfigurationProvider, MetricsProvider, ProcessReading

logger = structlog.get_logger(__name__)

_BYTES_PER_MB = 1024**2
_BYTES_PER_GB = 1024**3

Check = Callable[[], Awaitable[DetectedIssue | None]]


class HealthSource(Protocol):
    """Anything exposing the latest health snapshot (normally a HealthSampler)."""

    @property
    def current_health(self) -> HealthSnapshot | None: ...


def _iter_files(root: Path, recursive: bool = True) -> Iterator[tuple[Path, os.stat_result]]:
    """Yield (path, stat) for regular files, skipping anything unreadable."""
    if recursive:
        walker = os.walk(root, onerror=lambda _: None)
    else:
        walker = iter([(str(root), [], os.listdir(root))])

    for dirpath, _dirnames, filenames in walker:
        for filename in filenames:
            path = Path(dirpath) / filename
            try:
                stat = path.stat()
            except OSError:
                continue
            if path.is_file():
                yield path, stat


def directory_size(root: Path) -> int:
    """Total size in bytes of all files below ``root``."""
    if not root.is_dir():
        return 0
    return sum(stat.st_size for _, stat in _iter_files(root))


def large_files(root: Path, min_bytes: int, limit: int = 5) -> list[tuple[Path, int]]:
    """Largest top-level files in ``root`` bigger than ``min_bytes``."""
    if not root.is_dir():
        return []
    found = [
        (path, stat.st_size)
        for path, stat in _iter_files(root, recursive=False)
        if stat.st_size > min_bytes
    ]
    found.sort(key=lambda item: item[1], reverse=True)
    return found[:limit]


def stale_files(root: Path, older_than: float) -> tuple[int, int]:
    """Count and total size of files last written before the ``older_than`` timestamp."""
    if not root.is_dir():
        return 0, 0
    count = 0
    total = 0
    for _, stat in _iter_files(root):
        if stat.st_mtime < older_than:
            count += 1
            total += stat.st_size
    return count, total


class IssueDetector:
    """
    Runs the diagnostic battery on a timer and keeps the issue lifecycle.

    Design principles:
    - Each check is exception-safe: a failing check counts as "no issue"
    - Checks fan out with TaskGroup and join before reconciliation
    - Reconciliation holds a lock, so a manual run and a timer tick never
      interleave their updates to the active set and cooldown table
    - One ``issue_detected`` per active episode; no re-notification while an
      issue stays active, even after the cooldown expires
    """

    def __init__(
        self,
        metrics: MetricsProvider,
        system: ConfigurationProvider,
        health_source: HealthSource | None = None,
        config: IssueDetectorConfig | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.metrics = metrics
        self.system = system
        self.health_source = health_source
        self.config = config or IssueDetectorConfig()
        self.events = events or EventBus()
        self.clock = clock
        self.logger = logger.bind(component="issue_detector")

        self._lock = asyncio.Lock()
        self._active: dict[str, DetectedIssue] = {}
        self._cooldowns: dict[str, datetime] = {}
        self._history: deque[DetectedIssue] = deque(maxlen=self.config.history_size)
        self._interval = self.config.interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_analyzing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def active_issues(self) -> list[DetectedIssue]:
        return list(self._active.values())

    @property
    def issue_history(self) -> list[DetectedIssue]:
        return list(self._history)

    @property
    def cooldown_window(self) -> timedelta:
        return timedelta(minutes=self.config.cooldown_minutes)

    def start_analysis(self, interval_seconds: float | None = None) -> None:
        """Start periodic analysis on the running event loop. No-op if running."""
        if self.is_analyzing:
            return

        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self._interval = interval_seconds

        self._task = asyncio.get_running_loop().create_task(
            self._analysis_loop(), name="IssueDetector"
        )
        self.logger.info("analysis_started", interval_seconds=self._interval)

    def stop_analysis(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self.logger.info("analysis_stopped")

    async def _analysis_loop(self) -> None:
        while True:
            round_start = time.perf_counter()

            try:
                await self.run_full_analysis()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.exception("analysis_round_failed", error=str(e))

            elapsed = time.perf_counter() - round_start
            sleep_time = max(0.0, self._interval - elapsed)
            if sleep_time == 0.0:
                self.logger.warning(
                    "analysis_slower_than_interval",
                    elapsed_seconds=round(elapsed, 3),
                    interval_seconds=self._interval,
                )
            await asyncio.sleep(sleep_time)

    def _checks(self) -> list[tuple[str, Check]]:
        return [
            ("disk_space", self.check_disk_space),
            ("memory", self.check_memory),
            ("cpu", self.check_cpu),
            ("disk_health", self.check_disk_health),
            ("startup_bloat", self.check_startup_bloat),
            ("large_downloads", self.check_large_downloads),
            ("temp_files", self.check_temp_files),
            ("browser_cache", self.check_browser_cache),
            ("updates", self.check_updates),
            ("security", self.check_security),
        ]

    async def run_full_analysis(self) -> list[DetectedIssue]:
        """Run every check concurrently and return the newly reported issues."""
        start_time = time.perf_counter()

        async with self._lock:
            async with asyncio.TaskGroup() as task_group:
                tasks = [
                    task_group.create_task(self._run_check(name, check), name=name)
                    for name, check in self._checks()
                ]

            found = [issue for task in tasks if (issue := task.result()) is not None]
            new_issues, resolved = self._reconcile(found)

        self.logger.info(
            "analysis_completed",
            found=len(found),
            new=len(new_issues),
            resolved=len(resolved),
            active=len(self._active),
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return new_issues

    async def _run_check(self, name: str, check: Check) -> DetectedIssue | None:
        try:
            return await asyncio.wait_for(check(), timeout=self.config.check_timeout_seconds)
        except TimeoutError:
            self.logger.warning("check_timeout", check=name)
        except Exception as e:
            self.logger.warning("check_failed", check=name, error=str(e))
        return None

    def _reconcile(
        self, found: list[DetectedIssue]
    ) -> tuple[list[DetectedIssue], list[DetectedIssue]]:
        now = self.clock()
        found_ids = {issue.id for issue in found}
        new_issues: list[DetectedIssue] = []
        resolved: list[DetectedIssue] = []

        for issue in found:
            if issue.id in self._active:
                continue
            last_reported = self._cooldowns.get(issue.id)
            if last_reported is not None and now - last_reported < self.cooldown_window:
                self.logger.debug("issue_suppressed", issue_id=issue.id)
                continue

            self._active[issue.id] = issue
            self._history.append(issue)
            self._cooldowns[issue.id] = now
            new_issues.append(issue)
            self.logger.info("issue_detected", issue_id=issue.id, severity=issue.severity.value)
            self.events.emit(EventType.ISSUE_DETECTED, issue)

        for issue_id, active in list(self._active.items()):
            if issue_id in found_ids:
                continue
            active.resolved_at = now
            del self._active[issue_id]
            resolved.append(active)
            self.logger.info("issue_resolved", issue_id=issue_id)
            self.events.emit(EventType.ISSUE_RESOLVED, active)

        return new_issues, resolved

    def _issue(self, **fields) -> DetectedIssue:
        return DetectedIssue(detected_at=self.clock(), **fields)

    async def check_disk_space(self) -> DetectedIssue | None:
        drives = await asyncio.to_thread(self.metrics.fixed_drives)
        for drive in drives:
            if drive.total_bytes <= 0:
                continue
            free_percent = drive.free_bytes * 100.0 / drive.total_bytes
            free_gb = drive.free_bytes / _BYTES_PER_GB

            if free_percent < self.config.disk_free_percent or free_gb < self.config.disk_free_gb:
                critical = free_percent < self.config.disk_critical_free_percent
                return self._issue(
                    id=f"disk_space_{drive.name}",
                    title=f"Low Disk Space on {drive.name}",
                    description=(
                        f"Drive {drive.name} has only {free_gb:.1f} GB "
                        f"({free_percent:.1f}%) free space remaining."
                    ),
                    severity=IssueSeverity.CRITICAL if critical else IssueSeverity.WARNING,
                    category=IssueCategory.STORAGE,
                    recommendations=[
                        "Run 'Clean Temporary Files' to free up space",
                        "Empty the trash / recycle bin",
                        "Uninstall unused applications",
                        "Move large files to external storage",
                    ],
                    auto_fix_available=True,
                    auto_fix_id="cleanup_temp",
                )
        return None

    def _snapshot(self) -> HealthSnapshot | None:
        if self.health_source is None:
            return None
        return self.health_source.current_health

    async def check_memory(self) -> DetectedIssue | None:
        health = self._snapshot()
        if health is None or health.ram_percent <= self.config.memory_warning_percent:
            return None

        consumers = ", ".join(f"{p.name} ({p.memory_mb:.0f} MB)" for p in health.top_processes[:5])
        critical = health.ram_percent > self.config.memory_critical_percent
        return self._issue(
            id="high_memory_usage",
            title="High Memory Usage Detected",
            description=(
                f"System memory usage is at {health.ram_percent:.0f}%. "
                f"Top consumers: {consumers or 'unknown'}"
            ),
            severity=IssueSeverity.CRITICAL if critical else IssueSeverity.WARNING,
            category=IssueCategory.PERFORMANCE,
            recommendations=[
                "Close unused applications",
                "Restart memory-heavy applications",
                "Consider adding more RAM",
                "Check for memory leaks in running applications",
            ],
        )

    async def check_cpu(self) -> DetectedIssue | None:
        health = self._snapshot()
        if health is None or health.cpu_percent <= self.config.cpu_warning_percent:
            return None

        try:
            processes = await asyncio.to_thread(self.metrics.processes)
        except Exception as e:
            self.logger.warning("process_listing_failed", error=str(e))
            processes = []

        culprits = self._cpu_culprits(processes)
        return self._issue(
            id="high_cpu_usage",
            title="Sustained High CPU Usage",
            description=(
                f"CPU has been running at {health.cpu_percent:.0f}%. "
                f"Possible culprits: {', '.join(culprits) or 'unknown'}"
            ),
            severity=IssueSeverity.WARNING,
            category=IssueCategory.PERFORMANCE,
            recommendations=[
                "Check the process list for runaway processes",
                "Scan for malware",
                "Update drivers",
                "Check for system updates running in the background",
            ],
        )

    @staticmethod
    def _cpu_culprits(processes: list[ProcessReading], limit: int = 3) -> list[str]:
        # Processes with more than ten minutes of CPU time, busiest first
        heavy = [p for p in processes if p.cpu_time_seconds > 600]
        heavy.sort(key=lambda p: p.cpu_time_seconds, reverse=True)
        return [p.name for p in heavy[:limit]]

    async def check_disk_health(self) -> DetectedIssue | None:
        disks = await asyncio.to_thread(self.system.disk_statuses)
        for disk in disks:
            if disk.healthy:
                continue
            return self._issue(
                id=f"disk_health_{disk.device_id}",
                title="Disk Health Warning",
                description=(
                    f"Disk {disk.model or disk.device_id} is reporting status: {disk.status}"
                ),
                severity=IssueSeverity.CRITICAL,
                category=IssueCategory.HARDWARE,
                recommendations=[
                    "BACKUP YOUR DATA IMMEDIATELY",
                    "Run disk diagnostics",
                    "Consider replacing the drive",
                    "Check manufacturer warranty",
                ],
            )
        return None

    async def check_startup_bloat(self) -> DetectedIssue | None:
        entries = await asyncio.to_thread(self.system.startup_entries)
        if len(entries) <= self.config.max_startup_entries:
            return None
        return self._issue(
            id="startup_bloat",
            title="Too Many Startup Programs",
            description=(
                f"You have {len(entries)} programs starting with the system, "
                "which may slow down boot time."
            ),
            severity=IssueSeverity.INFO,
            category=IssueCategory.PERFORMANCE,
            recommendations=[
                "Review startup programs",
                "Disable unnecessary startup items",
                "Use the 'Optimize Startup Programs' script",
            ],
            auto_fix_available=True,
            auto_fix_id="optimize_startup",
        )

    async def check_large_downloads(self) -> DetectedIssue | None:
        downloads = await asyncio.to_thread(self.system.downloads_directory)
        if downloads is None:
            return None

        min_bytes = int(self.config.large_file_mb * _BYTES_PER_MB)
        files = await asyncio.to_thread(large_files, downloads, min_bytes)
        if not files:
            return None

        total_gb = sum(size for _, size in files) / _BYTES_PER_GB
        listing = ", ".join(f"{path.name} ({size // _BYTES_PER_MB}MB)" for path, size in files)
        return self._issue(
            id="large_downloads",
            title="Large Files in Downloads",
            description=(
                f"Found {len(files)} large files ({total_gb:.1f} GB total) in Downloads: {listing}"
            ),
            severity=IssueSeverity.INFO,
            category=IssueCategory.STORAGE,
            recommendations=[
                "Review and delete unneeded downloads",
                "Move important files to appropriate folders",
                "Consider archiving old files",
            ],
        )

    async def check_temp_files(self) -> DetectedIssue | None:
        temp_dir = await asyncio.to_thread(self.system.temp_directory)
        if temp_dir is None:
            return None

        cutoff = self.clock() - timedelta(days=self.config.temp_file_age_days)
        count, total = await asyncio.to_thread(stale_files, temp_dir, cutoff.timestamp())
        size_mb = total / _BYTES_PER_MB
        if size_mb <= self.config.temp_total_mb:
            return None

        return self._issue(
            id="old_temp_files",
            title="Old Temporary Files Accumulating",
            description=(
                f"Found {count} old temporary files ({size_mb:.0f} MB) that can be safely deleted."
            ),
            severity=IssueSeverity.INFO,
            category=IssueCategory.STORAGE,
            recommendations=["Run 'Clean Temporary Files' to free up space"],
            auto_fix_available=True,
            auto_fix_id="cleanup_temp",
        )

    async def check_browser_cache(self) -> DetectedIssue | None:
        cache_dirs = await asyncio.to_thread(self.system.browser_cache_directories)
        total = 0
        for cache_dir in cache_dirs:
            total += await asyncio.to_thread(directory_size, cache_dir)

        cache_gb = total / _BYTES_PER_GB
        if cache_gb <= self.config.browser_cache_gb:
            return None

        return self._issue(
            id="browser_cache",
            title="Large Browser Cache",
            description=f"Browser caches are using {cache_gb:.1f} GB of disk space.",
            severity=IssueSeverity.INFO,
            category=IssueCategory.STORAGE,
            recommendations=[
                "Clear browser cache from browser settings",
                "Run 'Clean Temporary Files' script",
            ],
            auto_fix_available=True,
            auto_fix_id="cleanup_temp",
        )

    async def check_updates(self) -> DetectedIssue | None:
        last_update = await asyncio.to_thread(self.system.last_update_installed)
        if last_update is None:
            return None

        days = (self.clock() - last_update).total_seconds() / 86400
        if days <= self.config.update_overdue_days:
            return None

        return self._issue(
            id="updates_overdue",
            title="System Updates Overdue",
            description=f"The system hasn't been updated in {days:.0f} days.",
            severity=IssueSeverity.WARNING,
            category=IssueCategory.SECURITY,
            recommendations=[
                "Check for system updates",
                "Enable automatic updates",
                "Run 'Check for Updates' script",
            ],
            auto_fix_available=True,
            auto_fix_id="check_updates",
        )

    async def check_security(self) -> DetectedIssue | None:
        products = await asyncio.to_thread(self.system.security_products)
        if products is None:
            return None

        if not products:
            return self._issue(
                id="no_antivirus",
                title="No Antivirus Detected",
                description="No antivirus software was detected on this system.",
                severity=IssueSeverity.CRITICAL,
                category=IssueCategory.SECURITY,
                recommendations=[
                    "Enable the built-in security product",
                    "Install antivirus software",
                ],
            )

        for product in products:
            if product.enabled and product.up_to_date:
                continue
            state = "enabled" if product.enabled else "DISABLED"
            freshness = "up to date" if product.up_to_date else "OUT OF DATE"
            return self._issue(
                id="antivirus_issue",
                title="Antivirus Protection Issue",
                description=f"Antivirus ({product.name}) is {state} and {freshness}.",
                severity=IssueSeverity.CRITICAL,
                category=IssueCategory.SECURITY,
                recommendations=[
                    "Enable real-time protection",
                    "Update virus definitions",
                    "Run a full system scan",
                ],
            )
        return None

    def get_issues_summary(self) -> str:
        issues = self.active_issues
        if not issues:
            return "No issues detected. Your system is healthy!"

        counts = {severity: 0 for severity in IssueSeverity}
        for issue in issues:
            counts[issue.severity] += 1

        lines = [
            "System Issues Detected:",
            f"Critical: {counts[IssueSeverity.CRITICAL]} | "
            f"Warning: {counts[IssueSeverity.WARNING]} | Info: {counts[IssueSeverity.INFO]}",
            "",
        ]
        lines.extend(f"[{issue.severity.value}] {issue.title}" for issue in issues)
        return "\n".join(lines)

"""
Core services for the monitoring engine.

Health sampling, issue detection and network discovery, plus the event bus,
result type and probe protocols they share.
"""

from .events import EventBus, EventType
from .health_sampler import HealthSampler
from .host_monitoring import HostWatchService
from .issue_detector import IssueDetector
from .network_discovery import NetworkDiscoveryScanner, classify_device
from .result import Result

__all__ = [
    "EventBus",
    "EventType",
    "HealthSampler",
    "HostWatchService",
    "IssueDetector",
    "NetworkDiscoveryScanner",
    "Result",
    "classify_device",
]

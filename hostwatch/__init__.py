"""Host health sampling, proactive issue detection and local network discovery.

The engine is built from three independent components that share an event bus:
HealthSampler, IssueDetector and NetworkDiscoveryScanner. Platform access goes
through the probe protocols in ``hostwatch.services.probes``.
"""

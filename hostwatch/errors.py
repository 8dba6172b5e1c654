"""
Error taxonomy for the monitoring engine.

None of these escape a timer loop or a network sweep. They travel inside
``Result`` values or get logged, and the affected field, issue or device is
simply absent from the output.
"""


class HostWatchError(Exception):
    """Base class for all engine errors."""


class ProbeFailure(HostWatchError):
    """A single metric read or diagnostic check failed."""

    def __init__(self, probe: str, cause: BaseException | None = None) -> None:
        self.probe = probe
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Probe '{probe}' failed{detail}")


class ScanFailure(HostWatchError):
    """A host or port probe failed during a network sweep."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"{address}: {reason}")


class HostUnreachable(ScanFailure):
    """The address did not answer the reachability probe."""

    def __init__(self, address: str) -> None:
        super().__init__(address, "unreachable")


class ConfigurationFailure(HostWatchError):
    """Configuration could not be read or validated."""

"""
Platform implementations of the probe protocols.

The engine only depends on ``hostwatch.services.probes``; these adapters wire
it to the local host.
"""

from .local import LocalConfigurationProvider, LocalNetworkPrimitives, PsutilMetricsProvider

__all__ = [
    "LocalConfigurationProvider",
    "LocalNetworkPrimitives",
    "PsutilMetricsProvider",
]
